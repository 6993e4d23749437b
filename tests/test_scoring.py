from bs4 import BeautifulSoup

from domainwatch.crawl.scoring import (
    accessibility_score,
    count_images_without_alt,
    count_unlabeled_inputs,
    seo_score,
)
from domainwatch.storage.models import PageMetadata


def _soup(body: str) -> BeautifulSoup:
    return BeautifulSoup(f"<html><body>{body}</body></html>", "html.parser")


def test_accessibility_penalises_images_and_unlabeled_inputs():
    soup = _soup("<h1>Shop</h1>" + '<img src="a.png">' * 5 + '<input type="text" name="q">')

    assert count_images_without_alt(soup) == 5
    assert count_unlabeled_inputs(soup) == 1
    assert accessibility_score(soup) == 87


def test_accessibility_caps_and_heading_rules():
    images = '<img src="x.png" alt="">' * 30
    inputs = "<textarea></textarea>" * 10
    assert accessibility_score(_soup(images + inputs)) == 100 - 20 - 10 - 15
    assert accessibility_score(_soup("<h1>a</h1><h1>b</h1>")) == 95


def test_labeled_inputs_are_not_penalised():
    soup = _soup(
        '<h1>Contact</h1><label for="email">Email</label>'
        '<input type="email" id="email"><input type="email" id="other">'
        '<input type="checkbox">'
    )
    assert count_unlabeled_inputs(soup) == 1
    assert accessibility_score(soup) == 97


def test_seo_score_for_bare_page():
    soup = _soup("<h1>Hello</h1>")
    assert seo_score(soup, PageMetadata()) == 63


def test_seo_score_for_well_formed_page():
    metadata = PageMetadata(
        title="A page title that is long enough to count",
        description="d" * 140,
        keywords="domains, monitoring",
    )
    soup = _soup('<h1>Hello</h1><img src="a.png" alt="logo">')
    assert seo_score(soup, metadata) == 100


def test_seo_score_length_penalties_and_image_cap():
    metadata = PageMetadata(title="Short", description="too short", keywords="x")
    soup = _soup('<img src="a.png">' * 25)
    assert seo_score(soup, metadata) == 100 - 10 - 5 - 10 - 10
