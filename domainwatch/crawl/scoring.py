"""Deterministic accessibility and SEO rubrics computed from page markup."""
from __future__ import annotations

from bs4 import BeautifulSoup

from domainwatch.storage.models import PageMetadata

TEXT_INPUT_SELECTOR = 'input[type="text"], input[type="email"], textarea, select'


def count_images_without_alt(soup: BeautifulSoup) -> int:
    """Images whose alt attribute is missing or empty."""
    return sum(1 for img in soup.find_all("img") if not img.get("alt"))


def count_unlabeled_inputs(soup: BeautifulSoup) -> int:
    """Text-like controls without an id that some ``<label for>`` points at."""
    label_targets = {label.get("for") for label in soup.find_all("label") if label.get("for")}
    unlabeled = 0
    for control in soup.select(TEXT_INPUT_SELECTOR):
        control_id = control.get("id")
        if not control_id or control_id not in label_targets:
            unlabeled += 1
    return unlabeled


def _heading_penalty(soup: BeautifulSoup) -> int:
    h1_count = len(soup.find_all("h1"))
    if h1_count == 0:
        return 10
    if h1_count > 1:
        return 5
    return 0


def accessibility_score(soup: BeautifulSoup) -> int:
    score = 100
    score -= min(20, 2 * count_images_without_alt(soup))
    score -= _heading_penalty(soup)
    score -= min(15, 3 * count_unlabeled_inputs(soup))
    return max(0, score)


def seo_score(soup: BeautifulSoup, metadata: PageMetadata) -> int:
    score = 100

    if not metadata.title:
        score -= 20
    elif not 30 <= len(metadata.title) <= 60:
        score -= 10

    if not metadata.description:
        score -= 15
    elif not 120 <= len(metadata.description) <= 160:
        score -= 5

    score -= _heading_penalty(soup)

    # keywords carry little weight with modern search engines
    if not metadata.keywords:
        score -= 2

    score -= min(10, count_images_without_alt(soup))
    return max(0, score)
