"""Page metadata extraction with Open Graph and Twitter card fallbacks."""
from __future__ import annotations

from typing import Mapping, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from domainwatch.storage.models import PageMetadata

TITLE_SELECTORS = ('meta[property="og:title"]', 'meta[name="twitter:title"]')
DESCRIPTION_SELECTORS = (
    'meta[name="description"]',
    'meta[property="og:description"]',
    'meta[name="twitter:description"]',
)
FAVICON_SELECTORS = (
    'link[rel="icon"]',
    'link[rel="shortcut icon"]',
    'link[rel="apple-touch-icon"]',
)


def _attr(soup: BeautifulSoup, selector: str, attr: str) -> Optional[str]:
    element = soup.select_one(selector)
    if element is None:
        return None
    value = element.get(attr)
    if isinstance(value, list):
        value = " ".join(value)
    if not value:
        return None
    return value.strip() or None


def _first_attr(soup: BeautifulSoup, selectors: Sequence[str], attr: str) -> Optional[str]:
    for selector in selectors:
        value = _attr(soup, selector, attr)
        if value:
            return value
    return None


def _title(soup: BeautifulSoup) -> Optional[str]:
    element = soup.find("title")
    if element is not None:
        text = element.get_text().strip()
        if text:
            return text
    return _first_attr(soup, TITLE_SELECTORS, "content")


def _language(soup: BeautifulSoup, response_headers: Mapping[str, str]) -> Optional[str]:
    return (
        _attr(soup, "html[lang]", "lang")
        or _attr(soup, 'meta[http-equiv="content-language" i]', "content")
        or response_headers.get("content-language")
        or None
    )


def extract_metadata(soup: BeautifulSoup, *, base_url: str, response_headers: Mapping[str, str]) -> PageMetadata:
    """Collect title, description, keywords, author, language and favicon.

    ``base_url`` is the final URL of the response; relative favicon links are
    resolved against it.
    """
    favicon = _first_attr(soup, FAVICON_SELECTORS, "href")
    if favicon and not favicon.startswith(("http://", "https://")):
        favicon = urljoin(base_url, favicon)
    return PageMetadata(
        title=_title(soup),
        description=_first_attr(soup, DESCRIPTION_SELECTORS, "content"),
        keywords=_attr(soup, 'meta[name="keywords"]', "content"),
        author=_attr(soup, 'meta[name="author"]', "content"),
        language=_language(soup, response_headers),
        favicon_url=favicon,
    )
