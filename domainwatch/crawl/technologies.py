"""Heuristic technology fingerprinting from markup and response headers."""
from __future__ import annotations

from typing import Mapping

from bs4 import BeautifulSoup

from domainwatch.storage.models import Technologies

SCRIPT_MARKERS = {
    "react": ("react",),
    "vue": ("vue",),
    "angular": ("angular",),
    "jquery": ("jquery",),
    "google_analytics": ("google-analytics", "gtag"),
}

STYLESHEET_MARKERS = {
    "bootstrap": ("bootstrap",),
    "tailwind": ("tailwind",),
}

CMS_GENERATORS = {
    "wordpress": "WordPress",
    "drupal": "Drupal",
}


def _any_src(soup: BeautifulSoup, tag: str, attr: str, needles: tuple[str, ...]) -> bool:
    return any(soup.select_one(f'{tag}[{attr}*="{needle}"]') is not None for needle in needles)


def detect_technologies(soup: BeautifulSoup, headers: Mapping[str, str]) -> Technologies:
    """Each check sets its own flag independently; misses are not corrected."""
    flags: dict[str, object] = {}

    server = headers.get("server")
    if server:
        flags["server"] = server

    generator_tag = soup.select_one('meta[name="generator"]')
    generator = generator_tag.get("content") if generator_tag is not None else None
    if generator:
        flags["generator"] = generator

    for name, needles in SCRIPT_MARKERS.items():
        if _any_src(soup, "script", "src", needles):
            flags[name] = True
    for name, needles in STYLESHEET_MARKERS.items():
        if _any_src(soup, "link", "href", needles):
            flags[name] = True

    for name, marker in CMS_GENERATORS.items():
        if soup.select_one(f'meta[name="generator"][content*="{marker}"]') is not None:
            flags[name] = True

    return Technologies(**flags)
