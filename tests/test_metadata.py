from bs4 import BeautifulSoup

from domainwatch.crawl.headers import sanitize_headers
from domainwatch.crawl.metadata import extract_metadata
from domainwatch.crawl.technologies import detect_technologies

PAGE = """
<html lang="en-GB">
<head>
  <meta property="og:title" content="Open Graph Title">
  <meta name="twitter:description" content="Card description">
  <meta name="keywords" content="domains, uptime">
  <meta name="author" content="Ops Team">
  <meta name="generator" content="WordPress 6.4">
  <link rel="icon" href="/static/favicon.ico">
  <link rel="stylesheet" href="https://cdn.example.net/bootstrap.min.css">
  <script src="https://code.jquery.com/jquery-3.7.1.min.js"></script>
  <script src="https://www.googletagmanager.com/gtag/js?id=G-1"></script>
</head>
<body><h1>Welcome</h1></body>
</html>
"""


def test_metadata_uses_social_fallbacks_and_resolves_favicon():
    soup = BeautifulSoup(PAGE, "html.parser")

    metadata = extract_metadata(soup, base_url="https://example.com/home/", response_headers={})

    assert metadata.title == "Open Graph Title"
    assert metadata.description == "Card description"
    assert metadata.keywords == "domains, uptime"
    assert metadata.author == "Ops Team"
    assert metadata.language == "en-GB"
    assert metadata.favicon_url == "https://example.com/static/favicon.ico"


def test_title_tag_wins_and_language_falls_back_to_header():
    soup = BeautifulSoup(
        '<html><head><title>  Real title </title><meta property="og:title" content="OG">'
        '<meta name="description" content="Plain"></head></html>',
        "html.parser",
    )

    metadata = extract_metadata(soup, base_url="https://example.com", response_headers={"content-language": "fr"})

    assert metadata.title == "Real title"
    assert metadata.description == "Plain"
    assert metadata.language == "fr"
    assert metadata.favicon_url is None


def test_detect_technologies_flags_only_what_is_present():
    soup = BeautifulSoup(PAGE, "html.parser")

    technologies = detect_technologies(soup, {"server": "nginx"})

    assert technologies.detected() == {
        "server": "nginx",
        "generator": "WordPress 6.4",
        "jquery": True,
        "google_analytics": True,
        "bootstrap": True,
        "wordpress": True,
    }


def test_sanitize_headers_drops_sensitive_values():
    headers = {
        "Content-Type": "text/html",
        "Server": "nginx",
        "Set-Cookie": "session=secret",
        "Authorization": "Bearer token",
        "X-Frame-Options": "DENY",
    }

    assert sanitize_headers(headers) == {
        "content-type": "text/html",
        "server": "nginx",
        "x-frame-options": "DENY",
    }
