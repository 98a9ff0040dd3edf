from venue_pipeline.etl import urls


def test_sanitize_website_defaults_to_https():
    assert urls.sanitize_website("example.com") == "https://example.com/"
    assert urls.sanitize_website(" http://example.com/about#team ") == "http://example.com/about"
    assert urls.sanitize_website("https://example.com/?page=2") == "https://example.com/?page=2"
    assert urls.sanitize_website("") is None
    assert urls.sanitize_website(None) is None


def test_normalize_link_resolves_relative_links():
    base = "https://example.com/venue/"
    assert urls.normalize_link(base, "gallery") == "https://example.com/venue/gallery"
    assert urls.normalize_link(base, "/contact#form") == "https://example.com/contact"
    assert urls.normalize_link(base, "https://example.com") == "https://example.com/"
    assert urls.normalize_link(base, "mailto:hi@example.com") is None
    assert urls.normalize_link(base, "#top") is None
    assert urls.normalize_link(base, "ftp://example.com/file") is None


def test_same_domain_ignores_www_prefix():
    assert urls.is_same_domain("https://www.example.com/a", "https://example.com/") is True
    assert urls.is_same_domain("https://blog.example.com/", "https://example.com/") is False
    assert urls.is_same_domain("https://other.test/", "https://example.com/") is False
