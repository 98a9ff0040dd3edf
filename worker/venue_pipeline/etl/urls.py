"""URL helpers shared by the pre-vetting and crawl stages."""

from typing import Optional
from urllib.parse import urldefrag, urljoin, urlparse, urlunparse


def sanitize_website(raw_url: Optional[str]) -> Optional[str]:
    """Normalise raw website strings into absolute URLs (https when no scheme is given)."""

    if not raw_url:
        return None

    url = raw_url.strip()
    if not url:
        return None

    parsed = urlparse(url, scheme="https")
    if not parsed.netloc:
        parsed = urlparse(f"https://{url}")

    if not parsed.netloc:
        return None

    normalized_path = parsed.path or "/"
    if not normalized_path.startswith("/"):
        normalized_path = f"/{normalized_path}"

    return urlunparse(parsed._replace(path=normalized_path, fragment=""))


def normalize_link(base_url: str, href: str) -> Optional[str]:
    """Resolve ``href`` against ``base_url``; only http(s) links survive."""
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith(("mailto:", "tel:", "javascript:", "#")):
        return None
    absolute, _fragment = urldefrag(urljoin(base_url, href))
    parsed = urlparse(absolute)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    if not parsed.path:
        absolute = urlunparse(parsed._replace(path="/"))
    return absolute


def site_host(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def is_same_domain(url: str, root_url: str) -> bool:
    host = site_host(url)
    return bool(host) and host == site_host(root_url)
