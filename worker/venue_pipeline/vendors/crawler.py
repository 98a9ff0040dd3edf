"""Client for the headless-browser render/extract service."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from venue_pipeline.core.remote import post_with_failover

logger = logging.getLogger(__name__)

PRUNING_THRESHOLD = 0.45
MIN_WORD_THRESHOLD = 75
VIEWPORT = {"width": 1280, "height": 800}


@dataclass
class RenderedPage:
    success: bool
    markdown: str = ""
    links: List[str] = field(default_factory=list)


def build_payload(url: str, timeout: float) -> Dict[str, Any]:
    return {
        "urls": [url],
        "priority": 1,
        "markdown_type": "fit_markdown",
        "content_filter": {
            "type": "pruning",
            "threshold": PRUNING_THRESHOLD,
            "min_word_threshold": MIN_WORD_THRESHOLD,
        },
        "wait_for": "body",
        "browser_config": {
            "headless": True,
            "viewport_width": VIEWPORT["width"],
            "viewport_height": VIEWPORT["height"],
        },
        "page_timeout": int(timeout * 1000),
    }


def _markdown_of(result: Dict[str, Any]) -> str:
    markdown = result.get("markdown")
    if isinstance(markdown, dict):
        return markdown.get("fit_markdown") or markdown.get("raw_markdown") or ""
    return markdown or ""


def _links_of(result: Dict[str, Any]) -> List[str]:
    links = result.get("links") or []
    if isinstance(links, dict):
        links = links.get("internal") or []
    hrefs: List[str] = []
    for link in links:
        href = link.get("href") if isinstance(link, dict) else link
        if isinstance(href, str) and href.strip():
            hrefs.append(href.strip())
    return hrefs


def render_page(service_url: str, url: str, *, timeout: float = 30) -> RenderedPage:
    """Render ``url`` and return its filtered markdown plus same-site links."""
    _endpoint, response = post_with_failover(
        [f"{service_url}/crawl"],
        json=build_payload(url, timeout),
        timeout=timeout,
    )
    payload = response.json()
    results = payload.get("results") if isinstance(payload, dict) else None
    if not results:
        logger.debug("Render service returned no results for %s", url)
        return RenderedPage(success=False)

    result = results[0] or {}
    if not result.get("success"):
        logger.debug("Render failed for %s: %s", url, str(result.get("error"))[:200])
        return RenderedPage(success=False)
    return RenderedPage(success=True, markdown=_markdown_of(result), links=_links_of(result))
