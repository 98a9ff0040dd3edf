"""Stage 2: bounded breadth-first crawl of each vetted venue website."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Set, Tuple

import requests

from venue_pipeline.core.limiter import Throttle, run_bounded
from venue_pipeline.core.pipeline import PipelineContext, Stage, StageResult
from venue_pipeline.core.remote import RemoteCallError
from venue_pipeline.etl.urls import is_same_domain, normalize_link, sanitize_website
from venue_pipeline.models import CrawledPage
from venue_pipeline.vendors import crawler
from venue_pipeline.vendors.crawler import RenderedPage

logger = logging.getLogger(__name__)

MAX_DEPTH = 3
MAX_LINKS_PER_PAGE = 10
SEQUENTIAL_DELAY_SECONDS = 1.0

Renderer = Callable[[str], RenderedPage]


def _safe_render(render: Renderer, url: str) -> RenderedPage:
    try:
        return render(url)
    except (RemoteCallError, requests.RequestException, ValueError) as exc:
        logger.warning("Render failed for %s: %s", url, str(exc)[:200])
        return RenderedPage(success=False)


def _render_level(render: Renderer, urls: List[str], concurrency: int, throttle: Throttle) -> List[RenderedPage]:
    if concurrency <= 1:
        pages = []
        for url in urls:
            throttle.wait()
            pages.append(_safe_render(render, url))
        return pages

    outcomes = run_bounded(lambda url: _safe_render(render, url), urls, max_workers=concurrency)
    return [outcome.result if outcome.ok else RenderedPage(success=False) for outcome in outcomes]


def crawl_site(
    root_url: str,
    render: Renderer,
    *,
    concurrency: int = 5,
    max_depth: int = MAX_DEPTH,
    max_links_per_page: int = MAX_LINKS_PER_PAGE,
) -> List[CrawledPage]:
    """Breadth-first crawl from ``root_url`` (depth 1), one frontier level at a time.

    Only same-domain links are followed, no URL is queued twice, nothing past
    ``max_depth`` is fetched, and each page contributes at most
    ``max_links_per_page`` new URLs to the next level. Pages that fail to render
    contribute neither content nor links.
    """
    visited: Set[str] = {root_url}
    frontier: List[Tuple[str, int]] = [(root_url, 1)]
    pages: List[CrawledPage] = []
    throttle = Throttle(SEQUENTIAL_DELAY_SECONDS)

    while frontier:
        depth = frontier[0][1]
        urls = [url for url, _depth in frontier]
        rendered = _render_level(render, urls, concurrency, throttle)

        next_frontier: List[Tuple[str, int]] = []
        for url, page in zip(urls, rendered):
            if not page.success:
                continue
            if page.markdown:
                pages.append(CrawledPage(url=url, depth=depth, markdown=page.markdown))
            if depth >= max_depth:
                continue

            queued = 0
            for href in page.links:
                if queued >= max_links_per_page:
                    break
                link = normalize_link(url, href)
                if not link or link in visited or not is_same_domain(link, root_url):
                    continue
                visited.add(link)
                next_frontier.append((link, depth + 1))
                queued += 1

        frontier = next_frontier

    return pages


def build_document(pages: List[CrawledPage]) -> str:
    """Concatenate page markdown in visit order, each chunk tagged with its source."""
    chunks = [f"<!-- source: {page.url} | depth: {page.depth} -->\n{page.markdown.strip()}" for page in pages]
    return "\n\n".join(chunks)


def run(ctx: PipelineContext) -> StageResult:
    settings = ctx.settings
    store = ctx.store
    venues = store.fetch_crawl_candidates()
    if not venues:
        logger.info("No new venues to crawl.")
        return StageResult.ok(crawled=0)

    def render(url: str) -> RenderedPage:
        return crawler.render_page(settings.crawl_service_url, url, timeout=settings.crawl_timeout)

    crawled = 0
    empty = 0
    for venue in venues:
        root_url: Optional[str] = sanitize_website(venue.website_url)
        if not root_url:
            logger.warning("%s (%s): unusable homepage %r", venue.name, venue.venue_id, venue.website_url)
            empty += 1
            continue

        logger.info("Crawling %s (%s)", venue.name, root_url)
        pages = crawl_site(root_url, render, concurrency=settings.crawl_concurrency)
        if not pages:
            logger.warning("%s: no page rendered from %s; will retry next run", venue.name, root_url)
            empty += 1
            continue

        store.save_crawl_document(venue.venue_id, build_document(pages))
        crawled += 1
        logger.info("Saved %d page(s) of markdown for %s", len(pages), venue.name)

    return StageResult.ok(crawled=crawled, empty=empty)


STAGE = Stage(name="crawl", run=run)
