"""Stage 1.5: cheap single-request homepage check before the expensive crawl."""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from venue_pipeline.core.limiter import TaskOutcome, run_bounded
from venue_pipeline.core.pipeline import PipelineContext, Stage, StageResult
from venue_pipeline.etl.urls import sanitize_website
from venue_pipeline.models import PreVettingStatus, Venue

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; WeddingVenueFinder/1.0; +https://weddingvenuefinder.com)"
REQUEST_TIMEOUT = 5
MAX_REDIRECTS = 3

WEDDING_KEYWORDS = (
    "wedding",
    "venue",
    "reception",
    "ceremony",
    "estate",
    "events",
    "celebrate",
    "nuptials",
    "bride",
    "groom",
)

_SESSION = requests.Session()
_SESSION.max_redirects = MAX_REDIRECTS
_SESSION.headers.update({"User-Agent": USER_AGENT, "Accept": "text/html,application/xhtml+xml"})


def extract_salient_text(html: str) -> str:
    """Title, meta description, H1s and H2s as one lowercased, markup-free string."""
    soup = BeautifulSoup(html or "", "html.parser")
    parts: List[str] = []
    if soup.title:
        parts.append(soup.title.get_text(" ", strip=True))
    meta = soup.find("meta", attrs={"name": re.compile("^description$", re.IGNORECASE)})
    if meta and meta.get("content"):
        parts.append(meta["content"])
    for heading in soup.find_all(["h1", "h2"]):
        parts.append(heading.get_text(" ", strip=True))
    text = " ".join(parts)
    # Titles and meta content may carry escaped markup of their own.
    text = re.sub(r"<[^>]*>", " ", text)
    return re.sub(r"\s+", " ", text).strip().lower()


def match_keywords(text: str) -> List[str]:
    return [keyword for keyword in WEDDING_KEYWORDS if keyword in text]


def bucket(matched: List[str], tag_match: bool) -> PreVettingStatus:
    if len(matched) >= 2 or tag_match:
        return PreVettingStatus.YES
    if len(matched) == 1:
        return PreVettingStatus.NEEDS_CONFIRMATION
    return PreVettingStatus.NO


def fetch_homepage(url: str) -> str:
    response = _SESSION.get(url, timeout=REQUEST_TIMEOUT, allow_redirects=True)
    response.raise_for_status()
    return response.text


def vet_venue(venue: Venue) -> Tuple[PreVettingStatus, Optional[List[str]]]:
    """Classify one venue; any fetch or parse error yields needs_confirmation."""
    url = sanitize_website(venue.website_url)
    if not url:
        logger.warning("%s (%s): unusable homepage %r", venue.name, venue.venue_id, venue.website_url)
        return PreVettingStatus.NEEDS_CONFIRMATION, None
    try:
        text = extract_salient_text(fetch_homepage(url))
    except (requests.RequestException, ValueError) as exc:
        logger.warning("%s: error fetching homepage %s - %s", venue.name, url, str(exc)[:200])
        return PreVettingStatus.NEEDS_CONFIRMATION, None

    matched = match_keywords(text)
    status = bucket(matched, venue.tags.indicates_venue())
    logger.info("%s: %s (keywords: %s)", venue.name, status.value, ", ".join(matched) or "none")
    return status, matched or None


def run(ctx: PipelineContext) -> StageResult:
    store = ctx.store
    venues = store.fetch_prevetting_candidates()
    if not venues:
        logger.info("No venues to pre-vet")
        return StageResult.ok(vetted=0)

    logger.info("Pre-vetting %d venues...", len(venues))
    counts: Counter = Counter()

    def persist(outcome: TaskOutcome) -> None:
        venue: Venue = outcome.item
        if outcome.ok:
            status, keywords = outcome.result
        else:
            logger.warning("%s: pre-vetting failed - %s", venue.name, str(outcome.error)[:200])
            status, keywords = PreVettingStatus.NEEDS_CONFIRMATION, None
        store.save_prevetting(venue.venue_id, status, keywords)
        counts[status.value] += 1

    run_bounded(vet_venue, venues, max_workers=ctx.settings.prevet_concurrency, on_complete=persist)

    logger.info(
        "Pre-vetting complete: yes=%d no=%d needs_confirmation=%d",
        counts["yes"],
        counts["no"],
        counts["needs_confirmation"],
    )
    return StageResult.ok(
        vetted=len(venues),
        yes=counts["yes"],
        no=counts["no"],
        needs_confirmation=counts["needs_confirmation"],
    )


STAGE = Stage(name="pre_vetting", run=run)
