"""Append-only log of per-venue failures in the image stages."""

import logging
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


def append_error(log_path: str, venue_label: str, error: object) -> None:
    line = f"{datetime.now(timezone.utc).isoformat()} {venue_label}: {error}\n"
    try:
        path = Path(log_path)
        if path.parent and not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as fh:
            fh.write(line)
    except OSError as exc:
        logger.error("Unable to append to error log %s: %s", log_path, exc)
