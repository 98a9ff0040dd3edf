"""Bounded fan-out and politeness delays for network-bound stage work."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    item: Any
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_bounded(
    fn: Callable[[Any], Any],
    items: Iterable[Any],
    *,
    max_workers: int,
    on_complete: Optional[Callable[[TaskOutcome], None]] = None,
) -> List[TaskOutcome]:
    """Run ``fn`` over ``items`` with at most ``max_workers`` calls in flight.

    Blocks until every item has finished. An exception raised by one item is
    recorded on its outcome and never affects the others. ``on_complete`` is
    invoked on the calling thread as each item finishes; outcomes are returned
    in input order.
    """
    pending = list(items)
    if not pending:
        return []

    outcomes: List[Optional[TaskOutcome]] = [None] * len(pending)
    workers = max(1, min(max_workers, len(pending)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(fn, item): index for index, item in enumerate(pending)}
        for future in as_completed(futures):
            index = futures[future]
            try:
                outcome = TaskOutcome(item=pending[index], result=future.result())
            except Exception as exc:  # noqa: BLE001
                logger.debug("Bounded task failed for %r: %s", pending[index], exc)
                outcome = TaskOutcome(item=pending[index], error=exc)
            outcomes[index] = outcome
            if on_complete is not None:
                on_complete(outcome)

    return [outcome for outcome in outcomes if outcome is not None]


class Throttle:
    """Keeps at least ``delay_seconds`` between sequential calls to one upstream."""

    def __init__(self, delay_seconds: float) -> None:
        self.delay_seconds = max(0.0, delay_seconds)
        self._last_call: Optional[float] = None

    def wait(self) -> None:
        if self._last_call is not None and self.delay_seconds > 0:
            remaining = self.delay_seconds - (time.monotonic() - self._last_call)
            if remaining > 0:
                time.sleep(remaining)
        self._last_call = time.monotonic()
