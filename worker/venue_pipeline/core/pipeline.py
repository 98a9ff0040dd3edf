"""Minimal fail-fast stage scheduler."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from venue_pipeline.core.config import Settings
from venue_pipeline.models import BBox

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineContext:
    """Immutable inputs shared by every stage of one run."""

    settings: Settings
    store: Any
    bbox: Optional[BBox] = None
    tile_size: float = 0.05


@dataclass
class StageResult:
    success: bool
    stats: Dict[str, int] = field(default_factory=dict)
    message: Optional[str] = None

    @classmethod
    def ok(cls, **stats: int) -> "StageResult":
        return cls(success=True, stats=dict(stats))

    @classmethod
    def failed(cls, message: str, **stats: int) -> "StageResult":
        return cls(success=False, stats=dict(stats), message=message)


@dataclass(frozen=True)
class Stage:
    name: str
    run: Callable[[PipelineContext], StageResult]


@dataclass
class StageReport:
    name: str
    result: StageResult
    elapsed_seconds: float


class PipelineAbort(RuntimeError):
    """Raised when a stage fails; the whole run stops at that stage."""

    def __init__(self, stage_name: str, reason: str, completed: Sequence[StageReport] = ()) -> None:
        super().__init__(f"stage '{stage_name}' aborted the pipeline: {reason}")
        self.stage_name = stage_name
        self.reason = reason
        self.completed = list(completed)


def run_pipeline(ctx: PipelineContext, stages: Sequence[Stage]) -> List[StageReport]:
    """Run ``stages`` in order, stopping at the first failure.

    Side effects of stages that already finished are left in place, so running
    again resumes from the persisted state.
    """
    reports: List[StageReport] = []
    for stage in stages:
        logger.info("== stage: %s ==", stage.name)
        started = time.monotonic()
        try:
            result = stage.run(ctx)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Stage %s raised: %s", stage.name, exc)
            raise PipelineAbort(stage.name, f"{exc.__class__.__name__}: {exc}", reports) from exc

        if result is None or not result.success:
            reason = (result.message if result else None) or "stage reported failure"
            raise PipelineAbort(stage.name, reason, reports)

        elapsed = time.monotonic() - started
        reports.append(StageReport(name=stage.name, result=result, elapsed_seconds=elapsed))
        logger.info("Stage %s succeeded in %.1fs %s", stage.name, elapsed, result.stats)

    logger.info("Pipeline complete: %d stage(s) succeeded", len(reports))
    return reports
