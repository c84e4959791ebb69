"""
Rate-limited batch executor - bounded concurrency under a wall-clock deadline.

Tasks are zero-argument coroutine factories returning an outcome string.
They run in batches of `concurrency`; each batch is awaited in full before the
next starts. The deadline is checked before every batch: once it has passed no
new batch starts and the report is marked timed_out. A task that raises is
counted as an error and never affects its siblings.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from pydantic import BaseModel, Field

from src.utils.metrics import Timer

logger = logging.getLogger(__name__)

OUTCOME_CREATED = "created"
OUTCOME_UPDATED = "updated"
OUTCOME_DELETED = "deleted"
OUTCOME_SKIPPED = "skipped"

OUTCOMES = (OUTCOME_CREATED, OUTCOME_UPDATED, OUTCOME_DELETED, OUTCOME_SKIPPED)
MAX_ERROR_SAMPLES = 5

SyncTask = Callable[[], Awaitable[str]]


class BatchReport(BaseModel):
    total: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: int = 0
    not_started: int = 0
    timed_out: bool = False
    elapsed_ms: int = 0
    error_samples: list[str] = Field(default_factory=list)

    def record(self, outcome) -> None:
        self.processed += 1
        if isinstance(outcome, BaseException):
            self.errors += 1
            if len(self.error_samples) < MAX_ERROR_SAMPLES:
                self.error_samples.append(f"{type(outcome).__name__}: {outcome}")
        elif outcome in OUTCOMES:
            setattr(self, outcome, getattr(self, outcome) + 1)
        else:
            logger.warning("Unknown sync outcome %r counted as skipped", outcome)
            self.skipped += 1

    @property
    def all_failed(self) -> bool:
        return self.processed > 0 and self.errors == self.processed


async def run_batched(
    tasks: Sequence[SyncTask],
    concurrency: int,
    deadline_ms: int,
    started_at: Optional[float] = None,
) -> BatchReport:
    """
    Run tasks in batches and return the counters.
    started_at (time.monotonic()) lets the caller count time already spent
    before the tasks were built against the same deadline.
    """
    timer = Timer().start(started_at)
    concurrency = max(1, concurrency)
    report = BatchReport(total=len(tasks))

    for offset in range(0, len(tasks), concurrency):
        if timer.expired(deadline_ms):
            report.timed_out = True
            report.not_started = len(tasks) - offset
            logger.warning(
                "Sync deadline of %dms reached after %d/%d tasks, %d not started",
                deadline_ms, offset, len(tasks), report.not_started,
            )
            break

        batch = tasks[offset:offset + concurrency]
        logger.debug(
            "Starting batch of %d at task %d, %dms left",
            len(batch), offset, timer.remaining_ms(deadline_ms),
        )
        outcomes = await asyncio.gather(*(task() for task in batch), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            report.record(outcome)

    report.elapsed_ms = timer.elapsed_ms
    return report
