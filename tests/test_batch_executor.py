"""
Tests for src/services/batch_executor.py - bounded concurrency under a deadline.
"""
import asyncio
import time

from src.services.batch_executor import (
    MAX_ERROR_SAMPLES,
    OUTCOME_CREATED,
    OUTCOME_DELETED,
    OUTCOME_SKIPPED,
    OUTCOME_UPDATED,
    BatchReport,
    run_batched,
)


def _task(outcome, delay=0.0):
    async def task():
        if delay:
            await asyncio.sleep(delay)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
    return task


class TestRunBatched:
    async def test_counts_every_outcome(self):
        tasks = [
            _task(OUTCOME_CREATED),
            _task(OUTCOME_UPDATED),
            _task(OUTCOME_UPDATED),
            _task(OUTCOME_DELETED),
            _task(OUTCOME_SKIPPED),
        ]
        report = await run_batched(tasks, concurrency=2, deadline_ms=10_000)

        assert report.total == 5
        assert report.processed == 5
        assert (report.created, report.updated, report.deleted, report.skipped) == (1, 2, 1, 1)
        assert report.errors == 0
        assert report.timed_out is False
        assert report.not_started == 0

    async def test_failing_task_does_not_affect_siblings(self):
        tasks = [
            _task(OUTCOME_CREATED),
            _task(RuntimeError("provider down")),
            _task(OUTCOME_UPDATED),
        ]
        report = await run_batched(tasks, concurrency=3, deadline_ms=10_000)

        assert report.processed == 3
        assert report.created == 1
        assert report.updated == 1
        assert report.errors == 1
        assert report.error_samples == ["RuntimeError: provider down"]
        assert report.all_failed is False

    async def test_all_failed(self):
        tasks = [_task(ValueError("bad")) for _ in range(3)]
        report = await run_batched(tasks, concurrency=5, deadline_ms=10_000)
        assert report.all_failed is True

    async def test_error_samples_are_capped(self):
        tasks = [_task(ValueError(f"bad {i}")) for i in range(MAX_ERROR_SAMPLES + 3)]
        report = await run_batched(tasks, concurrency=20, deadline_ms=10_000)
        assert report.errors == MAX_ERROR_SAMPLES + 3
        assert len(report.error_samples) == MAX_ERROR_SAMPLES

    async def test_concurrency_bounds_parallelism(self):
        running = 0
        peak = 0

        async def task():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return OUTCOME_UPDATED

        report = await run_batched([task] * 7, concurrency=3, deadline_ms=10_000)

        assert report.updated == 7
        assert peak == 3

    async def test_deadline_stops_new_batches(self):
        tasks = [_task(OUTCOME_UPDATED, delay=0.05) for _ in range(6)]
        report = await run_batched(tasks, concurrency=2, deadline_ms=30)

        # The first batch always starts; the deadline is only checked between batches
        assert report.processed == 2
        assert report.timed_out is True
        assert report.not_started == 4

    async def test_time_spent_before_counts_against_deadline(self):
        started_at = time.monotonic() - 1.0
        report = await run_batched(
            [_task(OUTCOME_CREATED)], concurrency=1, deadline_ms=500, started_at=started_at,
        )
        assert report.processed == 0
        assert report.timed_out is True
        assert report.not_started == 1

    async def test_empty_task_list(self):
        report = await run_batched([], concurrency=5, deadline_ms=1)
        assert report.total == 0
        assert report.timed_out is False
        assert report.all_failed is False

    async def test_zero_concurrency_runs_sequentially(self):
        report = await run_batched([_task(OUTCOME_CREATED)] * 2, concurrency=0, deadline_ms=10_000)
        assert report.created == 2


class TestBatchReport:
    def test_unknown_outcome_counts_as_skipped(self):
        report = BatchReport(total=1)
        report.record("moved")
        assert report.skipped == 1
        assert report.processed == 1
