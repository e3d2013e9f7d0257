"""
models/batch.py
───────────────
BatchScorer: runs GroupCompatibilityAggregator over many candidate groups in
fixed-size concurrent sub-batches.

  • At most ``concurrency`` groups are in flight at any time.
  • A group that raises becomes ``BatchResult(success=False)`` with the error
    text and a neutral payload; the rest of the batch carries on.
  • ``timeout`` (seconds) or ``cancel_event`` stop the run promptly: finished
    results are returned in input order, unfinished groups are left out.
  • Fully successful runs are stored as one bulk cache entry.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from models.aggregator import AggregateOptions, GroupCompatibilityAggregator, member_digest, neutral_result
from models.entities import BatchResult, CandidateGroup, CompatibilityProfile
from models.errors import InvalidInputError
from utils.logger import logger
from utils.score_cache import ScoreCache, make_digest

ProgressCallback = Callable[[int, int], None]


@dataclass
class BatchMetrics:
    processed: int = 0
    failed: int = 0
    total_ms: float = 0.0

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.processed if self.processed else 0.0

    def as_dict(self) -> dict[str, float]:
        return {
            "processed":  self.processed,
            "failed":     self.failed,
            "average_ms": round(self.average_ms, 2),
        }


class BatchScorer:
    def __init__(
        self,
        aggregator: GroupCompatibilityAggregator,
        cache: ScoreCache | None = None,
        *,
        concurrency: int = 5,
        bulk_ttl: int = 3_600,
    ):
        if concurrency < 1:
            raise InvalidInputError("concurrency must be at least 1")
        self.aggregator = aggregator
        self.cache = cache
        self.concurrency = concurrency
        self.bulk_ttl = bulk_ttl
        self.metrics = BatchMetrics()

    async def batch_aggregate(
        self,
        user: CompatibilityProfile,
        groups: Sequence[CandidateGroup],
        concurrency: int | None = None,
        *,
        force_recalculation: bool = False,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> list[BatchResult]:
        size = concurrency or self.concurrency
        if size < 1:
            raise InvalidInputError("concurrency must be at least 1")
        groups = list(groups)
        if not groups:
            return []

        request_digest = make_digest([[g.id, member_digest(g.members)] for g in groups])
        if self.cache is not None and not force_recalculation:
            cached = await self.cache.get_bulk(user.user_id, request_digest)
            if cached is not None and len(cached) == len(groups):
                logger.info(f"Bulk cache hit for {user.user_id}: {len(cached)} groups")
                return [r.model_copy(update={"from_cache": True}) for r in cached]

        opts = AggregateOptions(force_recalculation=force_recalculation)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        results: dict[int, BatchResult] = {}
        interrupted = False

        for start in range(0, len(groups), size):
            if self._should_stop(loop, deadline, cancel_event):
                interrupted = True
                break
            chunk = groups[start:start + size]
            tasks = {
                asyncio.create_task(self._score_one(user, group, opts)): index
                for index, group in enumerate(chunk, start)
            }
            done = await self._wait(tasks, loop, deadline, cancel_event)
            for task, index in tasks.items():
                if task in done:
                    results[index] = task.result()
            if progress is not None:
                progress(len(results), len(groups))
            if len(done) < len(tasks):
                interrupted = True
                break

        ordered = [results[i] for i in sorted(results)]
        failed = sum(1 for r in ordered if not r.success)
        if interrupted:
            logger.warning(
                f"Batch for {user.user_id} stopped early: {len(ordered)}/{len(groups)} groups scored"
            )
        logger.info(
            f"Batch for {user.user_id}: {len(ordered) - failed} ok, {failed} failed "
            f"(avg {self.metrics.average_ms:.1f} ms/group)"
        )

        if self.cache is not None and not interrupted and not failed:
            await self.cache.set_bulk(user.user_id, request_digest, ordered, self.bulk_ttl)
        return ordered

    # ── helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    def _should_stop(
        loop: asyncio.AbstractEventLoop,
        deadline: float | None,
        cancel_event: asyncio.Event | None,
    ) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return deadline is not None and loop.time() >= deadline

    @staticmethod
    async def _wait(
        tasks: dict[asyncio.Task, int],
        loop: asyncio.AbstractEventLoop,
        deadline: float | None,
        cancel_event: asyncio.Event | None,
    ) -> set[asyncio.Task]:
        """Wait for ``tasks`` until all finish, the deadline passes or cancel is set."""
        pending: set[asyncio.Task] = set(tasks)
        done: set[asyncio.Task] = set()
        cancel_waiter = asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None
        try:
            while pending:
                remaining = None if deadline is None else deadline - loop.time()
                if remaining is not None and remaining <= 0:
                    break
                watched = pending | ({cancel_waiter} if cancel_waiter is not None else set())
                finished, _ = await asyncio.wait(
                    watched, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                if not finished:
                    break
                cancelled = cancel_waiter is not None and cancel_waiter in finished
                finished.discard(cancel_waiter)
                done |= finished
                pending -= finished
                if cancelled:
                    break
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        return done

    async def _score_one(
        self,
        user: CompatibilityProfile,
        group: CandidateGroup,
        opts: AggregateOptions,
    ) -> BatchResult:
        started = time.perf_counter()
        try:
            result = await self.aggregator.aggregate(user, group, opts)
        except Exception as exc:
            self.metrics.failed += 1
            error = f"{type(exc).__name__}: {exc}"
            logger.warning(f"Scoring group {group.id} failed: {error}")
            return BatchResult(
                group_id=group.id,
                success=False,
                error=error,
                compatibility=neutral_result(
                    group.id, member_count=len(group.members), error=error, risk_factors=()
                ),
            )
        finally:
            self.metrics.processed += 1
            self.metrics.total_ms += (time.perf_counter() - started) * 1000
        return BatchResult(group_id=group.id, success=True, compatibility=result)
