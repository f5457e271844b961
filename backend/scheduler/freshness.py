"""
Freshness cache controller (stale-while-revalidate).

Per resource the persisted data is EMPTY, FRESH or STALE:
  EMPTY: refresh synchronously and serve the result ("miss-scraped")
  FRESH: serve persisted data, no refresh ("hit")
  STALE: serve persisted data now, refresh in the background ("stale-refreshing")

At most one refresh per resource is in flight at a time. Reads that need a
refresh (EMPTY, force refresh) join the running task instead of starting
another one. A failed refresh leaves the previous data and CacheMeta alone.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Coroutine, Mapping, NamedTuple, Optional, Protocol

from shared.errors import PersistenceError
from shared.models.domain import (
    CachedRead,
    CachedStandings,
    CacheMeta,
    CanonicalFixture,
    FixtureFilter,
    RefreshReport,
)
from shared.models.enums import CacheState, Freshness, Resource
from shared.repository import FixtureRepository
from shared.utils.logging import get_logger
from shared.utils.metrics import CACHE_READS, REFRESH_DURATION, REFRESHES_IN_FLIGHT

from builder.pipeline import RefreshOutcome
from ingest.normalization.names import canonicalize

logger = get_logger(__name__)

Clock = Callable[[], datetime]
Loader = Callable[[], Awaitable[list[Any]]]


class RefreshPipeline(Protocol):
    resource: str

    async def run(self, dry_run: bool = False) -> RefreshOutcome: ...


class Served(NamedTuple):
    freshness: Freshness
    rows: list[Any]
    last_updated: Optional[datetime]
    error: Optional[str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InFlightRegistry:
    """
    Process-local map of resource -> running refresh task.

    start() checks and registers without yielding to the event loop, so two
    concurrent callers can never both start a task for the same resource.
    The registry also keeps the only strong reference to background tasks.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def get(self, resource: str) -> Optional[asyncio.Task[Any]]:
        task = self._tasks.get(resource)
        if task is not None and task.done():
            return None
        return task

    def start(
        self,
        resource: str,
        factory: Callable[[], Coroutine[Any, Any, Any]],
    ) -> tuple[asyncio.Task[Any], bool]:
        """Return (task, started). started is False when an existing task was joined."""
        running = self.get(resource)
        if running is not None:
            return running, False
        task = asyncio.create_task(factory(), name=f"refresh:{resource}")
        self._tasks[resource] = task
        REFRESHES_IN_FLIGHT.inc()
        task.add_done_callback(lambda t, r=resource: self._finished(r, t))
        return task, True

    def _finished(self, resource: str, task: asyncio.Task[Any]) -> None:
        REFRESHES_IN_FLIGHT.dec()
        if self._tasks.get(resource) is task:
            del self._tasks[resource]
        if not task.cancelled() and task.exception() is not None:
            # _refresh already logged it; reading it marks it retrieved.
            logger.debug("refresh_task_failed", resource=resource, error=str(task.exception()))

    def __len__(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    async def wait_idle(self) -> None:
        """Wait for every running refresh to settle. Used at shutdown and in tests."""
        while True:
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class FreshnessController:
    """
    Serves persisted resources and decides when to refresh them.

    Args:
        repository: Persisted canonical store.
        pipelines: One refresh pipeline per resource name.
        threshold_s: Maximum age served without triggering a refresh.
        clock: Wall clock, injectable for tests.
        registry: In-flight refresh registry, injectable for tests.
    """

    def __init__(
        self,
        repository: FixtureRepository,
        pipelines: Mapping[str, RefreshPipeline],
        threshold_s: float = 25 * 60,
        clock: Clock = utc_now,
        registry: InFlightRegistry | None = None,
    ) -> None:
        self._repository = repository
        self._pipelines = dict(pipelines)
        self._threshold_s = threshold_s
        self._clock = clock
        self.registry = registry or InFlightRegistry()

    @property
    def resources(self) -> list[str]:
        return sorted(self._pipelines)

    def serves(self, resource: str) -> bool:
        return resource in self._pipelines

    def state(self, meta: Optional[CacheMeta], has_rows: bool) -> CacheState:
        if meta is None or not has_rows:
            return CacheState.EMPTY
        age_s = (self._clock() - meta.last_updated).total_seconds()
        return CacheState.FRESH if age_s < self._threshold_s else CacheState.STALE

    # ── Refresh ─────────────────────────────────────────────────────────
    async def _refresh(self, resource: str) -> RefreshOutcome:
        pipeline = self._pipelines[resource]
        outcome_label = "failed"
        start = time.perf_counter()
        try:
            outcome = await pipeline.run()
            await self._repository.put_cache_meta(
                CacheMeta(resource=resource, last_updated=self._clock(), record_count=outcome.total)
            )
            outcome_label = "success"
            return outcome
        except Exception as exc:
            logger.error("refresh_failed", resource=resource, error=str(exc), error_type=type(exc).__name__)
            raise
        finally:
            elapsed = time.perf_counter() - start
            REFRESH_DURATION.labels(resource=resource, outcome=outcome_label).observe(elapsed)
            logger.info("refresh_finished", resource=resource, outcome=outcome_label, duration_s=round(elapsed, 3))

    def trigger_background(self, resource: str) -> bool:
        """Start a background refresh unless one is running. Never blocks."""
        _task, started = self.registry.start(resource, lambda: self._refresh(resource))
        if started:
            logger.info("background_refresh_started", resource=resource)
        return started

    async def _join_refresh(self, resource: str) -> RefreshOutcome:
        task, _started = self.registry.start(resource, lambda: self._refresh(resource))
        # shield: a cancelled reader must not cancel the shared task
        return await asyncio.shield(task)

    async def force_refresh(self, resource: str = Resource.FIXTURES.value) -> RefreshReport:
        """Run (or join) a refresh and report what changed."""
        if not self.serves(resource):
            raise KeyError(resource)
        try:
            outcome = await self._join_refresh(resource)
        except Exception as exc:
            return RefreshReport(resource=resource, errors=[str(exc)])
        errors = [w.message for w in outcome.warnings if w.kind == "invalid_raw_record"]
        return RefreshReport(resource=resource, updated_counts=outcome.updated_counts, errors=errors)

    # ── Read path ───────────────────────────────────────────────────────
    def _apply_filter(self, fixtures: list[CanonicalFixture], flt: Optional[FixtureFilter]) -> list[CanonicalFixture]:
        if flt is None:
            return fixtures
        team = canonicalize(flt.team) if flt.team else None
        return [f for f in fixtures if flt.matches(f, team)]

    async def _serve(self, resource: str, load: Loader) -> Served:
        """Load a resource and decide its freshness, refreshing when it is empty or stale."""
        if not self.serves(resource):
            raise KeyError(resource)
        try:
            meta = await self._repository.get_cache_meta(resource)
            rows = await load()
        except PersistenceError as exc:
            logger.error("cache_read_failed", resource=resource, error=str(exc))
            return self._served(resource, Freshness.ERROR, [], None, str(exc))

        state = self.state(meta, bool(rows))
        if state == CacheState.FRESH:
            return self._served(resource, Freshness.HIT, rows, meta)
        if state == CacheState.STALE:
            self.trigger_background(resource)
            return self._served(resource, Freshness.STALE_REFRESHING, rows, meta)

        try:
            await self._join_refresh(resource)
            meta = await self._repository.get_cache_meta(resource)
            rows = await load()
        except Exception as exc:
            return self._served(resource, Freshness.ERROR, rows, meta, str(exc))
        return self._served(resource, Freshness.MISS_SCRAPED, rows, meta)

    @staticmethod
    def _served(
        resource: str,
        freshness: Freshness,
        rows: list[Any],
        meta: Optional[CacheMeta],
        error: Optional[str] = None,
    ) -> Served:
        CACHE_READS.labels(resource=resource, freshness=freshness.value).inc()
        return Served(freshness, rows, meta.last_updated if meta else None, error)

    async def get_fixtures(
        self,
        flt: Optional[FixtureFilter] = None,
        resource: str = Resource.FIXTURES.value,
    ) -> CachedRead:
        """Serve fixtures for a resource. Never raises on refresh or storage failure."""
        served = await self._serve(resource, self._repository.load_fixtures)
        return CachedRead(
            data=self._apply_filter(served.rows, flt),
            freshness=served.freshness,
            last_updated=served.last_updated,
            error=served.error,
        )

    async def get_standings(
        self,
        competition: Optional[str] = None,
        season: Optional[str] = None,
        resource: str = Resource.STANDINGS.value,
    ) -> CachedStandings:
        """Serve the league table. Freshness is judged on the whole resource, not the filtered rows."""
        served = await self._serve(resource, self._repository.load_standings)
        rows = [
            row
            for row in served.rows
            if (not competition or row.competition == competition) and (not season or row.season == season)
        ]
        return CachedStandings(
            data=rows,
            freshness=served.freshness,
            last_updated=served.last_updated,
            error=served.error,
        )
