"""
Refresh scheduler.

Recomputes the post-match refresh plan once per replan interval and, on each
tick, forces a refresh when entries fall due. All entries due at the same
tick are covered by one refresh per resource.
"""
from __future__ import annotations

import asyncio
import signal
from datetime import datetime, timedelta
from typing import Callable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import RefreshReport, ScheduledRefresh
from shared.models.enums import FixtureStatus
from shared.repository import FixtureRepository
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import SCHEDULED_REFRESHES_PENDING, start_metrics_server

from scheduler.freshness import FreshnessController, utc_now
from scheduler.planner import due_entries, plan_refreshes

logger = get_logger(__name__)


class RefreshScheduler:
    def __init__(
        self,
        repository: FixtureRepository,
        controller: FreshnessController,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._controller = controller
        self._clock = clock
        self._last_plan_at: Optional[datetime] = None
        self._shutdown = asyncio.Event()

    async def replan(self, now: datetime) -> list[ScheduledRefresh]:
        """
        Rebuild the plan from the persisted fixtures, dropping entries no longer planned.

        Overdue entries whose fixture has no result yet are kept; their refresh failed
        and is still owed.
        """
        fixtures = await self._repository.load_fixtures()
        plan = plan_refreshes(
            fixtures,
            now,
            horizon=timedelta(days=self._settings.refresh_horizon_days),
            offset=timedelta(minutes=self._settings.refresh_offset_minutes),
        )
        planned = {e.fixture_key for e in plan}
        existing = await self._repository.load_scheduled_refreshes()
        unsettled = {str(f.key) for f in fixtures if f.status != FixtureStatus.FINISHED}
        owed = {e.fixture_key for e in existing if e.due_at <= now and e.fixture_key in unsettled}
        dropped = [e.fixture_key for e in existing if e.fixture_key not in planned and e.fixture_key not in owed]
        await self._repository.delete_scheduled_refreshes(dropped)
        await self._repository.save_scheduled_refreshes(plan)
        self._last_plan_at = now
        SCHEDULED_REFRESHES_PENDING.set(len(plan) + len(owed - planned))
        logger.info("refresh_plan_rebuilt", planned=len(plan), dropped=len(dropped))
        return plan

    def replan_due(self, now: datetime) -> bool:
        if self._last_plan_at is None:
            return True
        return (now - self._last_plan_at).total_seconds() >= self._settings.scheduler_replan_interval_s

    async def run_once(self, now: datetime | None = None) -> list[RefreshReport]:
        """One scheduler tick. Returns the refresh reports it produced."""
        now = now or self._clock()
        if self.replan_due(now):
            await self.replan(now)

        entries = await self._repository.load_scheduled_refreshes()
        due = due_entries(entries, now)
        if not due:
            return []

        reports: list[RefreshReport] = []
        settled: set[str] = set()
        for resource in sorted({e.resource for e in due}):
            if not self._controller.serves(resource):
                logger.warning("scheduled_refresh_unknown_resource", resource=resource)
                settled.add(resource)
                continue
            report = await self._controller.force_refresh(resource)
            reports.append(report)
            if report.refreshed:
                settled.add(resource)
            logger.info(
                "scheduled_refresh_fired",
                resource=resource,
                entries=sum(1 for e in due if e.resource == resource),
                updated_counts=report.updated_counts,
                errors=report.errors,
            )

        # Entries of a failed refresh stay due and are retried next tick.
        consumed = [e.fixture_key for e in due if e.resource in settled]
        await self._repository.delete_scheduled_refreshes(consumed)
        SCHEDULED_REFRESHES_PENDING.set(len(entries) - len(consumed))
        return reports

    async def run(self) -> None:
        """Tick until shutdown is requested."""
        while not self._shutdown.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("scheduler_loop_error", error=str(exc), exc_info=True)
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self._settings.scheduler_tick_interval_s)
            except asyncio.TimeoutError:
                pass

    def request_shutdown(self) -> None:
        self._shutdown.set()


async def main() -> None:
    """Standalone scheduler worker entrypoint."""
    from scheduler.runtime import Runtime

    settings = get_settings()
    setup_logging("scheduler")
    start_metrics_server()

    runtime = Runtime(settings)
    await runtime.start()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, runtime.scheduler.request_shutdown)

    logger.info("scheduler_service_started")
    try:
        await runtime.scheduler.run()
    finally:
        await runtime.close()
        logger.info("scheduler_service_stopped")


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
