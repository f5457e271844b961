"""
Unit tests for post-match refresh planning and the scheduler tick.

Run: pytest backend/tests/test_scheduler.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from shared.models.domain import CanonicalFixture, RefreshReport
from shared.models.enums import FixtureStatus
from shared.repository import FixtureRepository

from scheduler.planner import due_entries, plan_refreshes
from scheduler.service import RefreshScheduler

MakeFixture = Callable[..., CanonicalFixture]

NOW = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)


# ── Planner ─────────────────────────────────────────────────────────────

def test_plan_covers_upcoming_scheduled_fixtures(make_fixture: MakeFixture) -> None:
    soon = make_fixture(kickoff=NOW + timedelta(hours=6))
    started = make_fixture("Arsenal", "Fulham", kickoff=NOW - timedelta(hours=1))
    far = make_fixture("Everton", "Leeds United", kickoff=NOW + timedelta(days=8))
    done = make_fixture("Burnley", "Brentford", kickoff=NOW + timedelta(hours=3), status=FixtureStatus.FINISHED, home_score=1, away_score=1)
    long_gone = make_fixture("Sunderland", "Fulham", kickoff=NOW - timedelta(hours=5))

    plan = plan_refreshes([far, done, soon, started, long_gone], NOW)

    assert [e.fixture_key for e in plan] == [str(started.key), str(soon.key)]
    assert plan[1].due_at == soon.kickoff + timedelta(minutes=120)
    assert plan[1].home_team == "Manchester United"


def test_plan_honours_offset_and_horizon(make_fixture: MakeFixture) -> None:
    fixture = make_fixture(kickoff=NOW + timedelta(days=2))
    assert plan_refreshes([fixture], NOW, horizon=timedelta(days=1)) == []
    plan = plan_refreshes([fixture], NOW, offset=timedelta(minutes=30))
    assert plan[0].due_at == fixture.kickoff + timedelta(minutes=30)


def test_due_entries(make_fixture: MakeFixture) -> None:
    plan = plan_refreshes([make_fixture(kickoff=NOW + timedelta(hours=1))], NOW)
    assert due_entries(plan, NOW) == []
    assert due_entries(plan, NOW + timedelta(hours=3)) == plan


# ── Scheduler tick ──────────────────────────────────────────────────────

@pytest.fixture
def controller() -> MagicMock:
    c = MagicMock()
    c.serves.return_value = True
    c.force_refresh = AsyncMock(
        return_value=RefreshReport(resource="fixtures", updated_counts={"created": 0, "updated": 1, "deleted": 0, "total": 2})
    )
    return c


@pytest.fixture
def scheduler(repository: FixtureRepository, controller: MagicMock, settings: Settings) -> RefreshScheduler:
    return RefreshScheduler(repository, controller, settings, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_due_entries_fire_one_refresh_per_resource(
    scheduler: RefreshScheduler,
    controller: MagicMock,
    repository: FixtureRepository,
    make_fixture: MakeFixture,
) -> None:
    kickoff = NOW + timedelta(hours=3)
    await repository.save_fixtures(
        [make_fixture(kickoff=kickoff), make_fixture("Arsenal", "Fulham", kickoff=kickoff)]
    )

    assert await scheduler.run_once(NOW) == []
    assert len(await repository.load_scheduled_refreshes()) == 2
    controller.force_refresh.assert_not_awaited()

    reports = await scheduler.run_once(kickoff + timedelta(minutes=121))

    assert len(reports) == 1
    controller.force_refresh.assert_awaited_once_with("fixtures")
    assert await repository.load_scheduled_refreshes() == []

    assert await scheduler.run_once(kickoff + timedelta(minutes=130)) == []
    controller.force_refresh.assert_awaited_once()


@pytest.mark.asyncio
async def test_replan_drops_entries_for_settled_fixtures(
    scheduler: RefreshScheduler,
    repository: FixtureRepository,
    make_fixture: MakeFixture,
) -> None:
    fixture = make_fixture(kickoff=NOW + timedelta(hours=3))
    await repository.save_fixtures([fixture])
    await scheduler.replan(NOW)
    assert len(await repository.load_scheduled_refreshes()) == 1

    settled = fixture.model_copy(update={"status": FixtureStatus.FINISHED, "home_score": 1, "away_score": 0})
    await repository.save_fixtures([settled])
    plan = await scheduler.replan(NOW + timedelta(hours=1))

    assert plan == []
    assert await repository.load_scheduled_refreshes() == []


@pytest.mark.asyncio
async def test_replan_runs_once_per_interval(scheduler: RefreshScheduler, settings: Settings) -> None:
    assert scheduler.replan_due(NOW)
    await scheduler.replan(NOW)
    assert not scheduler.replan_due(NOW + timedelta(hours=1))
    assert scheduler.replan_due(NOW + timedelta(seconds=settings.scheduler_replan_interval_s))


@pytest.mark.asyncio
async def test_unknown_resource_entries_are_skipped(
    scheduler: RefreshScheduler,
    controller: MagicMock,
    repository: FixtureRepository,
    make_fixture: MakeFixture,
) -> None:
    controller.serves.return_value = False
    kickoff = NOW + timedelta(hours=1)
    await repository.save_fixtures([make_fixture(kickoff=kickoff)])
    await scheduler.run_once(NOW)

    assert await scheduler.run_once(kickoff + timedelta(hours=3)) == []
    controller.force_refresh.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_refresh_keeps_entries_until_a_refresh_succeeds(
    scheduler: RefreshScheduler,
    controller: MagicMock,
    repository: FixtureRepository,
    make_fixture: MakeFixture,
) -> None:
    kickoff = NOW + timedelta(hours=1)
    await repository.save_fixtures([make_fixture(kickoff=kickoff)])
    await scheduler.run_once(NOW)
    succeeded = controller.force_refresh.return_value
    controller.force_refresh.return_value = RefreshReport(resource="fixtures", errors=["No source could provide 'fixtures'"])

    due = kickoff + timedelta(hours=3)
    [failed] = await scheduler.run_once(due)

    assert not failed.refreshed
    assert len(await repository.load_scheduled_refreshes()) == 1

    await scheduler.replan(due + timedelta(days=1))
    assert len(await repository.load_scheduled_refreshes()) == 1

    controller.force_refresh.return_value = succeeded
    [report] = await scheduler.run_once(due + timedelta(days=1, minutes=1))

    assert report.refreshed
    assert await repository.load_scheduled_refreshes() == []
    assert controller.force_refresh.await_count == 2
