"""
Post-match refresh planning.

Every scheduled fixture kicking off within the horizon, and not yet past its
due time, gets one entry due at kickoff + offset, when its result should be
available.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from shared.models.domain import CanonicalFixture, ScheduledRefresh, ensure_utc
from shared.models.enums import FixtureStatus, Resource


def plan_refreshes(
    fixtures: Iterable[CanonicalFixture],
    now: datetime,
    horizon: timedelta = timedelta(days=7),
    offset: timedelta = timedelta(minutes=120),
    resource: str = Resource.FIXTURES.value,
) -> list[ScheduledRefresh]:
    now = ensure_utc(now)
    until = now + horizon
    plan = [
        ScheduledRefresh(
            fixture_key=str(f.key),
            resource=resource,
            due_at=f.kickoff + offset,
            kickoff=f.kickoff,
            home_team=f.home_team,
            away_team=f.away_team,
        )
        for f in fixtures
        if f.status == FixtureStatus.SCHEDULED and f.kickoff <= until and f.kickoff + offset > now
    ]
    return sorted(plan, key=lambda e: (e.due_at, e.fixture_key))


def due_entries(entries: Iterable[ScheduledRefresh], now: datetime) -> list[ScheduledRefresh]:
    now = ensure_utc(now)
    return [e for e in entries if e.due_at <= now]
