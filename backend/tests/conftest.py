"""Shared fixtures: record factories, scripted sources and an in-memory store."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

import pytest

from shared.config import Settings
from shared.models.domain import CanonicalFixture, RawFixtureRecord
from shared.models.enums import FixtureStatus
from shared.repository import FixtureRepository
from shared.storage import MemoryStorage

from ingest.sources.base import CallableSource

KICKOFF = datetime(2025, 1, 10, 15, 0, tzinfo=timezone.utc)
OBSERVED = datetime(2025, 1, 9, 12, 0, tzinfo=timezone.utc)
LEAGUE = "Premier League"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="memory://",
        source_order=["primary", "backup"],
        source_timeout_s=1.0,
        freshness_threshold_s=25 * 60,
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def repository(storage: MemoryStorage) -> FixtureRepository:
    return FixtureRepository(storage)


@pytest.fixture
def make_raw() -> Callable[..., RawFixtureRecord]:
    def _make(
        home: str = "Manchester United",
        away: str = "Chelsea",
        kickoff: datetime = KICKOFF,
        **fields: Any,
    ) -> RawFixtureRecord:
        data: dict[str, Any] = {
            "home_team": home,
            "away_team": away,
            "kickoff": kickoff,
            "competition": LEAGUE,
            "source": "primary",
            "observed_at": OBSERVED,
        }
        data.update(fields)
        return RawFixtureRecord.model_validate(data)

    return _make


@pytest.fixture
def make_fixture() -> Callable[..., CanonicalFixture]:
    def _make(
        home: str = "Manchester United",
        away: str = "Chelsea",
        kickoff: datetime = KICKOFF,
        **fields: Any,
    ) -> CanonicalFixture:
        data: dict[str, Any] = {
            "home_team": home,
            "away_team": away,
            "match_date": kickoff.date(),
            "kickoff": kickoff,
            "competition": LEAGUE,
            "status": FixtureStatus.SCHEDULED,
            "season": "2024/2025",
            "observed_at": OBSERVED,
            "source": "primary",
        }
        data.update(fields)
        return CanonicalFixture.model_validate(data)

    return _make


@pytest.fixture
def make_source() -> Callable[..., CallableSource]:
    """Scripted source; the returned object records each resource it was asked for in `.calls`."""

    def _make(
        name: str,
        rows: Optional[Sequence[Any]] = None,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ) -> CallableSource:
        calls: list[str] = []

        async def fetch(resource: str) -> list[Any]:
            calls.append(resource)
            if delay:
                await asyncio.sleep(delay)
            if error is not None:
                raise error
            return list(rows or [])

        source = CallableSource(name, fetch)
        source.calls = calls  # type: ignore[attr-defined]
        return source

    return _make


@pytest.fixture
def feed_rows() -> list[dict[str, Any]]:
    """A small scraped feed as plain rows, names spelled the way sources spell them."""
    return [
        {"home_team": "Man Utd", "away_team": "Chelsea", "kickoff": "2025-01-10T15:00:00Z", "competition": LEAGUE},
        {"home_team": "Arsenal", "away_team": "Spurs", "kickoff": "2025-01-11T17:30:00Z", "competition": LEAGUE},
        {
            "home_team": "Liverpool",
            "away_team": "Wolves",
            "kickoff": "2025-01-04T15:00:00Z",
            "competition": LEAGUE,
            "home_score": 2,
            "away_score": 0,
        },
    ]
