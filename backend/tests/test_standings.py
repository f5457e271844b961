"""
Tests for league tables computed from stored fixtures, and for standings as a
resource refreshed separately from fixtures.

Run: pytest backend/tests/test_standings.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from shared.config import Settings
from shared.models.domain import CanonicalFixture
from shared.models.enums import FixtureStatus, Freshness
from shared.repository import FixtureRepository

from builder.standings import StandingsPipeline, compute_table
from ingest.sources.base import CallableSource
from scheduler.runtime import Runtime

MakeFixture = Callable[..., CanonicalFixture]

LEAGUE = "Premier League"
SEASON = "2024/2025"
DAY = datetime(2025, 1, 4, 15, 0, tzinfo=timezone.utc)


def _result(make_fixture: MakeFixture, home: str, away: str, days: int, score: tuple[int, int]) -> CanonicalFixture:
    return make_fixture(
        home,
        away,
        kickoff=DAY + timedelta(days=days),
        status=FixtureStatus.FINISHED,
        home_score=score[0],
        away_score=score[1],
    )


@pytest.fixture
def season(make_fixture: MakeFixture) -> list[CanonicalFixture]:
    return [
        _result(make_fixture, "Arsenal", "Chelsea", 0, (2, 0)),
        _result(make_fixture, "Liverpool", "Everton", 0, (1, 1)),
        _result(make_fixture, "Chelsea", "Liverpool", 7, (3, 1)),
        _result(make_fixture, "Everton", "Arsenal", 7, (0, 0)),
        make_fixture("Arsenal", "Liverpool", kickoff=DAY + timedelta(days=14)),
    ]


# ── Table ───────────────────────────────────────────────────────────────

def test_table_counts_finished_fixtures_only(season: list[CanonicalFixture]) -> None:
    table = compute_table(season, LEAGUE, SEASON)

    assert [row.club for row in table] == ["Arsenal", "Chelsea", "Everton", "Liverpool"]
    arsenal = table[0]
    assert (arsenal.played, arsenal.won, arsenal.drawn, arsenal.lost) == (2, 1, 1, 0)
    assert (arsenal.goals_for, arsenal.goals_against, arsenal.goal_difference, arsenal.points) == (2, 0, 2, 4)
    assert arsenal.form == "DW"
    liverpool = table[-1]
    assert (liverpool.points, liverpool.goal_difference, liverpool.form) == (1, -2, "LD")
    assert [row.position for row in table] == [1, 2, 3, 4]


def test_ties_break_on_goal_difference_then_goals_then_name(make_fixture: MakeFixture) -> None:
    fixtures = [
        _result(make_fixture, "Brentford", "Fulham", 0, (3, 2)),
        _result(make_fixture, "Brighton", "Wolves", 0, (1, 0)),
        _result(make_fixture, "Bournemouth", "Everton", 0, (1, 0)),
    ]

    table = compute_table(fixtures, LEAGUE, SEASON)

    assert [row.club for row in table[:3]] == ["Brentford", "Bournemouth", "Brighton"]


def test_form_keeps_the_latest_six_results(make_fixture: MakeFixture) -> None:
    fixtures = [_result(make_fixture, "Arsenal", f"Club {i}", i, (1, 0) if i % 2 else (0, 0)) for i in range(8)]

    arsenal = next(row for row in compute_table(fixtures, LEAGUE, SEASON) if row.club == "Arsenal")

    assert arsenal.played == 8
    assert arsenal.form == "WDWDWD"


def test_other_competitions_and_seasons_are_ignored(make_fixture: MakeFixture, season: list[CanonicalFixture]) -> None:
    cup = _result(make_fixture, "Arsenal", "Luton", 3, (5, 0)).model_copy(update={"competition": "FA Cup"})
    older = _result(make_fixture, "Arsenal", "Luton", 3, (5, 0)).model_copy(update={"season": "2023/2024"})

    table = compute_table([*season, cup, older], LEAGUE, SEASON)

    assert "Luton" not in {row.club for row in table}
    assert table[0].goals_for == 2


# ── Pipeline ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_pipeline_rebuilds_table_and_drops_stale_rows(
    settings: Settings, repository: FixtureRepository, season: list[CanonicalFixture]
) -> None:
    await repository.save_fixtures(season)
    pipeline = StandingsPipeline(repository, settings)

    first = await pipeline.run()
    assert first.updated_counts == {"created": 4, "updated": 0, "deleted": 0, "total": 4}
    assert (await pipeline.run()).updated_counts == {"created": 0, "updated": 0, "deleted": 0, "total": 4}

    await repository.delete_fixtures([f.key for f in season if "Everton" in (f.home_team, f.away_team)])
    again = await pipeline.run()

    assert again.updated_counts == {"created": 0, "updated": 2, "deleted": 1, "total": 3}
    assert [row.club for row in await repository.load_standings()] == ["Arsenal", "Chelsea", "Liverpool"]


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(
    settings: Settings, repository: FixtureRepository, season: list[CanonicalFixture]
) -> None:
    await repository.save_fixtures(season)

    outcome = await StandingsPipeline(repository, settings).run(dry_run=True)

    assert outcome.dry_run and outcome.total == 4
    assert await repository.load_standings() == []


# ── Separate resource ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_standings_refresh_separately_from_fixtures(
    settings: Settings, make_source: Callable[..., Any], feed_rows: list[dict[str, Any]]
) -> None:
    source: CallableSource = make_source("primary", rows=feed_rows)
    runtime = Runtime(settings, sources={"primary": source})
    controller = runtime.controller

    await controller.get_fixtures()
    assert source.calls == ["fixtures"]  # type: ignore[attr-defined]

    read = await controller.get_standings()
    assert read.freshness == Freshness.MISS_SCRAPED
    assert read.data[0].club == "Liverpool"
    assert source.calls == ["fixtures"]  # type: ignore[attr-defined]

    report = await controller.force_refresh("fixtures")
    assert report.refreshed
    assert (await runtime.repository.get_cache_meta("standings")) is not None
    assert (await controller.get_standings(season=SEASON)).freshness == Freshness.HIT
    assert source.calls == ["fixtures", "fixtures"]  # type: ignore[attr-defined]
    assert controller.resources == ["fixtures", "standings"]
