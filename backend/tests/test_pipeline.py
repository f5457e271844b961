"""
Tests for the refresh pipeline: fetch, reconcile, assign rounds, persist.

Run: pytest backend/tests/test_pipeline.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Sequence

import pytest

from shared.config import Settings
from shared.errors import PersistenceError, SourceUnavailable
from shared.models.domain import CanonicalFixture, RawFixtureRecord
from shared.models.enums import FixtureStatus, LeagueRoundSource, RoundStrategy
from shared.repository import FIXTURE_KEY_COLUMNS, FIXTURES_TABLE, FixtureRepository, fixture_to_row
from shared.storage import MemoryStorage

from builder.pipeline import FixturePipeline
from ingest.orchestrator import ScrapeOrchestrator
from ingest.sources.base import CallableSource

MakeRaw = Callable[..., RawFixtureRecord]


def _pipeline(settings: Settings, repository: FixtureRepository, *sources: CallableSource) -> FixturePipeline:
    return FixturePipeline(ScrapeOrchestrator(list(sources)), repository, settings=settings)


@pytest.fixture
def raws(make_raw: MakeRaw) -> list[RawFixtureRecord]:
    return [
        make_raw("Man Utd", "Chelsea"),
        make_raw("Arsenal", "Spurs", kickoff=datetime(2025, 1, 11, 17, 30, tzinfo=timezone.utc)),
        make_raw("Liverpool", "Wolves", kickoff=datetime(2025, 1, 4, 15, 0, tzinfo=timezone.utc), home_score=2, away_score=0),
    ]


@pytest.mark.asyncio
async def test_run_persists_reconciled_fixtures(
    settings: Settings,
    repository: FixtureRepository,
    make_source: Callable[..., CallableSource],
    raws: list[RawFixtureRecord],
) -> None:
    pipeline = _pipeline(settings, repository, make_source("primary", rows=raws))

    outcome = await pipeline.run()

    assert outcome.source == "primary"
    assert outcome.updated_counts == {"created": 3, "updated": 0, "deleted": 0, "total": 3}
    stored = await repository.load_fixtures()
    assert sorted(f.home_team for f in stored) == ["Arsenal", "Liverpool", "Manchester United"]
    assert all(f.round_number == 1 for f in stored)
    assert "fixture_count_mismatch" in [w.kind for w in outcome.warnings]


@pytest.mark.asyncio
async def test_second_run_with_same_observations_changes_nothing(
    settings: Settings,
    repository: FixtureRepository,
    make_source: Callable[..., CallableSource],
    raws: list[RawFixtureRecord],
) -> None:
    pipeline = _pipeline(settings, repository, make_source("primary", rows=raws))
    await pipeline.run()

    outcome = await pipeline.run()

    assert outcome.updated_counts == {"created": 0, "updated": 0, "deleted": 0, "total": 3}


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(
    settings: Settings,
    storage: MemoryStorage,
    repository: FixtureRepository,
    make_source: Callable[..., CallableSource],
    raws: list[RawFixtureRecord],
) -> None:
    pipeline = _pipeline(settings, repository, make_source("primary", rows=raws))

    outcome = await pipeline.run(dry_run=True)

    assert outcome.dry_run is True
    assert outcome.created == 3
    assert len(outcome.fixtures) == 3
    assert await storage.select_where(FIXTURES_TABLE) == []


@pytest.mark.asyncio
async def test_alias_keyed_rows_are_replaced(
    settings: Settings,
    storage: MemoryStorage,
    repository: FixtureRepository,
    make_source: Callable[..., CallableSource],
    make_fixture: Callable[..., CanonicalFixture],
    make_raw: MakeRaw,
) -> None:
    await repository.save_fixtures([make_fixture("Man Utd", "Chelsea")])
    finished = make_raw("Manchester United", "Chelsea", home_score=2, away_score=1, source="backup")
    pipeline = _pipeline(settings, repository, make_source("primary", rows=[finished]))

    outcome = await pipeline.run()

    assert outcome.deleted == 1
    rows = await storage.select_where(FIXTURES_TABLE)
    assert len(rows) == 1
    assert rows[0]["home_team"] == "Manchester United"
    assert rows[0]["status"] == FixtureStatus.FINISHED.value


@pytest.mark.asyncio
async def test_source_failure_propagates_and_keeps_store(
    settings: Settings,
    repository: FixtureRepository,
    make_source: Callable[..., CallableSource],
    make_fixture: Callable[..., CanonicalFixture],
) -> None:
    existing = make_fixture()
    await repository.save_fixtures([existing])
    pipeline = _pipeline(settings, repository, make_source("primary", error=RuntimeError("blocked")))

    with pytest.raises(SourceUnavailable):
        await pipeline.run()

    assert await repository.load_fixtures() == [existing]


@pytest.mark.asyncio
async def test_cup_competitions_keep_source_labels(
    settings: Settings,
    repository: FixtureRepository,
    make_source: Callable[..., CallableSource],
    make_raw: MakeRaw,
) -> None:
    cup = make_raw("Everton", "Luton", competition="FA Cup", round_label="Third Round")
    pipeline = _pipeline(settings, repository, make_source("primary", rows=[cup]))

    assert pipeline.strategy_for("FA Cup") == RoundStrategy.KNOCKOUT
    assert pipeline.strategy_for("Premier League") == RoundStrategy.LEAGUE
    outcome = await pipeline.run()

    fixture = outcome.fixtures[0]
    assert fixture.round_label == "Third Round"
    assert fixture.round_number is None


class FixtureWritesFail(MemoryStorage):
    async def upsert_by_key(self, table: str, rows: Sequence[Mapping[str, Any]], conflict_key: Sequence[str]) -> int:
        if table == FIXTURES_TABLE:
            raise PersistenceError("upsert", table, ConnectionError("connection reset"))
        return await super().upsert_by_key(table, rows, conflict_key)


@pytest.mark.asyncio
async def test_failed_write_keeps_rows_being_served(
    settings: Settings,
    make_source: Callable[..., CallableSource],
    make_fixture: Callable[..., CanonicalFixture],
    make_raw: MakeRaw,
) -> None:
    storage = FixtureWritesFail()
    stored = make_fixture("Man Utd", "Chelsea", status=FixtureStatus.FINISHED, home_score=2, away_score=1)
    await MemoryStorage.upsert_by_key(storage, FIXTURES_TABLE, [fixture_to_row(stored)], FIXTURE_KEY_COLUMNS)
    repository = FixtureRepository(storage)
    pipeline = _pipeline(settings, repository, make_source("primary", rows=[make_raw("Manchester United", "Chelsea")]))

    with pytest.raises(PersistenceError):
        await pipeline.run()

    kept = await repository.load_fixtures()
    assert [(f.home_team, f.status) for f in kept] == [("Man Utd", FixtureStatus.FINISHED)]


SEASON_START = datetime(2024, 8, 17, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "round_source, expected",
    [
        (LeagueRoundSource.CHRONOLOGICAL, {"A": 1, "C": 1, "E": 2, "G": 2, "B": 3}),
        (LeagueRoundSource.SOURCE_ROUNDS, {"A": 1, "C": 1, "E": 2, "G": 3, "B": 2}),
    ],
)
async def test_league_round_source_setting(
    repository: FixtureRepository,
    make_source: Callable[..., CallableSource],
    make_raw: MakeRaw,
    round_source: LeagueRoundSource,
    expected: dict[str, int],
) -> None:
    settings = Settings(
        _env_file=None,
        database_url="memory://",
        source_order=["primary"],
        round_size=2,
        max_rounds=3,
        league_round_source=round_source,
    )
    rows = [
        make_raw("A", "B", kickoff=SEASON_START, round_number=1),
        make_raw("C", "D", kickoff=SEASON_START + timedelta(hours=2), round_number=1),
        make_raw("E", "F", kickoff=SEASON_START + timedelta(days=3), round_number=1),
        make_raw("G", "H", kickoff=SEASON_START + timedelta(days=7), round_number=3),
        make_raw("B", "D", kickoff=SEASON_START + timedelta(days=14), round_number=2),
    ]
    pipeline = _pipeline(settings, repository, make_source("primary", rows=rows))

    outcome = await pipeline.run()

    stored = {f.home_team: f.round_number for f in await repository.load_fixtures()}
    assert stored == expected
    assert "unassignable_round" not in [w.kind for w in outcome.warnings]
