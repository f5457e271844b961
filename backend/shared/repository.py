"""
Typed access to the persisted fixture store on top of a StorageBackend.
Converts between domain models and flat rows.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

from pydantic import ValidationError

from shared.models.domain import CacheMeta, CanonicalFixture, FixtureKey, ScheduledRefresh, StandingRow
from shared.storage import StorageBackend
from shared.utils.logging import get_logger

logger = get_logger(__name__)

FIXTURES_TABLE = "fixtures"
CACHE_META_TABLE = "cache_meta"
SCHEDULED_REFRESHES_TABLE = "scheduled_refreshes"
STANDINGS_TABLE = "standings"

FIXTURE_KEY_COLUMNS = ("home_team", "away_team", "match_date", "competition")
STANDING_KEY_COLUMNS = ("competition", "season", "club")


def fixture_to_row(fixture: CanonicalFixture) -> dict[str, Any]:
    row = fixture.model_dump()
    row["status"] = fixture.status.value
    return row


class FixtureRepository:
    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    # ── Fixtures ────────────────────────────────────────────────────────
    async def load_fixtures(self, competition: Optional[str] = None) -> list[CanonicalFixture]:
        predicate = {"competition": competition} if competition else None
        rows = await self._storage.select_where(FIXTURES_TABLE, predicate)
        fixtures: list[CanonicalFixture] = []
        for row in rows:
            try:
                fixtures.append(CanonicalFixture.model_validate(row))
            except ValidationError as exc:
                logger.warning(
                    "stored_fixture_invalid",
                    home=row.get("home_team"),
                    away=row.get("away_team"),
                    match_date=str(row.get("match_date")),
                    error=str(exc),
                )
        return fixtures

    async def save_fixtures(self, fixtures: Sequence[CanonicalFixture]) -> int:
        if not fixtures:
            return 0
        return await self._storage.upsert_by_key(
            FIXTURES_TABLE, [fixture_to_row(f) for f in fixtures], FIXTURE_KEY_COLUMNS
        )

    async def delete_fixtures(self, keys: Iterable[FixtureKey]) -> int:
        deleted = 0
        for key in keys:
            deleted += await self._storage.delete_where(FIXTURES_TABLE, key._asdict())
        return deleted

    # ── Standings ───────────────────────────────────────────────────────
    async def load_standings(
        self, competition: Optional[str] = None, season: Optional[str] = None
    ) -> list[StandingRow]:
        predicate = {k: v for k, v in (("competition", competition), ("season", season)) if v}
        rows = await self._storage.select_where(STANDINGS_TABLE, predicate or None)
        standings = [StandingRow.model_validate(r) for r in rows]
        return sorted(standings, key=lambda s: (s.competition, s.season, s.position))

    async def save_standings(self, rows: Sequence[StandingRow]) -> int:
        if not rows:
            return 0
        return await self._storage.upsert_by_key(
            STANDINGS_TABLE, [r.model_dump() for r in rows], STANDING_KEY_COLUMNS
        )

    async def delete_standings(self, keys: Iterable[tuple[str, str, str]]) -> int:
        deleted = 0
        for key in keys:
            deleted += await self._storage.delete_where(STANDINGS_TABLE, dict(zip(STANDING_KEY_COLUMNS, key)))
        return deleted

    # ── Cache metadata ──────────────────────────────────────────────────
    async def get_cache_meta(self, resource: str) -> Optional[CacheMeta]:
        rows = await self._storage.select_where(CACHE_META_TABLE, {"resource": resource})
        return CacheMeta.model_validate(rows[0]) if rows else None

    async def put_cache_meta(self, meta: CacheMeta) -> None:
        await self._storage.upsert_by_key(CACHE_META_TABLE, [meta.model_dump()], ("resource",))

    # ── Scheduled refreshes ─────────────────────────────────────────────
    async def load_scheduled_refreshes(self) -> list[ScheduledRefresh]:
        rows = await self._storage.select_where(SCHEDULED_REFRESHES_TABLE)
        return sorted((ScheduledRefresh.model_validate(r) for r in rows), key=lambda e: e.due_at)

    async def save_scheduled_refreshes(self, entries: Sequence[ScheduledRefresh]) -> int:
        if not entries:
            return 0
        return await self._storage.upsert_by_key(
            SCHEDULED_REFRESHES_TABLE, [e.model_dump() for e in entries], ("fixture_key",)
        )

    async def delete_scheduled_refreshes(self, fixture_keys: Iterable[str]) -> int:
        keys = list(fixture_keys)
        if not keys:
            return 0
        return await self._storage.delete_where(SCHEDULED_REFRESHES_TABLE, {"fixture_key": keys})
