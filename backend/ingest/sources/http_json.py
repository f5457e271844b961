"""
JSON feed source.

Reads a list of fixture objects (or {"fixtures": [...]}) over HTTP. Both the
snake_case field names of RawFixtureRecord and the camelCase names used by
the web frontend feed (homeTeam, matchweek, competitionRound, ...) are accepted.
"""
from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from shared.models.enums import Resource
from shared.utils.http_client import SourceHTTPClient
from shared.utils.logging import get_logger

from ingest.sources.base import FixtureSource, RawRow

logger = get_logger(__name__)

RowMapper = Callable[[Mapping[str, Any]], Mapping[str, Any]]

_FIELD_ALIASES = {
    "homeTeam": "home_team",
    "awayTeam": "away_team",
    "homeScore": "home_score",
    "awayScore": "away_score",
    "date": "kickoff",
    "kickoffTime": "kickoff",
    "matchweek": "round_number",
    "round": "round_number",
    "competitionRound": "round_label",
    "observedAt": "observed_at",
}


def map_feed_row(row: Mapping[str, Any]) -> dict[str, Any]:
    mapped: dict[str, Any] = {}
    for key, value in row.items():
        target = _FIELD_ALIASES.get(key, key)
        if target in mapped and mapped[target] is not None:
            continue
        mapped[target] = value
    return mapped


class HttpJsonSource(FixtureSource):
    def __init__(
        self,
        name: str,
        url: str,
        competition: Optional[str] = None,
        client: Optional[SourceHTTPClient] = None,
        row_mapper: RowMapper = map_feed_row,
        resources: Iterable[str] = (Resource.FIXTURES.value,),
        timeout_s: float = 20.0,
    ) -> None:
        super().__init__(name, resources)
        self._url = url
        self._competition = competition
        self._client = client or SourceHTTPClient(name, timeout_s=timeout_s)
        self._row_mapper = row_mapper

    async def start(self) -> None:
        await self._client.start()

    async def close(self) -> None:
        await self._client.close()

    async def fetch(self, resource: str) -> Sequence[RawRow]:
        payload = await self._client.get_json(self._url, params={"resource": resource})
        if isinstance(payload, Mapping):
            payload = payload.get("fixtures", payload.get("data"))
        if not isinstance(payload, list):
            raise ValueError(f"{self.name}: expected a list of fixtures, got {type(payload).__name__}")

        rows: list[RawRow] = []
        for item in payload:
            if not isinstance(item, Mapping):
                logger.warning("feed_row_not_object", source=self.name, row_type=type(item).__name__)
                continue
            row = dict(self._row_mapper(item))
            row.setdefault("source", self.name)
            if self._competition and not row.get("competition"):
                row["competition"] = self._competition
            rows.append(row)
        return rows
