"""
Tests for the JSON feed source and the per-source circuit breaker.

Run: pytest backend/tests/test_sources.py -v
"""
from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from shared.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen, CircuitState
from shared.utils.http_client import SourceHTTPClient

from ingest.orchestrator import ScrapeOrchestrator
from ingest.sources.http_json import HttpJsonSource, map_feed_row

FEED_URL = "https://feeds.example.test/fixtures.json"


def _source(payload: Any, status: int = 200, name: str = "onefootball") -> HttpJsonSource:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["resource"] == "fixtures"
        return httpx.Response(status, content=json.dumps(payload).encode(), headers={"content-type": "application/json"})

    client = SourceHTTPClient(name, transport=httpx.MockTransport(handler))
    return HttpJsonSource(name, FEED_URL, competition="Premier League", client=client)


# ── Feed mapping ────────────────────────────────────────────────────────

def test_map_feed_row_accepts_camel_case() -> None:
    row = map_feed_row(
        {"homeTeam": "Man Utd", "awayTeam": "Chelsea", "date": "2025-01-10T15:00:00Z", "matchweek": 21, "homeScore": 2, "awayScore": 1}
    )
    assert row == {
        "home_team": "Man Utd",
        "away_team": "Chelsea",
        "kickoff": "2025-01-10T15:00:00Z",
        "round_number": 21,
        "home_score": 2,
        "away_score": 1,
    }


def test_map_feed_row_keeps_first_non_null_alias() -> None:
    row = map_feed_row({"kickoff": None, "date": "2025-01-10", "kickoffTime": "2025-01-10T15:00:00Z"})
    assert row["kickoff"] == "2025-01-10"


@pytest.mark.asyncio
async def test_http_source_reads_wrapped_list() -> None:
    source = _source(
        {
            "fixtures": [
                {"homeTeam": "Arsenal", "awayTeam": "Spurs", "date": "2025-01-11T17:30:00Z"},
                "not a fixture",
            ]
        }
    )
    try:
        rows = await source.fetch("fixtures")
    finally:
        await source.close()

    assert len(rows) == 1
    assert rows[0]["source"] == "onefootball"
    assert rows[0]["competition"] == "Premier League"


@pytest.mark.asyncio
async def test_http_source_rejects_unexpected_payload() -> None:
    source = _source({"message": "maintenance"})
    with pytest.raises(ValueError):
        await source.fetch("fixtures")
    await source.close()


@pytest.mark.asyncio
async def test_http_error_falls_through_orchestrator() -> None:
    broken = _source({"error": "unavailable"}, status=503)
    working = _source([{"homeTeam": "Arsenal", "awayTeam": "Spurs", "date": "2025-01-11"}], name="rezultati")
    orchestrator = ScrapeOrchestrator([broken, working])

    result = await orchestrator.fetch("fixtures")
    await orchestrator.close()

    assert result.source == "rezultati"
    assert result.records[0].home_team == "Arsenal"
    assert result.records[0].date_only is True


# ── Circuit breaker ─────────────────────────────────────────────────────

class Tick:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def _fail() -> None:
    raise ConnectionError("refused")


async def _ok() -> str:
    return "ok"


@pytest.mark.asyncio
async def test_breaker_opens_after_threshold_and_retries_after_cooldown() -> None:
    tick = Tick()
    breaker = CircuitBreaker("rezultati", failure_threshold=2, recovery_timeout_s=300, clock=tick)

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)
    assert breaker.state == CircuitState.OPEN

    with pytest.raises(CircuitBreakerOpen) as exc_info:
        await breaker.call(_ok)
    assert exc_info.value.retry_after == pytest.approx(300)

    tick.now = 301
    assert breaker.state == CircuitState.HALF_OPEN
    assert await breaker.call(_ok) == "ok"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_failed_trial_fetch_reopens() -> None:
    tick = Tick()
    breaker = CircuitBreaker("sofascore", failure_threshold=1, recovery_timeout_s=60, clock=tick)
    with pytest.raises(ConnectionError):
        await breaker.call(_fail)

    tick.now = 61
    with pytest.raises(ConnectionError):
        await breaker.call(_fail)

    assert breaker.state == CircuitState.OPEN
    assert breaker.stats["failure_count"] == 2
