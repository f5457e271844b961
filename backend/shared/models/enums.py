"""Domain enumerations for the Fixture Calendar."""
from __future__ import annotations

from enum import Enum


class FixtureStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"


class Freshness(str, Enum):
    """Outcome reported to readers of a cached resource."""
    HIT = "hit"
    STALE_REFRESHING = "stale-refreshing"
    MISS_SCRAPED = "miss-scraped"
    ERROR = "error"


class CacheState(str, Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"


class RoundStrategy(str, Enum):
    """How round numbers are derived for a competition+season."""
    LEAGUE = "league"
    KNOCKOUT = "knockout"


class Resource(str, Enum):
    FIXTURES = "fixtures"
    STANDINGS = "standings"


class LeagueRoundSource(str, Enum):
    """Where league round numbers come from before the repair pass."""
    CHRONOLOGICAL = "chronological"
    SOURCE_ROUNDS = "source_rounds"
