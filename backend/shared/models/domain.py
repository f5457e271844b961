"""
Pydantic v2 domain models shared across all Fixture Calendar services.
These are the canonical wire/internal representations, not ORM models.
"""
from __future__ import annotations

import re
from datetime import date, datetime, time, timezone
from typing import Any, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.models.enums import FixtureStatus, Freshness

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def season_label_for(kickoff: datetime | date) -> str:
    """Season label such as '2024/2025'; seasons roll over on 1 August."""
    start_year = kickoff.year if kickoff.month >= 8 else kickoff.year - 1
    return f"{start_year}/{start_year + 1}"


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class FixtureKey(NamedTuple):
    """Identity of a real-world match."""
    home_team: str
    away_team: str
    match_date: date
    competition: str

    def __str__(self) -> str:
        return f"{self.home_team}|{self.away_team}|{self.match_date.isoformat()}|{self.competition}"


# ── Raw observations ────────────────────────────────────────────────────
class RawFixtureRecord(DomainModel):
    """One scraped observation of a fixture. Ephemeral, never persisted as-is."""

    home_team: str
    away_team: str
    kickoff: datetime
    date_only: bool = False
    status: Optional[FixtureStatus] = None
    home_score: Optional[int] = Field(default=None, ge=0)
    away_score: Optional[int] = Field(default=None, ge=0)
    round_label: Optional[str] = None
    round_number: Optional[int] = Field(default=None, ge=0)
    season: Optional[str] = None
    competition: str
    source: str
    observed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="before")
    @classmethod
    def expand_date_only_kickoff(cls, data: Any) -> Any:
        """A bare date becomes midnight UTC and marks the record as date-only."""
        if not isinstance(data, dict):
            return data
        kickoff = data.get("kickoff")
        if isinstance(kickoff, str) and _DATE_ONLY_RE.match(kickoff.strip()):
            kickoff = date.fromisoformat(kickoff.strip())
        if isinstance(kickoff, date) and not isinstance(kickoff, datetime):
            data = {**data, "kickoff": datetime.combine(kickoff, time(0, 0), tzinfo=timezone.utc), "date_only": True}
        return data

    @field_validator("home_team", "away_team", "competition", "source")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = " ".join(value.split())
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("kickoff", "observed_at")
    @classmethod
    def to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("round_label", "season")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def settle_status_and_scores(self) -> "RawFixtureRecord":
        if (self.home_score is None) != (self.away_score is None):
            self.home_score = None
            self.away_score = None
        has_scores = self.home_score is not None
        if self.status is None:
            self.status = FixtureStatus.FINISHED if has_scores else FixtureStatus.SCHEDULED
        elif self.status == FixtureStatus.SCHEDULED and has_scores:
            self.home_score = None
            self.away_score = None
        return self

    @property
    def has_scores(self) -> bool:
        return self.home_score is not None and self.away_score is not None

    @property
    def match_date(self) -> date:
        return self.kickoff.date()


# ── Canonical fixtures ──────────────────────────────────────────────────
class CanonicalFixture(DomainModel):
    """
    The single deduplicated record of a real match.

    The score pair is present exactly when status is not scheduled. A live
    fixture seen before any score was reported starts at 0-0.
    """

    home_team: str
    away_team: str
    match_date: date
    competition: str
    kickoff: datetime
    status: FixtureStatus = FixtureStatus.SCHEDULED
    home_score: Optional[int] = Field(default=None, ge=0)
    away_score: Optional[int] = Field(default=None, ge=0)
    round_number: Optional[int] = Field(default=None, ge=0)
    round_label: Optional[str] = None
    season: Optional[str] = None
    is_derby: bool = False
    observed_at: datetime
    source: Optional[str] = None
    needs_review: bool = False

    @field_validator("kickoff", "observed_at")
    @classmethod
    def to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def check_score_invariants(self) -> "CanonicalFixture":
        if (self.home_score is None) != (self.away_score is None):
            raise ValueError("score pair must be both-or-neither")
        if self.status == FixtureStatus.LIVE and self.home_score is None:
            self.home_score = 0
            self.away_score = 0
        if self.status == FixtureStatus.FINISHED and self.home_score is None:
            raise ValueError("finished fixture requires both scores")
        if self.status == FixtureStatus.SCHEDULED and self.home_score is not None:
            raise ValueError("scheduled fixture cannot carry scores")
        return self

    @property
    def key(self) -> FixtureKey:
        return FixtureKey(self.home_team, self.away_team, self.match_date, self.competition)

    @property
    def has_scores(self) -> bool:
        return self.home_score is not None and self.away_score is not None


class CacheMeta(DomainModel):
    """Freshness bookkeeping for one logical resource."""
    resource: str
    last_updated: datetime
    record_count: int = 0

    @field_validator("last_updated")
    @classmethod
    def to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class ScheduledRefresh(DomainModel):
    """Disposable 'recheck this match at kickoff + N minutes' entry."""
    fixture_key: str
    resource: str
    due_at: datetime
    kickoff: datetime
    home_team: str
    away_team: str

    @field_validator("due_at", "kickoff")
    @classmethod
    def to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


# ── Read path ───────────────────────────────────────────────────────────
class FixtureFilter(DomainModel):
    competitions: Optional[list[str]] = None
    season: Optional[str] = None
    team: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    round_number: Optional[int] = None
    status: Optional[FixtureStatus] = None

    def matches(self, fixture: CanonicalFixture, canonical_team: Optional[str] = None) -> bool:
        """canonical_team is the already-canonicalized form of self.team."""
        if self.competitions and fixture.competition not in self.competitions:
            return False
        if self.season and fixture.season != self.season:
            return False
        if canonical_team and canonical_team not in (fixture.home_team, fixture.away_team):
            return False
        if self.date_from and fixture.match_date < self.date_from:
            return False
        if self.date_to and fixture.match_date > self.date_to:
            return False
        if self.round_number is not None and fixture.round_number != self.round_number:
            return False
        if self.status is not None and fixture.status != self.status:
            return False
        return True


class CachedRead(DomainModel):
    data: list[CanonicalFixture] = Field(default_factory=list)
    freshness: Freshness
    last_updated: Optional[datetime] = None
    error: Optional[str] = None


class StandingRow(DomainModel):
    """One club's line in a league table derived from finished fixtures."""
    competition: str
    season: str
    club: str
    position: int = Field(ge=1)
    played: int = 0
    won: int = 0
    drawn: int = 0
    lost: int = 0
    goals_for: int = 0
    goals_against: int = 0
    goal_difference: int = 0
    points: int = 0
    form: str = ""  # most recent result first, e.g. "WWDL"

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.competition, self.season, self.club)


class CachedStandings(DomainModel):
    data: list[StandingRow] = Field(default_factory=list)
    freshness: Freshness
    last_updated: Optional[datetime] = None
    error: Optional[str] = None


class RefreshReport(DomainModel):
    """updated_counts stays empty when the refresh itself failed; errors may be set either way."""
    resource: str
    updated_counts: dict[str, int] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)

    @property
    def refreshed(self) -> bool:
        return bool(self.updated_counts)
