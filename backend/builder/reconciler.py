"""
Fixture reconciler.

Merges the stored canonical fixtures with a batch of raw observations so that
exactly one fixture exists per identity key (home, away, date, competition).

Precedence between two observations of the same match is the fixture score:
    finished with scores > finished without scores > live > scheduled,
    then non-empty season, then a known round, then the later observation.
A raw observation overwrites status, scores and kickoff only when it ranks
strictly higher; season and round metadata only ever fill blanks.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from shared.errors import ReconciliationWarning
from shared.models.domain import (
    CanonicalFixture,
    FixtureKey,
    RawFixtureRecord,
    season_label_for,
)
from shared.models.enums import FixtureStatus
from shared.utils.logging import get_logger

from ingest.normalization.names import canonicalize, is_derby

logger = get_logger(__name__)

FixtureScore = tuple[int, bool, bool, datetime]

_METADATA_FIELDS = ("season", "round_number", "round_label")


def status_rank(status: FixtureStatus, has_scores: bool) -> int:
    if status == FixtureStatus.FINISHED:
        return 3 if has_scores else 2
    if status == FixtureStatus.LIVE:
        return 1
    return 0


def fixture_score(item: CanonicalFixture | RawFixtureRecord) -> FixtureScore:
    """Total order used to pick a keeper among observations of one match."""
    return (
        status_rank(item.status or FixtureStatus.SCHEDULED, item.has_scores),
        bool(item.season),
        bool(item.round_number) or bool(item.round_label),
        item.observed_at,
    )


def _raw_score_against(raw: RawFixtureRecord, current: CanonicalFixture) -> FixtureScore:
    # Metadata the raw record lacks would be filled from the current fixture,
    # so it does not count against the raw record.
    return (
        status_rank(raw.status or FixtureStatus.SCHEDULED, raw.has_scores),
        bool(raw.season or current.season),
        bool(raw.round_number or raw.round_label or current.round_number or current.round_label),
        raw.observed_at,
    )


@dataclass
class ReconcileResult:
    fixtures: list[CanonicalFixture] = field(default_factory=list)
    created: list[FixtureKey] = field(default_factory=list)
    updated: list[FixtureKey] = field(default_factory=list)
    deleted: list[FixtureKey] = field(default_factory=list)
    warnings: list[ReconciliationWarning] = field(default_factory=list)

    @property
    def changed(self) -> list[CanonicalFixture]:
        """Fixtures that must be written back (created or updated)."""
        dirty = set(self.created) | set(self.updated)
        return [f for f in self.fixtures if f.key in dirty]

    @property
    def counts(self) -> dict[str, int]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "deleted": len(self.deleted),
            "total": len(self.fixtures),
        }


def raw_key(raw: RawFixtureRecord) -> FixtureKey:
    if not isinstance(raw.kickoff, datetime):
        raise ValueError(f"malformed kickoff for {raw.home_team} v {raw.away_team}: {raw.kickoff!r}")
    return FixtureKey(canonicalize(raw.home_team), canonicalize(raw.away_team), raw.kickoff.date(), raw.competition)


def canonical_key(fixture: CanonicalFixture) -> FixtureKey:
    return FixtureKey(
        canonicalize(fixture.home_team),
        canonicalize(fixture.away_team),
        fixture.match_date,
        fixture.competition,
    )


def _fill_metadata(target: dict[str, Any], source: CanonicalFixture | RawFixtureRecord) -> None:
    for name in _METADATA_FIELDS:
        if not target.get(name) and getattr(source, name):
            target[name] = getattr(source, name)


def _from_raw(key: FixtureKey, raw: RawFixtureRecord, warnings: list[ReconciliationWarning]) -> CanonicalFixture:
    status = raw.status or FixtureStatus.SCHEDULED
    needs_review = False
    if status == FixtureStatus.FINISHED and not raw.has_scores:
        status = FixtureStatus.SCHEDULED
        needs_review = True
        warnings.append(_finished_without_score(key, raw))
    return CanonicalFixture(
        home_team=key.home_team,
        away_team=key.away_team,
        match_date=key.match_date,
        competition=key.competition,
        kickoff=raw.kickoff,
        status=status,
        home_score=raw.home_score if status != FixtureStatus.SCHEDULED else None,
        away_score=raw.away_score if status != FixtureStatus.SCHEDULED else None,
        round_number=raw.round_number or None,
        round_label=raw.round_label,
        season=raw.season,
        observed_at=raw.observed_at,
        source=raw.source,
        needs_review=needs_review,
    )


def _finished_without_score(key: FixtureKey, raw: RawFixtureRecord) -> ReconciliationWarning:
    return ReconciliationWarning(
        kind="finished_without_score",
        message=f"{raw.source} reports {key.home_team} v {key.away_team} finished without a score",
        fixture_key=str(key),
        details={"source": raw.source, "observed_at": raw.observed_at.isoformat()},
    )


def _merge_raw(
    current: CanonicalFixture,
    raw: RawFixtureRecord,
    warnings: list[ReconciliationWarning],
) -> CanonicalFixture:
    updates: dict[str, Any] = {}

    unscored_finish = raw.status == FixtureStatus.FINISHED and not raw.has_scores
    wins = _raw_score_against(raw, current) > fixture_score(current)
    if unscored_finish and raw.observed_at <= current.observed_at:
        wins = False

    if wins:
        kickoff = raw.kickoff
        if raw.date_only and current.kickoff.date() == raw.kickoff.date():
            kickoff = current.kickoff
        updates.update(kickoff=kickoff, observed_at=raw.observed_at, source=raw.source)
        if unscored_finish:
            updates["needs_review"] = True
            warnings.append(_finished_without_score(current.key, raw))
        elif raw.status == FixtureStatus.LIVE and not raw.has_scores:
            # No score in the observation: keep the running score, or start at 0-0.
            if current.status == FixtureStatus.LIVE:
                updates["status"] = FixtureStatus.LIVE
            else:
                updates.update(status=FixtureStatus.LIVE, home_score=0, away_score=0)
        else:
            updates.update(status=raw.status, home_score=raw.home_score, away_score=raw.away_score)

    merged = {name: getattr(current, name) for name in _METADATA_FIELDS}
    _fill_metadata(merged, raw)
    for name, value in merged.items():
        if value != getattr(current, name):
            updates[name] = value

    return current.model_copy(update=updates) if updates else current


def _finalize(fixture: CanonicalFixture) -> CanonicalFixture:
    updates: dict[str, Any] = {}
    if not fixture.season:
        updates["season"] = season_label_for(fixture.kickoff)
    derby = is_derby(fixture.home_team, fixture.away_team)
    if derby != fixture.is_derby:
        updates["is_derby"] = derby
    return fixture.model_copy(update=updates) if updates else fixture


def _resolve_existing(
    key: FixtureKey,
    group: list[CanonicalFixture],
    result: ReconcileResult,
) -> CanonicalFixture:
    ranked = sorted(group, key=fixture_score, reverse=True)
    keeper, losers = ranked[0], ranked[1:]
    merged = {name: getattr(keeper, name) for name in _METADATA_FIELDS}
    for loser in losers:
        _fill_metadata(merged, loser)
        result.deleted.append(loser.key)
        logger.info(
            "duplicate_fixture_superseded",
            keeper=str(keeper.key),
            superseded=str(loser.key),
            keeper_source=keeper.source,
            superseded_source=loser.source,
        )
    if keeper.key != key:
        result.deleted.append(keeper.key)
    return keeper.model_copy(update={**merged, "home_team": key.home_team, "away_team": key.away_team})


def reconcile(
    existing: Sequence[CanonicalFixture],
    incoming: Iterable[RawFixtureRecord],
) -> ReconcileResult:
    """
    Reconcile stored fixtures with raw observations.

    Returns every canonical fixture after the merge, the keys created, updated
    and superseded, and non-fatal warnings. Replaying the same input against
    the output changes nothing.

    Raises:
        ValueError: an observation carries a malformed kickoff.
    """
    result = ReconcileResult()

    existing_groups: dict[FixtureKey, list[CanonicalFixture]] = {}
    for fixture in existing:
        existing_groups.setdefault(canonical_key(fixture), []).append(fixture)

    raw_groups: dict[FixtureKey, list[RawFixtureRecord]] = {}
    for raw in incoming:
        raw_groups.setdefault(raw_key(raw), []).append(raw)

    all_keys = sorted(
        set(existing_groups) | set(raw_groups),
        key=lambda k: (k.match_date, k.home_team, k.away_team, k.competition),
    )
    for key in all_keys:
        stored = existing_groups.get(key, [])
        raws = sorted(raw_groups.get(key, []), key=fixture_score)

        original: Optional[CanonicalFixture] = None
        current: Optional[CanonicalFixture] = None
        if stored:
            current = _resolve_existing(key, stored, result)
            original = stored[0] if len(stored) == 1 and stored[0].key == key else None

        for raw in raws:
            if current is None:
                current = _from_raw(key, raw, result.warnings)
            else:
                current = _merge_raw(current, raw, result.warnings)

        assert current is not None
        current = _finalize(current)
        result.fixtures.append(current)

        if not stored:
            result.created.append(key)
        elif original is None or current != original:
            result.updated.append(key)

    result.fixtures.sort(key=lambda f: (f.kickoff, f.home_team, f.away_team))
    logger.info("reconcile_complete", **result.counts, warnings=len(result.warnings))
    return result
