"""
Round assignment for one competition and season.

League: fixtures are numbered chronologically in fixed-size rounds. A repair
pass then moves postponed matches out of rounds they overfill or where one of
their teams already plays.
Knockout: the source's round label is kept verbatim; labels are ordered for
display by their earliest kickoff.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from shared.config import Settings, get_settings
from shared.errors import ReconciliationWarning
from shared.models.domain import CanonicalFixture, FixtureKey
from shared.models.enums import RoundStrategy
from shared.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RoundAssignment:
    fixtures: list[CanonicalFixture] = field(default_factory=list)
    warnings: list[ReconciliationWarning] = field(default_factory=list)
    needs_review: list[FixtureKey] = field(default_factory=list)
    label_order: list[str] = field(default_factory=list)


def _scope(fixtures: Sequence[CanonicalFixture]) -> tuple[str, Optional[str]]:
    scopes = {(f.competition, f.season) for f in fixtures}
    if len(scopes) > 1:
        raise ValueError(f"round assignment needs one competition and season, got {sorted(scopes, key=str)}")
    return next(iter(scopes))


def _chronological(fixtures: Sequence[CanonicalFixture]) -> list[CanonicalFixture]:
    return sorted(fixtures, key=lambda f: (f.kickoff, f.home_team, f.away_team))


def _modal_date(dates: Sequence[date]) -> date:
    counts = Counter(dates)
    best = max(counts.values())
    return min(d for d, n in counts.items() if n == best)


class RoundAssigner:
    """
    Args:
        round_size: Fixtures per league round (R).
        max_rounds: Highest league round number.
        repair: Move fixtures out of over-full or clashing rounds; when off they are only flagged.
    """

    def __init__(self, round_size: int = 10, max_rounds: int = 38, repair: bool = True) -> None:
        if round_size < 1 or max_rounds < 1:
            raise ValueError("round_size and max_rounds must be positive")
        self.round_size = round_size
        self.max_rounds = max_rounds
        self.repair = repair

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RoundAssigner":
        settings = settings or get_settings()
        return cls(round_size=settings.round_size, max_rounds=settings.max_rounds, repair=settings.repair_rounds)

    def assign(
        self,
        fixtures: Sequence[CanonicalFixture],
        strategy: RoundStrategy = RoundStrategy.LEAGUE,
        use_source_rounds: bool = False,
    ) -> RoundAssignment:
        """
        Assign rounds to fixtures of a single competition and season.

        Raises:
            ValueError: fixtures span more than one competition or season.
        """
        if not fixtures:
            return RoundAssignment()
        competition, season = _scope(fixtures)
        if strategy == RoundStrategy.KNOCKOUT:
            result = self._assign_knockout(fixtures)
        else:
            result = self._assign_league(fixtures, use_source_rounds)
        logger.info(
            "rounds_assigned",
            competition=competition,
            season=season,
            strategy=strategy.value,
            fixtures=len(result.fixtures),
            flagged=len(result.needs_review),
            warnings=len(result.warnings),
        )
        return result

    # ── League ──────────────────────────────────────────────────────────
    def _clamp(self, number: int) -> int:
        return max(1, min(number, self.max_rounds))

    def _assign_league(self, fixtures: Sequence[CanonicalFixture], use_source_rounds: bool) -> RoundAssignment:
        result = RoundAssignment()
        ordered = _chronological(fixtures)
        rounds: list[int] = []
        for index, fixture in enumerate(ordered):
            if use_source_rounds and fixture.round_number:
                rounds.append(self._clamp(fixture.round_number))
            else:
                rounds.append(self._clamp(index // self.round_size + 1))

        expected = self.round_size * self.max_rounds
        if len(ordered) != expected:
            result.warnings.append(
                ReconciliationWarning(
                    kind="fixture_count_mismatch",
                    message=f"{ordered[0].competition} {ordered[0].season}: {len(ordered)} fixtures, expected {expected}",
                    details={"count": len(ordered), "expected": expected},
                )
            )

        flagged = self._repair(ordered, rounds, result)

        result.warnings.extend(self._elapsed_weeks_check(ordered, rounds))

        for index, fixture in enumerate(ordered):
            updates: dict[str, object] = {}
            if fixture.round_number != rounds[index]:
                updates["round_number"] = rounds[index]
            if index in flagged and not fixture.needs_review:
                updates["needs_review"] = True
            result.fixtures.append(fixture.model_copy(update=updates) if updates else fixture)
        result.needs_review = [ordered[i].key for i in sorted(flagged)]
        return result

    def _surplus(self, ordered: list[CanonicalFixture], indexes: list[int]) -> list[int]:
        """Members to pull out of one round: clashing members first, then any excess over the round size."""
        if not indexes:
            return []
        modal = _modal_date([ordered[i].match_date for i in indexes])

        def furthest(i: int) -> tuple[int, float, int]:
            return (-abs((ordered[i].match_date - modal).days), -ordered[i].kickoff.timestamp(), i)

        kept = list(indexes)
        pulled: list[int] = []
        while True:
            seen = Counter(team for i in kept for team in (ordered[i].home_team, ordered[i].away_team))
            clashing = [i for i in kept if seen[ordered[i].home_team] > 1 or seen[ordered[i].away_team] > 1]
            if not clashing:
                break
            loser = min(clashing, key=furthest)
            kept.remove(loser)
            pulled.append(loser)
        excess = len(kept) - self.round_size
        if excess > 0:
            pulled.extend(sorted(kept, key=furthest)[:excess])
        return pulled

    def _repair(self, ordered: list[CanonicalFixture], rounds: list[int], result: RoundAssignment) -> set[int]:
        """
        Re-seat fixtures that overfill a round or put a team in it twice. Mutates rounds.

        Every such fixture is pulled first, then placed in the nearest round
        with room where neither of its teams plays. A fixture with no such
        round stays where it was and is flagged. With repair off, nothing
        moves and every pulled fixture is flagged.
        """
        members: dict[int, list[int]] = {r: [] for r in range(1, self.max_rounds + 1)}
        for index, number in enumerate(rounds):
            members[number].append(index)

        pulled: list[tuple[int, int]] = []
        for number in range(1, self.max_rounds + 1):
            for index in self._surplus(ordered, members[number]):
                members[number].remove(index)
                pulled.append((index, number))

        def teams_in(number: int) -> set[str]:
            out: set[str] = set()
            for i in members[number]:
                out.update((ordered[i].home_team, ordered[i].away_team))
            return out

        flagged: set[int] = set()
        for index, origin in sorted(pulled):
            fixture = ordered[index]
            targets: list[int] = []
            if self.repair:
                targets = [
                    t
                    for t in members
                    if len(members[t]) < self.round_size
                    and not ({fixture.home_team, fixture.away_team} & teams_in(t))
                ]
            if targets:
                target = min(targets, key=lambda t: (abs(t - origin), t))
                if target != origin:
                    logger.info(
                        "fixture_moved_between_rounds",
                        fixture=str(fixture.key),
                        from_round=origin,
                        to_round=target,
                    )
            else:
                target = origin
                flagged.add(index)
                result.warnings.append(
                    ReconciliationWarning(
                        kind="unassignable_round",
                        message=f"no round can take {fixture.home_team} v {fixture.away_team} out of round {origin}",
                        fixture_key=str(fixture.key),
                        details={"round": origin},
                    )
                )
            members[target].append(index)
            rounds[index] = target
        return flagged

    def _elapsed_weeks_check(self, ordered: list[CanonicalFixture], rounds: list[int]) -> list[ReconciliationWarning]:
        first = ordered[0].match_date
        disagreements = [
            str(fixture.key)
            for fixture, number in zip(ordered, rounds)
            if self._clamp((fixture.match_date - first).days // 7 + 1) != number
        ]
        if not disagreements:
            return []
        return [
            ReconciliationWarning(
                kind="round_inference_disagreement",
                message=f"{len(disagreements)} fixtures fall in a different round by elapsed weeks",
                details={"fixture_keys": disagreements},
            )
        ]

    # ── Knockout ────────────────────────────────────────────────────────
    def _assign_knockout(self, fixtures: Sequence[CanonicalFixture]) -> RoundAssignment:
        result = RoundAssignment()
        earliest: dict[str, CanonicalFixture] = {}
        for fixture in _chronological(fixtures):
            if fixture.round_label:
                earliest.setdefault(fixture.round_label, fixture)
                result.fixtures.append(fixture)
                continue
            result.needs_review.append(fixture.key)
            result.warnings.append(
                ReconciliationWarning(
                    kind="unlabelled_knockout_round",
                    message=f"{fixture.home_team} v {fixture.away_team} has no round label",
                    fixture_key=str(fixture.key),
                )
            )
            result.fixtures.append(fixture if fixture.needs_review else fixture.model_copy(update={"needs_review": True}))
        result.label_order = sorted(earliest, key=lambda label: (earliest[label].kickoff, label))
        return result


def assign_rounds(
    fixtures: Sequence[CanonicalFixture],
    strategy: RoundStrategy = RoundStrategy.LEAGUE,
    round_size: int = 10,
    max_rounds: int = 38,
    repair: bool = True,
) -> list[CanonicalFixture]:
    """Functional shortcut returning only the fixtures."""
    return RoundAssigner(round_size, max_rounds, repair).assign(fixtures, strategy).fixtures
