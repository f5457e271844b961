"""
League tables computed from finished canonical fixtures.

Standings are a separate resource from fixtures: a standings refresh reads
the persisted fixtures and never scrapes. Three points for a win and one
for a draw; ties on points fall back to goal difference, then goals scored,
then club name.
"""
from __future__ import annotations

from typing import Iterable

from shared.config import Settings, get_settings
from shared.models.domain import CanonicalFixture, StandingRow
from shared.models.enums import FixtureStatus, Resource
from shared.repository import FixtureRepository
from shared.utils.logging import get_logger

from builder.pipeline import RefreshOutcome

logger = get_logger(__name__)

FORM_LENGTH = 6
WIN_POINTS = 3
DRAW_POINTS = 1


def _result(goals_for: int, goals_against: int) -> str:
    if goals_for > goals_against:
        return "W"
    if goals_for < goals_against:
        return "L"
    return "D"


def compute_table(fixtures: Iterable[CanonicalFixture], competition: str, season: str) -> list[StandingRow]:
    """
    Build the table for one competition and season.

    Every club that appears in a fixture of the season gets a row, played or
    not. Only finished fixtures count towards the numbers.
    """
    members = [f for f in fixtures if f.competition == competition and f.season == season]
    tally: dict[str, dict[str, int]] = {}
    results: dict[str, list[str]] = {}
    for fixture in members:
        for club in (fixture.home_team, fixture.away_team):
            tally.setdefault(club, dict.fromkeys(("won", "drawn", "lost", "goals_for", "goals_against"), 0))
            results.setdefault(club, [])

    for fixture in sorted(members, key=lambda f: f.kickoff, reverse=True):
        if fixture.status != FixtureStatus.FINISHED or not fixture.has_scores:
            continue
        sides = (
            (fixture.home_team, fixture.home_score, fixture.away_score),
            (fixture.away_team, fixture.away_score, fixture.home_score),
        )
        for club, scored, conceded in sides:
            letter = _result(scored, conceded)
            row = tally[club]
            row["won" if letter == "W" else "lost" if letter == "L" else "drawn"] += 1
            row["goals_for"] += scored
            row["goals_against"] += conceded
            results[club].append(letter)

    def points(club: str) -> int:
        return tally[club]["won"] * WIN_POINTS + tally[club]["drawn"] * DRAW_POINTS

    def goal_difference(club: str) -> int:
        return tally[club]["goals_for"] - tally[club]["goals_against"]

    ranked = sorted(tally, key=lambda c: (-points(c), -goal_difference(c), -tally[c]["goals_for"], c))
    return [
        StandingRow(
            competition=competition,
            season=season,
            club=club,
            position=position,
            played=len(results[club]),
            goal_difference=goal_difference(club),
            points=points(club),
            form="".join(results[club][:FORM_LENGTH]),
            **tally[club],
        )
        for position, club in enumerate(ranked, start=1)
    ]


class StandingsPipeline:
    """
    Recomputes the league table from the stored fixtures.

    Args:
        repository: Persisted canonical store, read for fixtures and written for standings.
        settings: Names the league competition the table is kept for.
        resource: Resource name the controller registers this pipeline under.
    """

    def __init__(
        self,
        repository: FixtureRepository,
        settings: Settings | None = None,
        resource: str = Resource.STANDINGS.value,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self.resource = resource

    async def run(self, dry_run: bool = False) -> RefreshOutcome:
        """
        Rebuild every season's table for the league competition.

        Raises:
            PersistenceError: the store could not be read or written.
        """
        competition = self._settings.league_competition
        fixtures = await self._repository.load_fixtures(competition)
        seasons = sorted({f.season for f in fixtures if f.season})
        table = [row for season in seasons for row in compute_table(fixtures, competition, season)]

        existing = {row.key: row for row in await self._repository.load_standings(competition)}
        current = {row.key for row in table}
        created = [row for row in table if row.key not in existing]
        changed = [row for row in table if row.key in existing and existing[row.key] != row]
        stale = [key for key in existing if key not in current]

        outcome = RefreshOutcome(
            resource=self.resource,
            source=Resource.FIXTURES.value,
            created=len(created),
            updated=len(changed),
            deleted=len(stale),
            total=len(table),
            dry_run=dry_run,
        )
        if dry_run:
            logger.info("standings_dry_run", resource=self.resource, **outcome.updated_counts)
            return outcome

        await self._repository.save_standings([*created, *changed])
        await self._repository.delete_standings(stale)
        logger.info("standings_complete", resource=self.resource, seasons=len(seasons), **outcome.updated_counts)
        return outcome
