"""
Refresh pipeline: fetch -> reconcile -> assign rounds -> persist.

One run covers one resource. SourceUnavailable and PersistenceError propagate
so the caller can keep serving the last good data.
"""
from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import dataclass, field
from typing import Optional

from shared.config import Settings, get_settings
from shared.errors import PersistenceError, ReconciliationWarning, SourceUnavailable
from shared.models.domain import CanonicalFixture, FixtureKey
from shared.models.enums import LeagueRoundSource, Resource, RoundStrategy
from shared.repository import FixtureRepository
from shared.utils.logging import get_logger, log_warnings, setup_logging
from shared.utils.metrics import FIXTURES_WRITTEN, RECONCILE_WARNINGS

from builder.reconciler import reconcile
from builder.rounds import RoundAssigner
from ingest.orchestrator import ScrapeOrchestrator

logger = get_logger(__name__)


@dataclass
class RefreshOutcome:
    resource: str
    source: Optional[str] = None
    created: int = 0
    updated: int = 0
    deleted: int = 0
    total: int = 0
    dry_run: bool = False
    warnings: list[ReconciliationWarning] = field(default_factory=list)
    fixtures: list[CanonicalFixture] = field(default_factory=list)

    @property
    def updated_counts(self) -> dict[str, int]:
        return {"created": self.created, "updated": self.updated, "deleted": self.deleted, "total": self.total}


class FixturePipeline:
    def __init__(
        self,
        orchestrator: ScrapeOrchestrator,
        repository: FixtureRepository,
        assigner: RoundAssigner | None = None,
        settings: Settings | None = None,
        resource: str = Resource.FIXTURES.value,
    ) -> None:
        self._settings = settings or get_settings()
        self._orchestrator = orchestrator
        self._repository = repository
        self._assigner = assigner or RoundAssigner.from_settings(self._settings)
        self.resource = resource

    def strategy_for(self, competition: str) -> RoundStrategy:
        if competition == self._settings.league_competition:
            return RoundStrategy.LEAGUE
        return RoundStrategy.KNOCKOUT

    def _assign_rounds(self, fixtures: list[CanonicalFixture]) -> tuple[list[CanonicalFixture], list[ReconciliationWarning]]:
        groups: dict[tuple[str, Optional[str]], list[CanonicalFixture]] = {}
        for fixture in fixtures:
            groups.setdefault((fixture.competition, fixture.season), []).append(fixture)

        source_rounds = self._settings.league_round_source == LeagueRoundSource.SOURCE_ROUNDS
        assigned: list[CanonicalFixture] = []
        warnings: list[ReconciliationWarning] = []
        for (competition, _season), members in sorted(groups.items(), key=lambda g: (g[0][0], g[0][1] or "")):
            result = self._assigner.assign(members, self.strategy_for(competition), use_source_rounds=source_rounds)
            assigned.extend(result.fixtures)
            warnings.extend(result.warnings)
        assigned.sort(key=lambda f: (f.kickoff, f.home_team, f.away_team))
        return assigned, warnings

    async def run(self, dry_run: bool = False) -> RefreshOutcome:
        """
        Run one refresh cycle.

        With dry_run=True the outcome is computed identically but nothing is written.

        Raises:
            SourceUnavailable: no source could provide the resource.
            PersistenceError: the store could not be read or written.
        """
        fetched = await self._orchestrator.fetch(self.resource)
        existing = await self._repository.load_fixtures()
        reconciled = reconcile(existing, fetched.records)

        before = {f.key: f for f in reconciled.fixtures}
        fixtures, round_warnings = self._assign_rounds(reconciled.fixtures)

        created = set(reconciled.created)
        dirty: set[FixtureKey] = set(reconciled.updated)
        dirty.update(f.key for f in fixtures if f != before[f.key])
        dirty -= created
        final_keys = {f.key for f in fixtures}
        superseded = [k for k in dict.fromkeys(reconciled.deleted) if k not in final_keys]
        to_write = [f for f in fixtures if f.key in created or f.key in dirty]

        warnings = [*fetched.warnings, *reconciled.warnings, *round_warnings]
        outcome = RefreshOutcome(
            resource=self.resource,
            source=fetched.source,
            created=len(created),
            updated=len(dirty),
            deleted=len(superseded),
            total=len(fixtures),
            dry_run=dry_run,
            warnings=warnings,
            fixtures=fixtures,
        )

        log_warnings(logger, warnings, resource=self.resource)
        for warning in warnings:
            RECONCILE_WARNINGS.labels(kind=warning.kind).inc()

        if dry_run:
            logger.info("pipeline_dry_run", resource=self.resource, source=fetched.source, **outcome.updated_counts)
            return outcome

        # Write before deleting so a failed write leaves the served rows intact.
        # Keys re-written under their canonical form are overwritten, not deleted.
        written = await self._repository.save_fixtures(to_write)
        await self._repository.delete_fixtures(superseded)
        FIXTURES_WRITTEN.labels(resource=self.resource).inc(written)
        logger.info("pipeline_complete", resource=self.resource, source=fetched.source, **outcome.updated_counts)
        return outcome


async def main(argv: list[str] | None = None) -> int:
    """
    Run one refresh cycle from the command line.

    Usage:
      python -m builder.pipeline            # refresh and persist
      python -m builder.pipeline --dry-run  # report what would change
    """
    from scheduler.runtime import Runtime

    args = sys.argv[1:] if argv is None else argv
    dry_run = "--dry-run" in args
    setup_logging("pipeline")
    runtime = Runtime()
    await runtime.start()
    try:
        outcome = await runtime.pipeline.run(dry_run=dry_run)
    except (SourceUnavailable, PersistenceError) as exc:
        logger.error("pipeline_failed", error=str(exc))
        return 1
    finally:
        await runtime.close()
    summary = {
        "source": outcome.source,
        "dry_run": dry_run,
        **outcome.updated_counts,
        "warnings": [w.as_dict() for w in outcome.warnings],
    }
    print(json.dumps(summary, indent=2, default=str))
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
