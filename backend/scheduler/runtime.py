"""
Process wiring: storage, sources, pipelines, freshness controller and scheduler.

Shared by the API lifespan and the standalone scheduler/pipeline entrypoints
so every process assembles the same object graph from Settings.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Mapping, Optional

from shared.config import Settings, get_settings
from shared.repository import FixtureRepository
from shared.storage import MemoryStorage, SqlStorage, StorageBackend
from shared.utils.database import DatabaseManager, connect_with_retry
from shared.utils.logging import get_logger

from builder.pipeline import FixturePipeline
from builder.rounds import RoundAssigner
from builder.standings import StandingsPipeline
from ingest.orchestrator import ScrapeOrchestrator
from ingest.sources.base import FixtureSource
from ingest.sources.http_json import HttpJsonSource
from scheduler.freshness import FreshnessController, utc_now
from scheduler.service import RefreshScheduler

logger = get_logger(__name__)

MEMORY_URL_PREFIX = "memory://"


def build_sources(settings: Settings) -> dict[str, FixtureSource]:
    """One JSON feed source per configured feed URL."""
    return {
        name: HttpJsonSource(
            name,
            url,
            competition=settings.league_competition,
            timeout_s=settings.source_timeout_s,
        )
        for name, url in settings.source_feed_urls.items()
    }


class Runtime:
    def __init__(
        self,
        settings: Settings | None = None,
        storage: Optional[StorageBackend] = None,
        sources: Optional[Mapping[str, FixtureSource]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or get_settings()
        self.db: Optional[DatabaseManager] = None
        if storage is None:
            if self.settings.database_url.startswith(MEMORY_URL_PREFIX):
                storage = MemoryStorage()
            else:
                self.db = DatabaseManager(self.settings)
                storage = SqlStorage(self.db)
        self.storage = storage
        self.repository = FixtureRepository(storage)

        available = dict(sources) if sources is not None else build_sources(self.settings)
        if not available:
            logger.warning("no_fixture_sources_configured")
        self.orchestrator = ScrapeOrchestrator.from_settings(available, self.settings)
        self.pipeline = FixturePipeline(
            self.orchestrator,
            self.repository,
            RoundAssigner.from_settings(self.settings),
            self.settings,
        )
        self.standings = StandingsPipeline(self.repository, self.settings)
        self.controller = FreshnessController(
            self.repository,
            {self.pipeline.resource: self.pipeline, self.standings.resource: self.standings},
            threshold_s=self.settings.freshness_threshold_s,
            clock=clock,
        )
        self.scheduler = RefreshScheduler(self.repository, self.controller, self.settings, clock)

    async def start(self) -> None:
        if self.db is not None:
            await connect_with_retry(self.db.connect, "Database")
        await self.orchestrator.start()

    async def close(self) -> None:
        self.scheduler.request_shutdown()
        await self.controller.registry.cancel_all()
        await self.orchestrator.close()
        if self.db is not None:
            await self.db.disconnect()
