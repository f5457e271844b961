"""
Scrape orchestrator: priority-ordered fallback across fixture sources.

The first source that returns a non-empty, successfully parsed set wins and
later sources are not consulted. A source that errors, times out, returns
nothing usable or has an open circuit is logged and skipped. There are no
retries within a source.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

from pydantic import ValidationError

from shared.config import Settings, get_settings
from shared.errors import ReconciliationWarning, SourceUnavailable
from shared.models.domain import RawFixtureRecord
from shared.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from shared.utils.logging import get_logger
from shared.utils.metrics import SOURCE_FETCHES

from ingest.sources.base import FixtureSource, RawRow

logger = get_logger(__name__)


class EmptySourceResult(Exception):
    """Source answered but produced no valid rows."""


@dataclass
class FetchResult:
    source: str
    records: list[RawFixtureRecord]
    warnings: list[ReconciliationWarning] = field(default_factory=list)


def validate_rows(
    rows: Sequence[RawRow],
    source_name: str,
    observed_at: datetime,
) -> tuple[list[RawFixtureRecord], list[ReconciliationWarning]]:
    """Validate raw rows at the boundary. Invalid rows are skipped, never fatal."""
    records: list[RawFixtureRecord] = []
    warnings: list[ReconciliationWarning] = []
    for index, row in enumerate(rows):
        if isinstance(row, RawFixtureRecord):
            records.append(row)
            continue
        data: dict[str, Any] = dict(row)
        if not data.get("source"):
            data["source"] = source_name
        if not data.get("observed_at"):
            data["observed_at"] = observed_at
        try:
            records.append(RawFixtureRecord.model_validate(data))
        except ValidationError as exc:
            errors = "; ".join(f"{'.'.join(map(str, e['loc'])) or 'row'}: {e['msg']}" for e in exc.errors())
            logger.warning("raw_record_invalid", source=source_name, index=index, errors=errors)
            warnings.append(
                ReconciliationWarning(
                    kind="invalid_raw_record",
                    message=f"{source_name} row {index} rejected: {errors}",
                    details={"source": source_name, "index": index},
                )
            )
    return records, warnings


class ScrapeOrchestrator:
    """
    Tries sources in priority order for a resource.

    Args:
        sources: Sources in priority order.
        timeout_s: Upper bound for a single source call.
        failure_threshold / recovery_timeout_s: per-source circuit breaker tuning.
        clock: Wall clock for stamping observations, injectable for tests.
    """

    def __init__(
        self,
        sources: Sequence[FixtureSource],
        timeout_s: float = 20.0,
        failure_threshold: int = 3,
        recovery_timeout_s: float = 300.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._sources = list(sources)
        self._timeout_s = timeout_s
        self._clock = clock
        self._breakers = {
            s.name: CircuitBreaker(s.name, failure_threshold=failure_threshold, recovery_timeout_s=recovery_timeout_s)
            for s in self._sources
        }

    @classmethod
    def from_settings(
        cls,
        available: Mapping[str, FixtureSource],
        settings: Settings | None = None,
    ) -> "ScrapeOrchestrator":
        """Order the available sources by the configured priority list."""
        settings = settings or get_settings()
        ordered = [available[name] for name in settings.source_order if name in available]
        skipped = sorted(set(available) - set(settings.source_order))
        if skipped:
            logger.info("sources_not_in_priority_list", sources=skipped)
        return cls(
            ordered,
            timeout_s=settings.source_timeout_s,
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout_s=settings.circuit_recovery_s,
        )

    @property
    def sources(self) -> list[FixtureSource]:
        return list(self._sources)

    def breaker(self, source_name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(source_name)

    async def start(self) -> None:
        for source in self._sources:
            await source.start()

    async def close(self) -> None:
        for source in self._sources:
            try:
                await source.close()
            except Exception as exc:
                logger.warning("source_close_failed", source=source.name, error=str(exc))

    async def fetch_records(self, resource: str) -> list[RawFixtureRecord]:
        """Raw records for the resource from the first healthy source."""
        return (await self.fetch(resource)).records

    async def fetch(self, resource: str) -> FetchResult:
        """
        Like fetch_records, but also reports which source won and the rows it rejected.

        Raises:
            SourceUnavailable: every configured source failed.
        """
        errors: dict[str, str] = {}
        for source in self._sources:
            if not source.serves(resource):
                continue
            outcome = "error"
            start = time.perf_counter()
            try:
                result = await asyncio.wait_for(
                    self._breakers[source.name].call(self._attempt, source, resource),
                    timeout=self._timeout_s,
                )
            except CircuitBreakerOpen as exc:
                outcome = "circuit_open"
                errors[source.name] = str(exc)
            except asyncio.TimeoutError:
                outcome = "timeout"
                errors[source.name] = f"timed out after {self._timeout_s:.0f}s"
            except EmptySourceResult as exc:
                outcome = "empty"
                errors[source.name] = str(exc)
            except Exception as exc:
                errors[source.name] = f"{type(exc).__name__}: {exc}"
            else:
                SOURCE_FETCHES.labels(source=source.name, outcome="success").inc()
                logger.info(
                    "source_fetch_succeeded",
                    source=source.name,
                    resource=resource,
                    records=len(result.records),
                    rejected=len(result.warnings),
                    latency_ms=round((time.perf_counter() - start) * 1000, 2),
                )
                return result

            SOURCE_FETCHES.labels(source=source.name, outcome=outcome).inc()
            logger.warning(
                "source_fetch_failed",
                source=source.name,
                resource=resource,
                outcome=outcome,
                error=errors[source.name],
            )

        logger.error("all_sources_failed", resource=resource, errors=errors)
        raise SourceUnavailable(resource, errors)

    async def _attempt(self, source: FixtureSource, resource: str) -> FetchResult:
        rows = await source.fetch(resource)
        records, warnings = validate_rows(rows or [], source.name, self._clock())
        if not records:
            raise EmptySourceResult(f"{source.name} returned no usable rows ({len(rows or [])} received)")
        return FetchResult(source=source.name, records=records, warnings=warnings)
