"""
Fixture REST endpoints.

GET  /v1/fixtures             Filtered fixtures with a freshness verdict.
POST /v1/refresh/{resource}   Force a refresh (rate-limited per client).
"""
from __future__ import annotations

import hashlib
import json
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from shared.models.domain import FixtureFilter
from shared.models.enums import FixtureStatus
from shared.utils.logging import get_logger
from scheduler.freshness import FreshnessController

from api.dependencies import get_controller, get_limiter
from api.rate_limit import SlidingWindowLimiter, client_identity

logger = get_logger(__name__)
router = APIRouter(prefix="/v1", tags=["fixtures"])


def _split_csv(value: Optional[str]) -> Optional[list[str]]:
    if not value:
        return None
    items = [part.strip() for part in value.split(",") if part.strip()]
    return items or None


def _compute_etag(content: str | bytes) -> str:
    """Compute a weak ETag from content."""
    if isinstance(content, str):
        content = content.encode()
    return f'W/"{hashlib.md5(content).hexdigest()}"'


@router.get("/fixtures")
async def list_fixtures(
    request: Request,
    response: Response,
    competition: Optional[str] = Query(None, description="Comma-separated competition names"),
    season: Optional[str] = Query(None, description="Season label, e.g. 2025/2026"),
    team: Optional[str] = Query(None, description="Club name or alias"),
    date_from: Optional[date] = Query(None, description="First match date (YYYY-MM-DD), inclusive"),
    date_to: Optional[date] = Query(None, description="Last match date (YYYY-MM-DD), inclusive"),
    round_number: Optional[int] = Query(None, alias="round", ge=1),
    status: Optional[FixtureStatus] = Query(None),
    controller: FreshnessController = Depends(get_controller),
) -> Any:
    """
    Fixtures matching the filter, served through the freshness cache.

    `freshness` is one of hit, stale-refreshing, miss-scraped or error. An
    error still carries whatever data was persisted before the failure.
    """
    if date_from and date_to and date_from > date_to:
        raise HTTPException(status_code=400, detail="date_from must not be after date_to")

    flt = FixtureFilter(
        competitions=_split_csv(competition),
        season=season,
        team=team,
        date_from=date_from,
        date_to=date_to,
        round_number=round_number,
        status=status,
    )
    result = await controller.get_fixtures(flt)
    payload = result.model_dump(mode="json")
    payload["count"] = len(result.data)

    payload_json = json.dumps(payload["data"], sort_keys=True)
    etag = _compute_etag(payload_json)
    response.headers["X-Freshness"] = result.freshness.value
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers={"ETag": etag, "X-Freshness": result.freshness.value})
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = "public, max-age=30"
    return payload


@router.post("/refresh/{resource}")
async def force_refresh(
    resource: str,
    request: Request,
    controller: FreshnessController = Depends(get_controller),
    limiter: SlidingWindowLimiter = Depends(get_limiter),
) -> dict[str, Any]:
    """Run (or join) a refresh of one resource and report what changed."""
    if not controller.serves(resource):
        raise HTTPException(status_code=404, detail=f"Unknown resource: {resource}")

    identity = client_identity(request)
    await limiter.hit(identity)

    report = await controller.force_refresh(resource)
    logger.info(
        "force_refresh_requested",
        resource=resource,
        identity=identity,
        updated_counts=report.updated_counts,
        errors=len(report.errors),
    )
    return report.model_dump(mode="json")
