"""
League table endpoint.

GET /v1/standings   League table per season with a freshness verdict.
"""
from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from scheduler.freshness import FreshnessController

from api.dependencies import get_controller
from api.routes.fixtures import _compute_etag

router = APIRouter(prefix="/v1", tags=["standings"])


@router.get("/standings")
async def list_standings(
    request: Request,
    response: Response,
    competition: Optional[str] = Query(None, description="Competition name"),
    season: Optional[str] = Query(None, description="Season label, e.g. 2025/2026"),
    controller: FreshnessController = Depends(get_controller),
) -> Any:
    """Standings computed from finished fixtures, served through the freshness cache."""
    result = await controller.get_standings(competition, season)
    payload = result.model_dump(mode="json")
    payload["count"] = len(result.data)

    etag = _compute_etag(json.dumps(payload["data"], sort_keys=True))
    response.headers["X-Freshness"] = result.freshness.value
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers={"ETag": etag, "X-Freshness": result.freshness.value})
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = "public, max-age=30"
    return payload
