"""
Health check endpoints.

Provides liveness and readiness probes with database and card index checks.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from proxyforge.db.database import get_session

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str | None = None
    cards_indexed: int | None = None
    last_refreshed: datetime | None = None


@router.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
async def health() -> HealthResponse:
    """
    Liveness probe.

    Returns healthy if the service is running.
    Does not check dependencies.
    """
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> HealthResponse:
    """
    Readiness probe.

    Returns ready if the database answers and the resolution service exists.
    An empty card index is still ready: lookups fall back to the live API.
    """
    service = getattr(request.app.state, "resolution_service", None)
    cards_indexed = service.store.card_count if service is not None else None

    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not ready", database="disconnected", cards_indexed=cards_indexed
        )

    if service is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database="connected")

    return HealthResponse(
        status="ready",
        database="connected",
        cards_indexed=cards_indexed,
        last_refreshed=service.store.last_refreshed,
    )
