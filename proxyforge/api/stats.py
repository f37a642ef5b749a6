"""
Usage statistics endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from proxyforge.db import DECKLISTS_RESOLVED, VISITS, get_counters, get_session, increment_counter

router = APIRouter(prefix="/api/stats", tags=["stats"])


class StatsResponse(BaseModel):
    """Usage counters."""

    visits: int = 0
    decklists_resolved: int = 0


@router.get("", response_model=StatsResponse)
async def get_stats(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> StatsResponse:
    counters = await get_counters(session)
    return StatsResponse(
        visits=counters[VISITS],
        decklists_resolved=counters[DECKLISTS_RESOLVED],
    )


@router.post("/visit", response_model=StatsResponse)
async def record_visit(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> StatsResponse:
    """Count a page visit and return the updated counters."""
    await increment_counter(session, VISITS)
    counters = await get_counters(session)
    return StatsResponse(
        visits=counters[VISITS],
        decklists_resolved=counters[DECKLISTS_RESOLVED],
    )
