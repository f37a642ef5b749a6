"""
Decklist resolution endpoint.

Parses a pasted decklist and resolves every line to a printable card.
"""

import re
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from proxyforge.api.deps import get_resolution_service
from proxyforge.config import settings
from proxyforge.db import DECKLISTS_RESOLVED, get_session, increment_counter
from proxyforge.models.resolution import ResolveItem
from proxyforge.parsers.decklist import parse_decklist
from proxyforge.services.resolution_pipeline import DEFAULT_LANG, resolve_decklist
from proxyforge.services.resolution_service import ResolutionService

router = APIRouter(prefix="/api", tags=["resolve"])

# Common fragments of German card names
_GERMAN_NAME_PATTERNS = tuple(
    re.compile(fragment, re.IGNORECASE)
    for fragment in (
        "kolonie",
        "blitz",
        "stein",
        "wald",
        "berg",
        "insel",
        "ebene",
        "sumpf",
        "drache",
        "geist",
        "zauber",
        "krieg",
        "ritter",
    )
)

# Share of names that must look German before German is assumed
_GERMAN_THRESHOLD = 0.3


class ResolveRequest(BaseModel):
    """Request model for decklist resolution."""

    decklist: str = Field(
        ...,
        description="Decklist text, one card per line",
        examples=["1 Lightning Bolt (lea) 150\n4 Counterspell"],
    )
    lang: str | None = Field(
        default=None,
        description="Preferred printing language (e.g., 'en', 'de'). Guessed when omitted.",
    )


class ResolveResponse(BaseModel):
    """Response model for decklist resolution."""

    items: list[ResolveItem] = Field(default_factory=list)


def detect_language_from_names(names: list[str]) -> str:
    """
    Guess the decklist language from card names.

    Only German is detected; everything else is English.
    """
    if not names:
        return DEFAULT_LANG
    german = [name for name in names if any(p.search(name) for p in _GERMAN_NAME_PATTERNS)]
    if german and len(german) / len(names) > _GERMAN_THRESHOLD:
        return "de"
    return DEFAULT_LANG


@router.post("/resolve", response_model=ResolveResponse, response_model_exclude_none=True)
async def resolve(
    request: ResolveRequest,
    service: Annotated[ResolutionService, Depends(get_resolution_service)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ResolveResponse:
    """
    Resolve a decklist.

    Returns one item per non-blank line, in input order. Lines that fail to
    parse or resolve carry an `error`; language substitutions carry a
    `warning`.
    """
    if not request.decklist.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="decklist is required",
        )

    lines = parse_decklist(request.decklist)
    lang = request.lang or detect_language_from_names(
        [line.name for line in lines if line.parse_error is None]
    )

    items = await resolve_decklist(
        lines,
        lang,
        service,
        concurrency=settings.resolve_concurrency,
    )

    await increment_counter(session, DECKLISTS_RESOLVED)
    return ResolveResponse(items=items)
