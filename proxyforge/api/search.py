"""
Card name search endpoint.

Answers type-ahead searches from the local card index.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from proxyforge.api.deps import get_resolution_service
from proxyforge.config import DEFAULT_SEARCH_LIMIT, MAX_PRINTINGS_PER_CARD, MAX_SEARCH_LIMIT
from proxyforge.models.card import CatalogCard, normalize_name
from proxyforge.services.catalog_client import select_best_image
from proxyforge.services.resolution_service import ResolutionService

router = APIRouter(prefix="/api", tags=["search"])


class SearchRequest(BaseModel):
    """Request model for card search."""

    query: str = Field(..., min_length=1, description="Part of a card name")
    limit: int = Field(default=DEFAULT_SEARCH_LIMIT, ge=1)
    lang: str | None = Field(default=None, description="Preferred printing language")


class SearchResult(BaseModel):
    """One search hit with its alternate printings."""

    id: str
    name: str
    set: str
    collector_number: str
    image: str
    lang: str
    full_card: dict[str, Any]
    all_printings: list[dict[str, Any]] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """Response model for card search."""

    results: list[SearchResult] = Field(default_factory=list)


def _display_name(card: CatalogCard, query: str) -> str:
    """Printed name for localized hits on the localized name, front face for splits."""
    name = card.name
    if card.printed_name and card.lang != "en":
        if normalize_name(query) in normalize_name(card.printed_name):
            name = card.printed_name
    if " // " in name:
        name = name.split(" // ")[0]
    return name


@router.post("/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    service: Annotated[ResolutionService, Depends(get_resolution_service)],
) -> SearchResponse:
    """
    Search card names in the local index.

    Cards without a printable image are left out.
    """
    query = request.query.strip()
    limit = min(request.limit, MAX_SEARCH_LIMIT)

    results: list[SearchResult] = []
    for card in service.search_by_name(query, limit, request.lang):
        image = select_best_image(card).image
        if not image:
            continue
        printings = service.get_printings(card)[:MAX_PRINTINGS_PER_CARD]
        results.append(
            SearchResult(
                id=card.id,
                name=_display_name(card, query),
                set=card.set_code.upper(),
                collector_number=card.collector_number,
                image=image,
                lang=card.lang,
                full_card=card.to_payload(),
                all_printings=[printing.to_payload() for printing in printings],
            )
        )

    return SearchResponse(results=results)
