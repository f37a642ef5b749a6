"""
Decklist Resolution Pipeline.

Drives the Resolution Service once per decklist line.

Per line, in this fixed order:
1. set + collector number given -> find_by_collector
2. otherwise, or on a miss      -> find_by_name in the requested language
3. non-English and still missed -> find_by_name in English
4. hit  -> attach printings, expand faces into ONE item
5. miss -> human-readable error (set/collector vs. name-only wording)
6. resolved language differs    -> non-fatal warning

INVARIANTS:
- Output order equals input order
- One item per line, including multi-faced cards
- A failing line never aborts the batch
"""

import asyncio
import logging
from collections.abc import Sequence

from proxyforge.models.card import CatalogCard, ResolvedCardSummary
from proxyforge.models.failure import KnownError
from proxyforge.models.resolution import CardPayload, FacePayload, LinePayload, ResolveItem
from proxyforge.parsers.decklist import DecklistLine
from proxyforge.services.resolution_service import ResolutionService

logger = logging.getLogger(__name__)

DEFAULT_LANG = "en"
RESOLVE_CONCURRENCY = 12

UNRESOLVED_WITH_PRINTING = (
    "Unable to resolve this entry. Verify the set code and collector number "
    "or drop them to search by name only."
)
UNRESOLVED_NAME_ONLY = "Unable to resolve this entry. Verify the card name spelling."


def normalize_lang(lang: str | None) -> str:
    if not lang or not lang.strip():
        return DEFAULT_LANG
    return lang.strip().lower()


async def resolve_decklist(
    lines: Sequence[DecklistLine],
    requested_lang: str | None,
    service: ResolutionService,
    *,
    concurrency: int = RESOLVE_CONCURRENCY,
) -> list[ResolveItem]:
    """
    Resolve every line, up to `concurrency` lines at a time.

    Args:
        lines: Parsed decklist lines
        requested_lang: Preferred printing language (None means English)
        service: Resolution service
        concurrency: Lines in flight at once

    Returns:
        One item per line, in input order
    """
    lang = normalize_lang(requested_lang)
    limiter = asyncio.Semaphore(concurrency)

    async def run(line: DecklistLine) -> ResolveItem:
        async with limiter:
            return await resolve_line(line, lang, service)

    return list(await asyncio.gather(*(run(line) for line in lines)))


async def resolve_line(
    line: DecklistLine,
    requested_lang: str,
    service: ResolutionService,
) -> ResolveItem:
    """Resolve a single line into its response item."""
    item = ResolveItem(line=_line_payload(line), error=line.parse_error)

    if not line.is_resolvable:
        return item

    try:
        card = await _find_card(line, requested_lang, service)
    except KnownError as e:
        logger.warning("Resolution failed for %r: %s", line.name, e.message)
        item.error = e.message
        return item

    if card is None:
        item.error = build_unresolved_message(line)
        return item

    summary = service.to_resolved_card(card)
    printings = service.get_printings(card)
    _apply_card(item, summary, printings)
    _surface_lang_mismatch(item, requested_lang)
    return item


async def _find_card(
    line: DecklistLine,
    lang: str,
    service: ResolutionService,
) -> CatalogCard | None:
    card: CatalogCard | None = None

    if line.set_code and line.collector_number:
        card = await service.find_by_collector(line.set_code, line.collector_number, lang)

    if card is None:
        card = await service.find_by_name(line.name, lang=lang, set_code=line.set_code)

    if card is None and lang != DEFAULT_LANG:
        card = await service.find_by_name(line.name, lang=DEFAULT_LANG, set_code=line.set_code)

    return card


def build_unresolved_message(line: DecklistLine) -> str:
    if line.set_code and line.collector_number:
        return UNRESOLVED_WITH_PRINTING
    return UNRESOLVED_NAME_ONLY


def _line_payload(line: DecklistLine) -> LinePayload:
    return LinePayload(
        qty=max(line.quantity, 0),
        name=line.name,
        set=line.set_code,
        collector=line.collector_number,
        foil=True if line.is_foil else None,
    )


def _apply_card(
    item: ResolveItem,
    summary: ResolvedCardSummary,
    printings: list[CatalogCard],
) -> None:
    card = summary.card
    printing_payloads = [printing.to_payload() for printing in printings]
    item.all_printings = printing_payloads
    item.selected_printing = next(
        (payload for payload in printing_payloads if payload["id"] == card.id),
        card.to_payload(),
    )

    card_payload = CardPayload(
        id=card.id,
        name=card.name,
        lang=card.lang,
        set=card.set_code,
        collector_number=card.collector_number,
        layout=card.layout,
    )

    if summary.faces and len(summary.faces) >= 2:
        front = summary.faces[0]
        card_payload.faces = [
            FacePayload(name=face.name, image=face.image, high_res=face.high_res)
            for face in summary.faces
        ]
        item.card = card_payload
        item.image = front.image
        item.high_res = front.high_res
        item.face_name = front.name
        item.is_secondary_face = False
        if not front.image and not item.error:
            item.error = f"No printable image was available for {front.name}."
        return

    item.card = card_payload
    item.image = summary.image
    item.high_res = summary.high_res
    if not summary.image and not item.error:
        item.error = "No printable image was available for this card."


def _surface_lang_mismatch(item: ResolveItem, requested_lang: str) -> None:
    if item.card is None or not requested_lang:
        return
    if item.card.lang.lower() != requested_lang.lower():
        note = f"Localized printing not available in {requested_lang}; using {item.card.lang}."
        item.warning = f"{item.warning} {note}" if item.warning else note
