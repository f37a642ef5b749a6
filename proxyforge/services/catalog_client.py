"""
Remote card catalog client.

Async facade over the Scryfall REST API: batch collection lookups, exact
name lookups, full-text search and direct set/collector lookups.

Every outbound call goes through one throttle (a minimum interval between
calls, shared by all endpoints) and one retry loop (429/5xx and timeouts,
two retries, Retry-After honoured, otherwise exponential backoff).

A 404 is "not found", never an error. Any other non-2xx response that
survives the retry loop raises CatalogRequestError.

API docs: https://scryfall.com/docs/api
"""

import asyncio
import logging
import time
from collections.abc import MutableMapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from proxyforge.models.card import (
    DOUBLE_SIDED_LAYOUTS,
    CatalogCard,
    ImageChoice,
    ResolvedCardSummary,
    ResolvedFace,
)
from proxyforge.models.failure import CatalogRequestError

logger = logging.getLogger(__name__)

SCRYFALL_API_BASE = "https://api.scryfall.com"
DEFAULT_USER_AGENT = "ProxyForge/1.0"

# Scryfall rejects collection requests with more identifiers than this
MAX_COLLECTION_BATCH = 75

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
MAX_RETRIES = 2
BACKOFF_BASE_SECONDS = 0.2
BACKOFF_CAP_SECONDS = 1.0

# Scryfall asks for 50-100ms between requests
DEFAULT_MIN_INTERVAL_SECONDS = 0.08
DEFAULT_TIMEOUT_SECONDS = 12.0

CardCache = MutableMapping[str, CatalogCard]


async def _delay(seconds: float) -> None:
    await asyncio.sleep(seconds)


@dataclass(frozen=True, slots=True)
class CollectionLookup:
    """One identifier of a batch request, tagged with its request position."""

    index: int
    set_code: str
    collector_number: str
    lang: str | None = None


@dataclass
class CollectionResult:
    """Result of a batch lookup, keyed by request position."""

    found: dict[int, CatalogCard] = field(default_factory=dict)
    not_found: list[int] = field(default_factory=list)


def collection_cache_key(set_code: str, collector_number: str, lang: str | None = None) -> str:
    """Canonical key for a (set, collector, lang) identifier."""
    return (
        f"collection:{set_code.lower()}:{collector_number.lower()}:{(lang or 'en').lower()}"
    )


def named_cache_key(name: str, set_code: str | None = None, lang: str | None = None) -> str:
    return f"named:{name.lower()}|{(set_code or '').lower()}|{(lang or 'en').lower()}"


class CatalogClient:
    """
    Rate-limited, retrying client for the Scryfall API.

    Usage:
        async with CatalogClient() as client:
            card = await client.fetch_by_collector("lea", "150")
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        api_base: str = SCRYFALL_API_BASE,
        user_agent: str = DEFAULT_USER_AGENT,
        min_request_interval: float = DEFAULT_MIN_INTERVAL_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._api_base = api_base.rstrip("/")
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._min_interval = min_request_interval
        self._timeout = timeout
        self._throttle_lock = asyncio.Lock()
        self._last_request_at = 0.0

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def fetch_batch(
        self,
        lookups: Sequence[CollectionLookup],
        cache: CardCache | None = None,
    ) -> CollectionResult:
        """
        Look up many printings by set + collector number.

        Requests above MAX_COLLECTION_BATCH identifiers are split into
        sequential chunks. Results are attributed to request positions by
        canonical key, since Scryfall does not preserve ordering of
        `not_found`.

        Raises:
            CatalogRequestError: If a chunk request fails after retries
        """
        result = CollectionResult()

        pending: list[CollectionLookup] = []
        for lookup in lookups:
            key = collection_cache_key(lookup.set_code, lookup.collector_number, lookup.lang)
            cached = cache.get(key) if cache is not None else None
            if cached is not None:
                result.found[lookup.index] = cached
            else:
                pending.append(lookup)

        for offset in range(0, len(pending), MAX_COLLECTION_BATCH):
            chunk = pending[offset : offset + MAX_COLLECTION_BATCH]
            body = {"identifiers": [_collection_identifier(lookup) for lookup in chunk]}

            response = await self._request(
                "POST", f"{self._api_base}/cards/collection", json=body
            )
            _raise_for_status(response)
            _assign_chunk(chunk, _json_object(response), result, cache)

        result.not_found.sort()
        return result

    async def fetch_by_name(
        self,
        name: str,
        set_code: str | None = None,
        lang: str | None = None,
        cache: CardCache | None = None,
    ) -> CatalogCard | None:
        """
        Exact name lookup.

        Returns:
            The card, or None if Scryfall has no card with that name
        """
        name = name.strip()
        set_code = set_code.lower() if set_code else None
        lang = lang.lower() if lang else None

        key = named_cache_key(name, set_code, lang)
        if cache is not None and key in cache:
            return cache[key]

        params = {"exact": name}
        if set_code:
            params["set"] = set_code
        if lang:
            params["lang"] = lang

        response = await self._request("GET", f"{self._api_base}/cards/named", params=params)
        if response.status_code == 404:
            return None
        _raise_for_status(response)

        card = CatalogCard.from_payload(_json_object(response))
        if card is not None and cache is not None:
            cache[key] = card
        return card

    async def fetch_by_search(
        self,
        query: str,
        lang: str | None = None,
        cache: CardCache | None = None,
    ) -> CatalogCard | None:
        """
        Full-text search, returning one printing.

        Prefers the first result in the requested language, otherwise the
        first result.
        """
        lang = lang.lower() if lang else None
        key = f"search:{query}:{lang or 'en'}"
        if cache is not None and key in cache:
            return cache[key]

        params = {"q": query, "unique": "prints"}
        if lang:
            params["order"] = "lang"

        response = await self._request("GET", f"{self._api_base}/cards/search", params=params)
        if response.status_code == 404:
            return None
        _raise_for_status(response)

        cards: list[CatalogCard] = []
        data = _json_object(response).get("data")
        for raw in data if isinstance(data, list) else []:
            card = CatalogCard.from_payload(raw)
            if card is not None:
                cards.append(card)

        if not cards:
            return None

        chosen = cards[0]
        if lang:
            chosen = next((card for card in cards if card.lang == lang), chosen)

        if cache is not None:
            cache[key] = chosen
        return chosen

    async def fetch_by_collector(
        self,
        set_code: str,
        collector_number: str,
        lang: str | None = None,
        cache: CardCache | None = None,
    ) -> CatalogCard | None:
        """Direct lookup by set code, collector number and optional language."""
        set_code = set_code.lower()
        lang = lang.lower() if lang else None

        key = f"collector:{set_code}:{collector_number}:{lang or 'en'}"
        if cache is not None and key in cache:
            return cache[key]

        segments = [set_code, collector_number] + ([lang] if lang else [])
        url = f"{self._api_base}/cards/" + "/".join(quote(s, safe="") for s in segments)

        response = await self._request("GET", url)
        if response.status_code == 404:
            return None
        _raise_for_status(response)

        card = CatalogCard.from_payload(_json_object(response))
        if card is not None and cache is not None:
            cache[key] = card
        return card

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """
        Send one request with throttling and retries.

        Returns the final response, which may still carry a retryable status
        once retries are exhausted; callers decide what a status means.

        Raises:
            CatalogRequestError: If every attempt timed out or failed to connect
        """
        attempt = 0
        while True:
            await self._throttle()
            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers,
                    timeout=self._timeout,
                )
            except httpx.TransportError as e:
                if attempt >= MAX_RETRIES:
                    raise CatalogRequestError(None, f"{type(e).__name__}: {e}") from e
                logger.debug("Catalog %s %s failed (%s), retrying", method, url, e)
                await _delay(_backoff_delay(attempt))
                attempt += 1
                continue

            if response.status_code in RETRYABLE_STATUS and attempt < MAX_RETRIES:
                delay = _retry_after(response) or _backoff_delay(attempt)
                logger.debug(
                    "Catalog %s %s returned %d, retrying in %.2fs",
                    method,
                    url,
                    response.status_code,
                    delay,
                )
                await _delay(delay)
                attempt += 1
                continue

            return response

    async def _throttle(self) -> None:
        """Wait until the minimum interval since the previous call has passed."""
        if self._min_interval <= 0:
            return
        async with self._throttle_lock:
            elapsed = time.monotonic() - self._last_request_at
            if elapsed < self._min_interval:
                await _delay(self._min_interval - elapsed)
            self._last_request_at = time.monotonic()


def _collection_identifier(lookup: CollectionLookup) -> dict[str, str]:
    identifier = {
        "set": lookup.set_code.lower(),
        "collector_number": lookup.collector_number,
    }
    if lookup.lang:
        identifier["lang"] = lookup.lang.lower()
    return identifier


def _assign_chunk(
    chunk: Sequence[CollectionLookup],
    payload: dict[str, Any],
    result: CollectionResult,
    cache: CardCache | None,
) -> None:
    """Attribute one collection response to request positions by key."""
    missing: set[str] = set()
    for entry in payload.get("not_found") or payload.get("notFound") or []:
        if not isinstance(entry, dict):
            continue
        set_code = str(entry.get("set") or entry.get("code") or "")
        collector = str(entry.get("collector_number") or "")
        missing.add(collection_cache_key(set_code, collector, entry.get("lang")))

    cards: list[CatalogCard] = []
    for raw in payload.get("data") or []:
        card = CatalogCard.from_payload(raw)
        if card is not None:
            cards.append(card)

    by_key: dict[str, int] = {}
    by_printing: dict[tuple[str, str], int] = {}
    for position, card in enumerate(cards):
        by_key.setdefault(
            collection_cache_key(card.set_code, card.collector_number, card.lang), position
        )
        by_printing.setdefault((card.set_code, card.collector_number.lower()), position)

    used: set[int] = set()
    unmatched: list[CollectionLookup] = []

    for lookup in chunk:
        key = collection_cache_key(lookup.set_code, lookup.collector_number, lookup.lang)
        if key in missing:
            result.not_found.append(lookup.index)
            continue

        position = by_key.get(key)
        if position is None or position in used:
            position = by_printing.get(
                (lookup.set_code.lower(), lookup.collector_number.lower())
            )
        if position is None or position in used:
            unmatched.append(lookup)
            continue

        used.add(position)
        result.found[lookup.index] = cards[position]
        if cache is not None:
            cache[key] = cards[position]

    # Identifiers Scryfall echoed back differently: take leftovers in order
    leftovers = [position for position in range(len(cards)) if position not in used]
    for lookup in unmatched:
        if not leftovers:
            result.not_found.append(lookup.index)
            continue
        card = cards[leftovers.pop(0)]
        result.found[lookup.index] = card
        if cache is not None:
            key = collection_cache_key(lookup.set_code, lookup.collector_number, lookup.lang)
            cache[key] = card


def _backoff_delay(attempt: int) -> float:
    return min(BACKOFF_CAP_SECONDS, BACKOFF_BASE_SECONDS * 2**attempt)


def _retry_after(response: httpx.Response) -> float | None:
    header = response.headers.get("Retry-After")
    if not header:
        return None
    try:
        seconds = float(header)
    except ValueError:
        return None
    return seconds if seconds > 0 else None


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    raise CatalogRequestError(response.status_code, _error_detail(response))


def _json_object(response: httpx.Response) -> dict[str, Any]:
    """Decode a successful response body that must be a JSON object."""
    try:
        payload = response.json()
    except ValueError as e:
        raise CatalogRequestError(response.status_code, "Malformed catalog response") from e
    if not isinstance(payload, dict):
        raise CatalogRequestError(response.status_code, "Malformed catalog response")
    return payload


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("details"):
        return str(payload["details"])
    return response.reason_phrase or "Unknown error"


# =============================================================================
# IMAGE SELECTION
# =============================================================================


def select_best_image(card: CatalogCard) -> ImageChoice:
    """
    Pick the printable image for a card.

    Uses the card's own image when present. Cards that only carry images
    on their faces fall back to the front face.
    """
    image = card.image_uris.best() if card.image_uris else None
    high_res = card.highres_image or card.image_status == "highres_scan"

    if image is None and card.card_faces:
        front = card.card_faces[0]
        front_uris = front.image_uris
        return ImageChoice(
            image=front_uris.best() if front_uris else None,
            high_res=high_res or bool(front_uris and front_uris.png),
        )

    return ImageChoice(image=image, high_res=high_res)


def to_resolved_card(card: CatalogCard) -> ResolvedCardSummary:
    """Build the display summary, expanding double-sided faces."""
    choice = select_best_image(card)

    faces: tuple[ResolvedFace, ...] | None = None
    if card.card_faces and len(card.card_faces) >= 2:
        double_sided = card.layout in DOUBLE_SIDED_LAYOUTS or all(
            face.image_uris for face in card.card_faces
        )
        if double_sided:
            card_high_res = card.highres_image or card.image_status == "highres_scan"
            faces = tuple(
                ResolvedFace(
                    name=face.name or f"{card.name} (Face {position})",
                    image=face.image_uris.best() if face.image_uris else None,
                    high_res=bool(face.image_uris and face.image_uris.png) or card_high_res,
                )
                for position, face in enumerate(card.card_faces, 1)
            )

    return ResolvedCardSummary(card=card, image=choice.image, high_res=choice.high_res, faces=faces)
