"""
Card Resolution Service.

Single lookup API over the local bulk store (fast path) and the live
catalog API (fallback path).

INVARIANTS:
1. The local store is always consulted first
2. Remote calls run under one bounded limiter shared by the whole process
3. Every remote hit is indexed immediately, so the next lookup is local
4. Remote misses for a name are cached too, so they are not retried per line
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

import httpx

from proxyforge.config import Settings
from proxyforge.models.card import CatalogCard, ResolvedCardSummary
from proxyforge.models.failure import KnownError
from proxyforge.services.bulk_store import BulkDataStore
from proxyforge.services.catalog_client import CardCache, CatalogClient, to_resolved_card

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_CONCURRENCY = 4
DEFAULT_REFRESH_INTERVAL_SECONDS = 24 * 60 * 60


@dataclass
class ResolutionContext:
    """
    Process-wide lookup state.

    Created once at startup and shared by every request: the remote result
    caches and the remote concurrency limiter.
    """

    remote_concurrency: int = DEFAULT_REMOTE_CONCURRENCY
    collection_cache: CardCache = field(default_factory=dict)
    named_cache: CardCache = field(default_factory=dict)
    search_cache: dict[str, CatalogCard | None] = field(default_factory=dict)
    remote_limiter: asyncio.Semaphore = field(init=False)

    def __post_init__(self) -> None:
        self.remote_limiter = asyncio.Semaphore(self.remote_concurrency)


class ResolutionService:
    """
    Resolves card references, local index first and live API second.

    Usage:
        service = await ResolutionService.create(settings)
        card = await service.find_by_name("Counterspell")
    """

    def __init__(
        self,
        store: BulkDataStore,
        client: CatalogClient,
        context: ResolutionContext | None = None,
        *,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.context = context or ResolutionContext()
        self._refresh_interval = refresh_interval
        self._refresh_loop: asyncio.Task[None] | None = None
        # Shared connection pool handed to store and client, closed here
        self._http_client = http_client

    @classmethod
    async def create(cls, settings: Settings, *, load_catalog: bool = True) -> "ResolutionService":
        """
        Build the store, the client and the shared context from settings.

        Args:
            settings: Application settings
            load_catalog: Refresh/load the bulk snapshot before returning

        Raises:
            KnownError: If load_catalog is set and no usable snapshot exists
        """
        http_client = httpx.AsyncClient(
            timeout=settings.catalog_request_timeout,
            follow_redirects=True,
        )
        store = BulkDataStore(
            settings.catalog_data_dir,
            http_client=http_client,
            bulk_metadata_url=settings.bulk_metadata_url,
            user_agent=settings.catalog_user_agent,
        )
        client = CatalogClient(
            http_client,
            api_base=settings.catalog_api_base,
            user_agent=settings.catalog_user_agent,
            min_request_interval=settings.catalog_min_request_interval,
            timeout=settings.catalog_request_timeout,
        )
        service = cls(
            store,
            client,
            ResolutionContext(remote_concurrency=settings.remote_concurrency),
            refresh_interval=settings.refresh_interval_seconds,
            http_client=http_client,
        )
        if load_catalog:
            try:
                await store.initialize()
            except KnownError:
                await service.aclose()
                raise
        return service

    async def aclose(self) -> None:
        """Stop the refresh loop and release HTTP connections."""
        await self.stop_auto_refresh()
        await self.client.aclose()
        await self.store.aclose()
        if self._http_client is not None:
            await self._http_client.aclose()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def find_by_collector(
        self,
        set_code: str,
        collector_number: str,
        lang: str | None = None,
    ) -> CatalogCard | None:
        """
        Resolve a printing by set and collector number.

        Raises:
            CatalogRequestError: If the remote fallback fails after retries
        """
        local = self.store.find_by_set_and_collector(set_code, collector_number, lang)
        if local is not None:
            return local

        async with self.context.remote_limiter:
            card = await self.client.fetch_by_collector(
                set_code,
                collector_number,
                lang,
                cache=self.context.collection_cache,
            )
            if card is not None:
                self.store.index_remote_card(card)
            return card

    async def find_by_name(
        self,
        name: str,
        lang: str | None = None,
        set_code: str | None = None,
    ) -> CatalogCard | None:
        """
        Resolve a card by name, preferring the requested language.

        Remote order: exact name in the language, quoted search in the
        language, exact name in any language.

        Raises:
            CatalogRequestError: If the remote fallback fails after retries
        """
        lang = lang.lower() if lang else None
        local = self.store.find_by_name(name, lang=lang, set_code=set_code)
        if local is not None:
            return local

        async with self.context.remote_limiter:
            cache_key = f"{name.lower()}::{lang or 'en'}::{(set_code or '').lower()}"
            if cache_key in self.context.search_cache:
                return self.context.search_cache[cache_key]

            named_cache = self.context.named_cache
            card = await self.client.fetch_by_name(name, set_code, lang, cache=named_cache)

            if card is None and lang:
                card = await self.client.fetch_by_search(f'"{name}"', lang, cache=named_cache)

            if card is None:
                card = await self.client.fetch_by_name(name, set_code, cache=named_cache)

            if card is not None:
                self.store.index_remote_card(card)
            self.context.search_cache[cache_key] = card
            return card

    def get_printings(self, card: CatalogCard) -> list[CatalogCard]:
        """All known printings of a card, or just the card itself."""
        printings = self.store.get_printings_for_grouping_id(card.grouping_id)
        if printings:
            return printings
        return [card]

    def search_by_name(self, query: str, limit: int, lang: str | None = None) -> list[CatalogCard]:
        return self.store.search_by_name(query, limit, lang)

    def to_resolved_card(self, card: CatalogCard) -> ResolvedCardSummary:
        return to_resolved_card(card)

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def refresh_if_stale(self) -> bool:
        return await self.store.refresh_if_stale()

    def start_auto_refresh(self) -> None:
        """Start the background refresh loop. Idempotent."""
        if self._refresh_loop is None or self._refresh_loop.done():
            self._refresh_loop = asyncio.create_task(self._auto_refresh())

    async def stop_auto_refresh(self) -> None:
        task = self._refresh_loop
        self._refresh_loop = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _auto_refresh(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval)
            try:
                refreshed = await self.store.refresh_if_stale()
            except KnownError as e:
                logger.error("Bulk data refresh failed: %s (%s)", e.message, e.detail)
                continue
            except Exception:
                logger.exception("Unexpected error during bulk data refresh")
                continue
            if refreshed:
                logger.info("Bulk data refreshed")
