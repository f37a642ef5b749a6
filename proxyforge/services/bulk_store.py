"""
Bulk card data store.

Keeps a local snapshot of the whole Scryfall catalog and answers
lookups from memory.

Snapshot:
    <data_dir>/cards.ndjson   one normalized card per line
    <data_dir>/metadata.json  remote version tag, download time, schema version

Indices (held together in one CardIndex, swapped by reference on rebuild):
    by_set_collector  (set, collector) -> lang -> card
    by_grouping_id    oracle id -> printings, newest release first
    by_name_key       folded name -> [(lang, card)]

INVARIANTS:
1. A rebuild writes to a temp file and replaces the snapshot only on success
2. A failed rebuild leaves the committed snapshot and live indices untouched
3. Concurrent refresh_if_stale() callers share one in-flight refresh
4. index_remote_card() is idempotent and never replaces an indexed printing

Bulk data: https://scryfall.com/docs/api/bulk-data
"""

import asyncio
import json
import logging
import os
import time
import zlib
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import IO, Any

import httpx
import ijson
from pydantic import BaseModel, ValidationError

from proxyforge.models.card import (
    CatalogCard,
    NormalizedCard,
    is_printable_payload,
    normalize_name,
)
from proxyforge.models.failure import CatalogMetadataError, IngestionError

logger = logging.getLogger(__name__)

SCRYFALL_BULK_ENDPOINT = "https://api.scryfall.com/bulk-data/all-cards"

# Bump when the snapshot line format changes
SCHEMA_VERSION = 2

INDEX_FILENAME = "cards.ndjson"
METADATA_FILENAME = "metadata.json"

STREAM_CHUNK_SIZE = 64 * 1024

# The all-cards dump is >2GB uncompressed; only connect/read stalls are bounded
BULK_DOWNLOAD_TIMEOUT = httpx.Timeout(30.0, read=120.0)


class LocalMetadata(BaseModel):
    """Metadata persisted beside the snapshot."""

    remote_version_tag: str
    downloaded_at: datetime
    schema_version: int


@dataclass(frozen=True, slots=True)
class BulkMetadata:
    """Remote bulk data descriptor."""

    version_tag: str
    download_uri: str


def _release_ordinal(released_at: str | None) -> int:
    if not released_at:
        return 0
    try:
        return date.fromisoformat(released_at[:10]).toordinal()
    except ValueError:
        return 0


def _sort_newest_first(entries: list[NormalizedCard]) -> None:
    # Stable: equal release dates keep insertion order
    entries.sort(key=lambda entry: _release_ordinal(entry.card.released_at), reverse=True)


class CardIndex:
    """
    The in-memory indices over one snapshot.

    Built off to the side during a rebuild and swapped in whole.
    """

    def __init__(self) -> None:
        self.by_set_collector: dict[tuple[str, str], dict[str, NormalizedCard]] = {}
        self.by_grouping_id: dict[str, list[NormalizedCard]] = {}
        self.by_name_key: dict[str, list[tuple[str, NormalizedCard]]] = {}
        self.by_id: dict[str, NormalizedCard] = {}
        self.cards: list[NormalizedCard] = []

    def insert(self, entry: NormalizedCard, *, keep_sorted: bool = False) -> bool:
        """
        Add a card to every index.

        Returns False without changing anything when the id is already
        indexed or its (set, collector, lang) slot is already taken.
        """
        card = entry.card
        if card.id in self.by_id:
            return False

        printing_key = (card.set_code.lower(), card.collector_number.lower())
        languages = self.by_set_collector.setdefault(printing_key, {})
        if card.lang in languages:
            return False

        languages[card.lang] = entry
        self.by_id[card.id] = entry

        if card.grouping_id:
            printings = self.by_grouping_id.setdefault(card.grouping_id.lower(), [])
            printings.append(entry)
            if keep_sorted:
                _sort_newest_first(printings)

        self.by_name_key.setdefault(entry.name_key, []).append((card.lang, entry))
        if entry.printed_name_key and entry.printed_name_key != entry.name_key:
            self.by_name_key.setdefault(entry.printed_name_key, []).append((card.lang, entry))

        self.cards.append(entry)
        return True

    def sort_printings(self) -> None:
        for printings in self.by_grouping_id.values():
            _sort_newest_first(printings)


class BulkDataStore:
    """
    Local catalog snapshot with in-memory lookups.

    Usage:
        store = BulkDataStore(Path("data/scryfall"))
        await store.initialize()
        card = store.find_by_set_and_collector("lea", "150")
    """

    def __init__(
        self,
        data_dir: Path,
        *,
        http_client: httpx.AsyncClient | None = None,
        bulk_metadata_url: str = SCRYFALL_BULK_ENDPOINT,
        user_agent: str = "ProxyForge/1.0",
    ) -> None:
        self.data_dir = data_dir
        self.index_file = data_dir / INDEX_FILENAME
        self.metadata_file = data_dir / METADATA_FILENAME
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=30.0, follow_redirects=True)
        self._bulk_metadata_url = bulk_metadata_url
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._index = CardIndex()
        self._refresh_task: asyncio.Task[bool] | None = None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def card_count(self) -> int:
        return len(self._index.cards)

    @property
    def local_metadata(self) -> LocalMetadata | None:
        return self._read_local_metadata()

    @property
    def last_refreshed(self) -> datetime | None:
        metadata = self._read_local_metadata()
        return metadata.downloaded_at if metadata else None

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def find_by_set_and_collector(
        self,
        set_code: str,
        collector_number: str,
        lang: str | None = None,
    ) -> CatalogCard | None:
        """
        Exact printing lookup.

        Language preference: requested, then English, then the first
        language indexed for that printing.
        """
        languages = self._index.by_set_collector.get(
            (set_code.lower(), collector_number.lower())
        )
        if not languages:
            return None

        if lang:
            match = languages.get(lang.lower())
            if match is not None:
                return match.card

        english = languages.get("en")
        if english is not None:
            return english.card

        return next(iter(languages.values())).card

    def find_by_name(
        self,
        name: str,
        lang: str | None = None,
        set_code: str | None = None,
    ) -> CatalogCard | None:
        """
        Best printing for a card name.

        Candidates are ranked by (language mismatch, newest release);
        ties keep the first indexed printing. A set filter that excludes
        every candidate is dropped rather than failing the lookup.
        """
        entries = self._index.by_name_key.get(normalize_name(name))
        if not entries:
            return None

        preferred_lang = lang.lower() if lang else None
        preferred_set = set_code.lower() if set_code else None

        best: NormalizedCard | None = None
        best_score: tuple[int, int] | None = None
        for entry_lang, entry in entries:
            if preferred_set and entry.card.set_code != preferred_set:
                continue
            penalty = 1 if preferred_lang and entry_lang != preferred_lang else 0
            score = (penalty, -_release_ordinal(entry.card.released_at))
            if best_score is None or score < best_score:
                best, best_score = entry, score

        if best is None:
            if preferred_set:
                return self.find_by_name(name, lang=lang)
            return None

        return best.card

    def search_by_name(
        self,
        query: str,
        limit: int,
        lang: str | None = None,
    ) -> list[CatalogCard]:
        """
        Substring search over canonical and printed names.

        Ranking: canonical-name prefix, then printed-name prefix, then any
        substring; within a rank, preferred language first, then newest.
        """
        if limit <= 0:
            return []

        query_key = normalize_name(query)
        preferred_lang = lang.lower() if lang else None

        scored: list[tuple[tuple[int, int, int], NormalizedCard]] = []
        for entry in self._index.cards:
            name_key = entry.name_key
            printed_key = entry.printed_name_key
            in_name = query_key in name_key
            in_printed = printed_key is not None and query_key in printed_key
            if not (in_name or in_printed):
                continue

            if name_key.startswith(query_key):
                rank = 0
            elif printed_key is not None and printed_key.startswith(query_key):
                rank = 1
            else:
                rank = 2

            penalty = 1 if preferred_lang and entry.card.lang != preferred_lang else 0
            scored.append(((rank, penalty, -_release_ordinal(entry.card.released_at)), entry))

        scored.sort(key=lambda item: item[0])

        results: list[CatalogCard] = []
        seen: set[str] = set()
        for _, entry in scored:
            if entry.card.id in seen:
                continue
            seen.add(entry.card.id)
            results.append(entry.card)
            if len(results) >= limit:
                break
        return results

    def get_printings_for_grouping_id(self, grouping_id: str | None) -> list[CatalogCard]:
        """All indexed printings sharing a grouping id, newest first."""
        if not grouping_id:
            return []
        printings = self._index.by_grouping_id.get(grouping_id.lower(), [])
        return [entry.card for entry in printings]

    def index_remote_card(self, card: CatalogCard) -> bool:
        """
        Add a card learned from the live API to the in-memory indices.

        The snapshot on disk is not touched; the card is gone after the
        next rebuild or restart unless the bulk data has it.

        Returns:
            True if the card was new
        """
        return self._index.insert(NormalizedCard.from_card(card), keep_sorted=True)

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Bring the index up to date at startup.

        When the catalog is unreachable but a committed snapshot exists,
        the snapshot is loaded as-is.

        Raises:
            CatalogMetadataError, IngestionError: If no usable snapshot exists
        """
        try:
            await self.refresh_if_stale()
        except (CatalogMetadataError, IngestionError) as e:
            if not self.index_file.exists():
                raise
            logger.warning("Catalog refresh failed, using existing snapshot: %s", e.detail)
            if not self._index.cards:
                await self.load_snapshot()

    async def refresh_if_stale(self) -> bool:
        """
        Rebuild the snapshot if the remote bulk data changed.

        Concurrent callers await the same in-flight refresh.

        Returns:
            True if a rebuild happened
        """
        task = self._refresh_task
        if task is None:
            task = asyncio.create_task(self._ensure_fresh_index())
            self._refresh_task = task
            task.add_done_callback(self._clear_refresh_task)
        return await asyncio.shield(task)

    def _clear_refresh_task(self, task: "asyncio.Task[bool]") -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _ensure_fresh_index(self) -> bool:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IngestionError(f"Cannot create data directory: {e}") from e

        remote = await self._fetch_bulk_metadata()
        local = self._read_local_metadata()

        needs_refresh = (
            not self.index_file.exists()
            or local is None
            or local.schema_version != SCHEMA_VERSION
            or local.remote_version_tag != remote.version_tag
        )

        if needs_refresh:
            logger.info("Rebuilding card snapshot (remote version %s)", remote.version_tag)
            count = await self._rebuild_snapshot(remote)
            try:
                self._write_local_metadata(
                    LocalMetadata(
                        remote_version_tag=remote.version_tag,
                        downloaded_at=datetime.now(timezone.utc),
                        schema_version=SCHEMA_VERSION,
                    )
                )
            except OSError as e:
                raise IngestionError(f"Cannot write snapshot metadata: {e}") from e
            logger.info("Wrote %d cards to %s", count, self.index_file)

        if needs_refresh or not self._index.cards:
            try:
                await self.load_snapshot()
            except OSError as e:
                raise IngestionError(f"Cannot read snapshot: {e}") from e

        return needs_refresh

    async def _fetch_bulk_metadata(self) -> BulkMetadata:
        try:
            response = await self._client.get(self._bulk_metadata_url, headers=self._headers)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CatalogMetadataError(f"Failed to fetch bulk metadata: {e}") from e

        if not isinstance(payload, dict):
            raise CatalogMetadataError("Bulk metadata response is not an object.")

        download_uri = payload.get("download_uri") or payload.get("downloadUri")
        if not download_uri:
            raise CatalogMetadataError("Bulk metadata response missing download URI.")

        version_tag = payload.get("updated_at") or payload.get("versionTag") or download_uri
        return BulkMetadata(version_tag=str(version_tag), download_uri=str(download_uri))

    async def _rebuild_snapshot(self, remote: BulkMetadata) -> int:
        """Stream the bulk dump into a temp file, then commit it."""
        temp_file = self.data_dir / f"cards-{time.time_ns()}.tmp"
        try:
            seen, count = await self._stream_to_file(remote.download_uri, temp_file)
            if seen == 0:
                # A non-array body such as an error object parses to zero items
                raise IngestionError("Bulk dump contained no card records.")
            os.replace(temp_file, self.index_file)
        except (httpx.HTTPError, ijson.JSONError, zlib.error, OSError) as e:
            raise IngestionError(f"{type(e).__name__}: {e}") from e
        finally:
            temp_file.unlink(missing_ok=True)
        return count

    async def _stream_to_file(self, download_uri: str, temp_file: Path) -> tuple[int, int]:
        """
        Returns:
            (top-level records parsed, records written)
        """
        records = ijson.sendable_list()
        parser = ijson.items_coro(records, "item")
        seen = 0
        count = 0

        with open(temp_file, "w", encoding="utf-8") as out:
            async with self._client.stream(
                "GET",
                download_uri,
                headers=self._headers,
                timeout=BULK_DOWNLOAD_TIMEOUT,
            ) as response:
                response.raise_for_status()

                # httpx already decodes Content-Encoding: gzip
                content_encoding = response.headers.get("Content-Encoding", "").lower()
                gunzip = None
                if download_uri.lower().endswith(".gz") and "gzip" not in content_encoding:
                    gunzip = zlib.decompressobj(16 + zlib.MAX_WBITS)

                async for chunk in response.aiter_bytes(STREAM_CHUNK_SIZE):
                    if gunzip is not None:
                        chunk = gunzip.decompress(chunk)
                    if chunk:
                        parser.send(chunk)
                    seen += len(records)
                    count += _write_records(records, out)
                    del records[:]

                if gunzip is not None:
                    tail = gunzip.flush()
                    if tail:
                        parser.send(tail)

            parser.close()
            seen += len(records)
            count += _write_records(records, out)
            del records[:]

        return seen, count

    async def load_snapshot(self) -> None:
        """Load the committed snapshot into a fresh index and swap it in."""
        index = await asyncio.to_thread(_load_index_file, self.index_file)
        self._index = index
        logger.info("Loaded %d cards from %s", len(index.cards), self.index_file)

    def _read_local_metadata(self) -> LocalMetadata | None:
        if not self.metadata_file.exists():
            return None
        try:
            return LocalMetadata.model_validate_json(self.metadata_file.read_text(encoding="utf-8"))
        except (OSError, ValidationError):
            return None

    def _write_local_metadata(self, metadata: LocalMetadata) -> None:
        temp_file = self.metadata_file.with_suffix(".json.tmp")
        temp_file.write_text(metadata.model_dump_json(indent=2), encoding="utf-8")
        os.replace(temp_file, self.metadata_file)


def _write_records(records: list[Any], out: IO[str]) -> int:
    """Filter, normalize and write parsed bulk records as NDJSON lines."""
    written = 0
    for raw in records:
        if not is_printable_payload(raw):
            continue
        card = CatalogCard.from_payload(raw)
        if card is None:
            continue
        entry = NormalizedCard.from_card(card)
        out.write(json.dumps(entry.to_record(), ensure_ascii=False))
        out.write("\n")
        written += 1
    return written


def _load_index_file(path: Path) -> CardIndex:
    index = CardIndex()
    if not path.exists():
        return index

    with open(path, "rb") as f:
        for line_number, line in enumerate(f, 1):
            try:
                stripped = line.decode("utf-8").strip()
                if not stripped:
                    continue
                record = json.loads(stripped)
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.warning("Skipping malformed snapshot line %d in %s", line_number, path)
                continue
            entry = NormalizedCard.from_record(record)
            if entry is not None:
                index.insert(entry)

    # Once per load, not per query
    index.sort_printings()
    return index
