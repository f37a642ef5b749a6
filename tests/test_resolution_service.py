"""Tests for the card resolution service."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from proxyforge.config import Settings
from proxyforge.models.failure import IngestionError
from proxyforge.parsers.decklist import parse_decklist
from proxyforge.services.bulk_store import BulkDataStore
from proxyforge.services.catalog_client import CatalogClient
from proxyforge.services.resolution_pipeline import resolve_decklist
from proxyforge.services.resolution_service import ResolutionContext, ResolutionService

API = "https://api.scryfall.com"


@pytest.fixture
def no_delay():
    with patch("proxyforge.services.catalog_client._delay", new_callable=AsyncMock) as delay:
        yield delay


@pytest.fixture
async def service(tmp_path: Path, no_delay):
    store = BulkDataStore(tmp_path / "scryfall")
    client = CatalogClient(min_request_interval=0)
    resolution_service = ResolutionService(store, client)
    yield resolution_service
    await resolution_service.aclose()


class TestFindByCollector:
    @respx.mock(assert_all_called=False)
    async def test_local_hit_makes_no_remote_call(self, service, make_card) -> None:
        route = respx.route(host="api.scryfall.com")
        service.store.index_remote_card(make_card("c1", "Counterspell", collector_number="54"))

        card = await service.find_by_collector("LEA", "54")

        assert card is not None
        assert card.id == "c1"
        assert not route.called

    @respx.mock
    async def test_remote_hit_is_indexed(self, service, card_payload) -> None:
        route = respx.get(f"{API}/cards/c20/1a/en").mock(
            return_value=httpx.Response(
                200, json=card_payload("sol", "Sol Ring", set_code="c20", collector_number="1a")
            )
        )

        first = await service.find_by_collector("c20", "1a", "en")
        second = await service.find_by_collector("c20", "1a", "en")

        assert first == second
        assert route.call_count == 1
        assert service.store.find_by_name("Sol Ring") == first

    @respx.mock
    async def test_remote_miss_is_none(self, service) -> None:
        respx.get(f"{API}/cards/zzz/1").mock(return_value=httpx.Response(404))

        assert await service.find_by_collector("zzz", "1") is None


class TestFindByName:
    @respx.mock(assert_all_called=False)
    async def test_local_hit_in_requested_language(self, service, make_card) -> None:
        route = respx.route(host="api.scryfall.com")
        service.store.index_remote_card(make_card("en", "Counterspell"))
        service.store.index_remote_card(
            make_card("de", "Counterspell", collector_number="2", lang="de")
        )

        card = await service.find_by_name("Counterspell", lang="DE")

        assert card.id == "de"
        assert not route.called

    @respx.mock
    async def test_remote_order_named_then_search(self, service, card_payload) -> None:
        named = respx.get(f"{API}/cards/named").mock(return_value=httpx.Response(404))
        search = respx.get(f"{API}/cards/search").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        card_payload(
                            "de-1", "Counterspell", lang="de", printed_name="Gegenzauber"
                        )
                    ]
                },
            )
        )

        card = await service.find_by_name("Counterspell", lang="de")

        assert card is not None
        assert card.id == "de-1"
        assert named.call_count == 1
        assert search.calls.last.request.url.params["q"] == '"Counterspell"'
        assert service.store.find_by_name("Gegenzauber") == card

    @respx.mock
    async def test_any_language_fallback(self, service, card_payload) -> None:
        named = respx.get(f"{API}/cards/named").mock(
            side_effect=[
                httpx.Response(404),
                httpx.Response(200, json=card_payload("en-1", "Counterspell")),
            ]
        )
        respx.get(f"{API}/cards/search").mock(return_value=httpx.Response(404))

        card = await service.find_by_name("Counterspell", lang="ja")

        assert card is not None
        assert card.lang == "en"
        assert "lang" not in named.calls.last.request.url.params

    @respx.mock
    async def test_misses_are_cached(self, service) -> None:
        named = respx.get(f"{API}/cards/named").mock(return_value=httpx.Response(404))
        respx.get(f"{API}/cards/search").mock(return_value=httpx.Response(404))

        assert await service.find_by_name("Not A Card", lang="de") is None
        calls_after_first = named.call_count
        assert await service.find_by_name("not a card", lang="de") is None

        assert named.call_count == calls_after_first

    @respx.mock(assert_all_called=False)
    async def test_malformed_remote_body_stays_on_its_line(
        self, service, make_card, respx_mock
    ) -> None:
        """A garbled 2xx body fails one line, not the decklist."""
        service.store.index_remote_card(make_card("c1", "Counterspell", collector_number="54"))
        respx_mock.get(f"{API}/cards/named").mock(
            return_value=httpx.Response(200, text="<html>maintenance</html>")
        )
        respx_mock.get(f"{API}/cards/search").mock(return_value=httpx.Response(404))

        items = await resolve_decklist(
            parse_decklist("4 Counterspell\n1 Unknown Card"), None, service
        )

        assert items[0].error is None
        assert items[0].card.id == "c1"
        assert items[1].card is None
        assert "Malformed catalog response" in items[1].error


class _SlowClient:
    """Counts how many remote lookups run at once."""

    def __init__(self) -> None:
        self.in_flight = 0
        self.peak = 0

    async def fetch_by_name(self, name, set_code=None, lang=None, cache=None):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        return None

    async def fetch_by_search(self, query, lang=None, cache=None):
        return None

    async def aclose(self) -> None:
        pass


class TestRemoteLimiter:
    async def test_remote_calls_are_bounded(self, tmp_path: Path) -> None:
        store = BulkDataStore(tmp_path)
        client = _SlowClient()
        service = ResolutionService(store, client, ResolutionContext(remote_concurrency=2))

        try:
            await asyncio.gather(*(service.find_by_name(f"Card {i}") for i in range(8)))
        finally:
            await service.aclose()

        assert client.peak == 2

    def test_context_is_shared_state(self) -> None:
        context = ResolutionContext(remote_concurrency=3)

        assert context.remote_limiter._value == 3
        assert context.collection_cache == {}


class TestPrintings:
    async def test_grouped_printings(self, service, make_card) -> None:
        old = make_card("a", "Counterspell", released_at="1993-08-05")
        new = make_card("b", "Counterspell", set_code="mh2", released_at="2021-06-18")
        service.store.index_remote_card(old)
        service.store.index_remote_card(new)

        assert service.get_printings(old) == [new, old]

    async def test_ungrouped_card_is_its_own_printing(self, service, make_card) -> None:
        card = make_card("a", "Counterspell", oracle_id=None)

        assert service.get_printings(card) == [card]

    async def test_search_delegates_to_store(self, service, make_card) -> None:
        card = make_card("a", "Counterspell")
        service.store.index_remote_card(card)

        assert service.search_by_name("counter", 5) == [card]

    async def test_resolved_card_summary(self, service, make_card) -> None:
        summary = service.to_resolved_card(make_card("a", "Counterspell"))

        assert summary.image == "https://img.example/a/png.png"
        assert summary.faces is None


class TestLifecycle:
    async def test_create_from_settings(self, tmp_path: Path) -> None:
        settings = Settings(catalog_data_dir=tmp_path, remote_concurrency=3)

        service = await ResolutionService.create(settings, load_catalog=False)
        try:
            assert service.store.data_dir == tmp_path
            assert service.context.remote_limiter._value == 3
            assert service.store.card_count == 0
        finally:
            await service.aclose()

    async def test_create_propagates_catalog_failure(self, tmp_path: Path) -> None:
        settings = Settings(catalog_data_dir=tmp_path)

        with (
            patch.object(
                BulkDataStore,
                "initialize",
                new_callable=AsyncMock,
                side_effect=IngestionError("boom"),
            ),
            pytest.raises(IngestionError),
        ):
            await ResolutionService.create(settings)

    async def test_auto_refresh_survives_failures(self, service) -> None:
        service._refresh_interval = 0.001

        def first_refresh_fails() -> bool:
            if refresh.await_count == 1:
                raise IngestionError("boom")
            return False

        refresh = AsyncMock(side_effect=first_refresh_fails)

        with patch.object(service.store, "refresh_if_stale", refresh):
            service.start_auto_refresh()
            for _ in range(50):
                if refresh.await_count >= 2:
                    break
                await asyncio.sleep(0.005)
            await service.stop_auto_refresh()

        assert refresh.await_count >= 2

    async def test_auto_refresh_survives_unexpected_errors(self, service) -> None:
        """An OS error in one attempt neither ends the loop nor escapes shutdown."""
        service._refresh_interval = 0.001
        refresh = AsyncMock(side_effect=PermissionError("read-only data dir"))

        with patch.object(service.store, "refresh_if_stale", refresh):
            service.start_auto_refresh()
            for _ in range(50):
                if refresh.await_count >= 3:
                    break
                await asyncio.sleep(0.005)
            await service.stop_auto_refresh()

        assert refresh.await_count >= 3

    async def test_stop_without_start(self, service) -> None:
        await service.stop_auto_refresh()
