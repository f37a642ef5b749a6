"""Tests for the decklist resolution pipeline."""

import asyncio
import random

import pytest

from proxyforge.models.card import CatalogCard
from proxyforge.models.failure import CatalogRequestError
from proxyforge.parsers.decklist import PARSE_ERROR_MESSAGE, parse_decklist
from proxyforge.services.catalog_client import to_resolved_card
from proxyforge.services.resolution_pipeline import (
    UNRESOLVED_NAME_ONLY,
    UNRESOLVED_WITH_PRINTING,
    normalize_lang,
    resolve_decklist,
)


class FakeService:
    """In-memory stand-in for ResolutionService."""

    def __init__(self, cards: list[CatalogCard], *, jitter: bool = False) -> None:
        self.cards = cards
        self.jitter = jitter
        self.name_calls: list[tuple[str, str | None, str | None]] = []
        self.failing_names: set[str] = set()

    async def _pause(self) -> None:
        if self.jitter:
            await asyncio.sleep(random.uniform(0, 0.01))

    async def find_by_collector(self, set_code, collector_number, lang=None):
        await self._pause()
        matches = [
            card
            for card in self.cards
            if card.set_code == set_code.lower() and card.collector_number == collector_number
        ]
        for card in matches:
            if card.lang == lang:
                return card
        return next((card for card in matches if card.lang == "en"), None)

    async def find_by_name(self, name, lang=None, set_code=None):
        await self._pause()
        self.name_calls.append((name, lang, set_code))
        if name in self.failing_names:
            raise CatalogRequestError(503, "Service Unavailable")
        for card in self.cards:
            if card.name.lower() == name.lower() and card.lang == lang:
                return card
        return None

    def get_printings(self, card):
        return [other for other in self.cards if other.grouping_id == card.grouping_id]

    def to_resolved_card(self, card):
        return to_resolved_card(card)


@pytest.fixture
def catalog(make_card, transform_payload) -> list[CatalogCard]:
    delver = CatalogCard.from_payload(transform_payload)
    assert delver is not None
    return [
        make_card("bolt-lea", "Lightning Bolt", set_code="lea", collector_number="150"),
        make_card("bolt-m10", "Lightning Bolt", set_code="m10", collector_number="146"),
        make_card("counter-en", "Counterspell", set_code="lea", collector_number="54"),
        make_card(
            "counter-de",
            "Counterspell",
            set_code="lea",
            collector_number="54",
            lang="de",
            printed_name="Gegenzauber",
        ),
        make_card("sol", "Sol Ring", set_code="c20", collector_number="1a"),
        make_card("blank", "Blank Card", image_uris=None),
        delver,
    ]


@pytest.fixture
def service(catalog) -> FakeService:
    return FakeService(catalog)


class TestResolveDecklist:
    async def test_collector_lookup(self, service) -> None:
        items = await resolve_decklist(parse_decklist("1 Lightning Bolt (lea) 150"), "en", service)

        assert len(items) == 1
        item = items[0]
        assert item.error is None
        assert item.card.id == "bolt-lea"
        assert item.image == "https://img.example/bolt-lea/png.png"
        assert item.line.qty == 1
        assert item.line.set == "lea"
        assert item.line.collector == "150"
        assert item.selected_printing["id"] == "bolt-lea"
        assert {p["id"] for p in item.all_printings} == {"bolt-lea", "bolt-m10"}

    async def test_collector_miss_falls_back_to_name(self, service) -> None:
        items = await resolve_decklist(parse_decklist("2 Sol Ring (c20) 999"), "en", service)

        assert items[0].card.id == "sol"
        assert items[0].error is None
        assert service.name_calls == [("Sol Ring", "en", "c20")]

    async def test_unresolved_with_printing(self, service) -> None:
        items = await resolve_decklist(parse_decklist("1 Not A Card (zzz) 1"), "en", service)

        assert items[0].card is None
        assert items[0].error == UNRESOLVED_WITH_PRINTING

    async def test_unresolved_name_only(self, service) -> None:
        items = await resolve_decklist(parse_decklist("1 Not A Card"), "en", service)

        assert items[0].error == UNRESOLVED_NAME_ONLY

    async def test_parse_error_line(self, service) -> None:
        items = await resolve_decklist(parse_decklist("not a decklist line"), "en", service)

        assert items[0].error == PARSE_ERROR_MESSAGE
        assert items[0].line.qty == 0
        assert items[0].line.name == "not a decklist line"
        assert service.name_calls == []

    async def test_localized_printing_preferred(self, service) -> None:
        items = await resolve_decklist(parse_decklist("1 Counterspell"), "de", service)

        assert items[0].card.id == "counter-de"
        assert items[0].warning is None

    async def test_english_fallback_warns(self, service) -> None:
        """A missing German printing resolves in English with a warning."""
        items = await resolve_decklist(parse_decklist("1 Sol Ring"), "DE", service)

        item = items[0]
        assert item.card.id == "sol"
        assert item.card.lang == "en"
        assert item.warning == "Localized printing not available in de; using en."
        assert service.name_calls == [("Sol Ring", "de", None), ("Sol Ring", "en", None)]

    async def test_english_request_has_no_second_lookup(self, service) -> None:
        await resolve_decklist(parse_decklist("1 Not A Card"), None, service)

        assert service.name_calls == [("Not A Card", "en", None)]

    async def test_double_faced_card_is_one_item(self, service) -> None:
        items = await resolve_decklist(
            parse_decklist("4 Delver of Secrets // Insectile Aberration"), "en", service
        )

        assert len(items) == 1
        item = items[0]
        assert item.face_name == "Delver of Secrets"
        assert item.is_secondary_face is False
        assert item.image == "https://img.example/dfc-1/front.png"
        assert [face.name for face in item.card.faces] == [
            "Delver of Secrets",
            "Insectile Aberration",
        ]

    async def test_missing_image_is_an_error(self, service) -> None:
        items = await resolve_decklist(parse_decklist("1 Blank Card"), "en", service)

        assert items[0].card.id == "blank"
        assert items[0].image is None
        assert items[0].error == "No printable image was available for this card."

    async def test_catalog_failure_stays_on_its_line(self, service) -> None:
        service.failing_names.add("Counterspell")

        items = await resolve_decklist(
            parse_decklist("1 Counterspell\n1 Sol Ring"), "en", service
        )

        assert items[0].error.startswith("Card catalog request failed (503)")
        assert items[0].card is None
        assert items[1].card.id == "sol"

    async def test_output_order_matches_input(self, catalog) -> None:
        service = FakeService(catalog, jitter=True)
        names = ["Sol Ring", "Counterspell", "Lightning Bolt", "Not A Card"] * 10
        decklist = "\n".join(f"1 {name}" for name in names)

        items = await resolve_decklist(parse_decklist(decklist), "en", service, concurrency=4)

        assert [item.line.name for item in items] == names

    async def test_foil_flag_is_reported(self, service) -> None:
        items = await resolve_decklist(parse_decklist("1x Sol Ring (c20) 1a *F*"), "en", service)

        assert items[0].line.foil is True
        assert items[0].card.id == "sol"

    async def test_scenario_decklist(self, service, sample_decklist) -> None:
        items = await resolve_decklist(parse_decklist(sample_decklist), "en", service)

        assert len(items) == 5
        assert items[0].card.id == "bolt-lea"
        assert items[1].card.id == "counter-en"
        assert items[2].card.id == "sol"
        assert items[3].error == UNRESOLVED_NAME_ONLY
        assert items[4].error == PARSE_ERROR_MESSAGE


class TestNormalizeLang:
    def test_defaults_to_english(self) -> None:
        assert normalize_lang(None) == "en"
        assert normalize_lang("  ") == "en"

    def test_lower_cases(self) -> None:
        assert normalize_lang(" DE ") == "de"
