from collections.abc import Callable
from typing import Any

import pytest
import respx

from proxyforge.models.card import CatalogCard

CardPayloadFactory = Callable[..., dict[str, Any]]


@pytest.fixture(autouse=True)
def _reset_global_respx_router():
    """Drop routes registered on respx's global router so they can't leak between tests."""
    yield
    respx.mock.clear()
    respx.mock.reset()


def _card_payload(
    card_id: str,
    name: str,
    set_code: str = "lea",
    collector_number: str = "1",
    lang: str = "en",
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": card_id,
        "name": name,
        "set": set_code,
        "collector_number": collector_number,
        "lang": lang,
        "oracle_id": f"oracle-{name.lower().replace(' ', '-')}",
        "layout": "normal",
        "released_at": "1993-08-05",
        "games": ["paper"],
        "image_uris": {
            "normal": f"https://img.example/{card_id}/normal.jpg",
            "png": f"https://img.example/{card_id}/png.png",
        },
    }
    payload.update(extra)
    return payload


@pytest.fixture
def card_payload() -> CardPayloadFactory:
    """Factory for Scryfall-shaped card objects."""
    return _card_payload


@pytest.fixture
def make_card(card_payload: CardPayloadFactory) -> Callable[..., CatalogCard]:
    """Factory for validated CatalogCard instances."""

    def factory(card_id: str, name: str, **kwargs: Any) -> CatalogCard:
        card = CatalogCard.from_payload(card_payload(card_id, name, **kwargs))
        assert card is not None
        return card

    return factory


@pytest.fixture
def transform_payload(card_payload: CardPayloadFactory) -> dict[str, Any]:
    """A double-faced card with images only on its faces."""
    payload = card_payload(
        "dfc-1",
        "Delver of Secrets // Insectile Aberration",
        set_code="isd",
        collector_number="51",
        layout="transform",
        oracle_id="oracle-delver",
        released_at="2011-09-30",
        card_faces=[
            {
                "name": "Delver of Secrets",
                "image_uris": {"png": "https://img.example/dfc-1/front.png"},
            },
            {
                "name": "Insectile Aberration",
                "image_uris": {"png": "https://img.example/dfc-1/back.png"},
            },
        ],
    )
    del payload["image_uris"]
    return payload


@pytest.fixture
def sample_decklist() -> str:
    """Sample pasted decklist for testing."""
    return """1 Lightning Bolt (lea) 150
4 Counterspell
1x Sol Ring (c20) 1a *F*
1 Anthroplasm (ulg)
this is not a card line"""
