"""
Catalog Card Models.

This module defines the trust boundary between loose Scryfall JSON
(bulk dump records and live API responses) and the typed card records
used by the store, the client and the resolution pipeline.

INVARIANTS:
- Raw payloads are UNTRUSTED; `CatalogCard.from_payload` is the only way in
- A CatalogCard always has id, name, set_code and collector_number
- All models are frozen (immutable after construction)
- Name keys are computed once at normalization time, never per query
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from typing import Any

# Highest fidelity first
IMAGE_PRIORITY: tuple[str, ...] = ("png", "large", "normal", "border_crop", "art_crop")

# Layouts that are not printable game cards
EXCLUDED_LAYOUTS = frozenset({"emblem", "planar", "scheme"})

# Layouts whose faces are physically separate sides
DOUBLE_SIDED_LAYOUTS = frozenset(
    {
        "transform",
        "modal_dfc",
        "double_faced_token",
        "reversible_card",
    }
)


def normalize_name(value: str) -> str:
    """
    Fold a card name to its lookup key.

    Canonical decomposition, combining marks removed, case folded.
    "Æther Vial" and "Lim-Dûl's Vault" fold the same way at ingestion and
    query time.
    """
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold().strip()


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True, slots=True)
class ImageUris:
    """Image URIs for a card or a card face."""

    png: str | None = None
    large: str | None = None
    normal: str | None = None
    art_crop: str | None = None
    border_crop: str | None = None

    @classmethod
    def from_payload(cls, raw: Any) -> ImageUris | None:
        """Keep only the known keys. An empty map becomes None."""
        if not isinstance(raw, dict):
            return None
        uris = cls(**{key: _optional_str(raw.get(key)) for key in IMAGE_PRIORITY})
        if not any(getattr(uris, key) for key in IMAGE_PRIORITY):
            return None
        return uris

    def best(self) -> str | None:
        """Return the highest-fidelity URI present."""
        for key in IMAGE_PRIORITY:
            uri = getattr(self, key)
            if uri:
                return uri
        return None

    def to_payload(self) -> dict[str, str]:
        return {key: getattr(self, key) for key in IMAGE_PRIORITY if getattr(self, key)}


@dataclass(frozen=True, slots=True)
class CardFace:
    """One physical or printed face of a multi-faced card."""

    name: str | None = None
    image_uris: ImageUris | None = None

    @classmethod
    def from_payload(cls, raw: Any) -> CardFace:
        if not isinstance(raw, dict):
            return cls()
        return cls(
            name=_optional_str(raw.get("name")),
            image_uris=ImageUris.from_payload(raw.get("image_uris")),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.name is not None:
            payload["name"] = self.name
        if self.image_uris is not None:
            payload["image_uris"] = self.image_uris.to_payload()
        return payload


@dataclass(frozen=True, slots=True)
class CatalogCard:
    """
    A single printing of a card (set + collector number + language).

    Attributes:
        id: Scryfall card id, globally unique
        name: Canonical (English) card name
        set_code: Set code, lower case (e.g., "lea")
        collector_number: Collector number within the set (e.g., "150", "1a")
        lang: Language code (e.g., "en", "de")
        grouping_id: Scryfall oracle id, shared by every printing of the card
        printed_name: Localized name as printed, for non-English printings
        layout: Scryfall layout (e.g., "normal", "transform")
        released_at: ISO release date
        image_status: Scryfall image status (e.g., "highres_scan")
        highres_image: True if Scryfall has a high resolution scan
        games: Games the printing exists in ("paper", "arena", "mtgo")
        image_uris: Image URIs for single-faced printings
        card_faces: Faces for multi-faced printings
    """

    id: str
    name: str
    set_code: str
    collector_number: str
    lang: str = "en"
    grouping_id: str | None = None
    printed_name: str | None = None
    layout: str | None = None
    released_at: str | None = None
    image_status: str | None = None
    highres_image: bool = False
    games: tuple[str, ...] | None = None
    image_uris: ImageUris | None = None
    card_faces: tuple[CardFace, ...] | None = None

    @classmethod
    def from_payload(cls, raw: Any) -> CatalogCard | None:
        """
        Validate a loose Scryfall card object.

        Returns None when the record is not a mapping or lacks any identity
        field (id, name, set, collector_number).
        """
        if not isinstance(raw, dict):
            return None

        card_id = _optional_str(raw.get("id"))
        name = _optional_str(raw.get("name"))
        set_code = _optional_str(raw.get("set"))
        collector_number = _optional_str(raw.get("collector_number"))
        if not (card_id and name and set_code and collector_number):
            return None

        games = raw.get("games")
        faces = raw.get("card_faces")

        return cls(
            id=card_id,
            name=name,
            set_code=set_code.lower(),
            collector_number=collector_number,
            lang=(_optional_str(raw.get("lang")) or "en").lower(),
            grouping_id=_optional_str(raw.get("oracle_id")),
            printed_name=_optional_str(raw.get("printed_name")),
            layout=_optional_str(raw.get("layout")),
            released_at=_optional_str(raw.get("released_at")),
            image_status=_optional_str(raw.get("image_status")),
            highres_image=bool(raw.get("highres_image")),
            games=tuple(str(game) for game in games) if isinstance(games, list) else None,
            image_uris=ImageUris.from_payload(raw.get("image_uris")),
            card_faces=(
                tuple(CardFace.from_payload(face) for face in faces)
                if isinstance(faces, list)
                else None
            ),
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize with Scryfall field names, omitting absent fields."""
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "lang": self.lang,
            "set": self.set_code,
            "collector_number": self.collector_number,
            "highres_image": self.highres_image,
        }
        optional = {
            "oracle_id": self.grouping_id,
            "printed_name": self.printed_name,
            "layout": self.layout,
            "released_at": self.released_at,
            "image_status": self.image_status,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        if self.games is not None:
            payload["games"] = list(self.games)
        if self.image_uris is not None:
            payload["image_uris"] = self.image_uris.to_payload()
        if self.card_faces is not None:
            payload["card_faces"] = [face.to_payload() for face in self.card_faces]
        return payload

    @property
    def is_multi_faced(self) -> bool:
        return bool(self.card_faces) and len(self.card_faces or ()) >= 2


@dataclass(frozen=True, slots=True)
class NormalizedCard:
    """
    A CatalogCard with its precomputed lookup keys.

    Only the Bulk Data Store holds these; lookups hand out the inner card.
    """

    card: CatalogCard
    name_key: str
    printed_name_key: str | None = None

    @classmethod
    def from_card(cls, card: CatalogCard) -> NormalizedCard:
        return cls(
            card=card,
            name_key=normalize_name(card.name),
            printed_name_key=normalize_name(card.printed_name) if card.printed_name else None,
        )

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> NormalizedCard | None:
        """Rebuild from one snapshot line. Keys are trusted when present."""
        card = CatalogCard.from_payload(record)
        if card is None:
            return None
        name_key = record.get("nameNormalized")
        if not isinstance(name_key, str) or not name_key:
            return cls.from_card(card)
        printed_key = record.get("printedNameNormalized")
        return cls(
            card=card,
            name_key=name_key,
            printed_name_key=printed_key if isinstance(printed_key, str) else None,
        )

    def to_record(self) -> dict[str, Any]:
        record = self.card.to_payload()
        record["nameNormalized"] = self.name_key
        if self.printed_name_key is not None:
            record["printedNameNormalized"] = self.printed_name_key
        return record


def is_printable_payload(raw: Any) -> bool:
    """
    Ingestion filter for bulk records.

    Drops printings that do not exist in paper, token/emblem/planar/scheme
    layouts, and records without identity fields.
    """
    if not isinstance(raw, dict):
        return False

    games = raw.get("games")
    if isinstance(games, list) and "paper" not in games:
        return False

    layout = raw.get("layout")
    if isinstance(layout, str):
        layout = layout.lower()
        if "token" in layout or layout in EXCLUDED_LAYOUTS:
            return False

    return all(raw.get(key) for key in ("id", "name", "set", "collector_number"))


@dataclass(frozen=True, slots=True)
class ImageChoice:
    """The preferred image for a card and whether it is high resolution."""

    image: str | None
    high_res: bool


@dataclass(frozen=True, slots=True)
class ResolvedFace:
    """A face of a resolved multi-faced card."""

    name: str
    image: str | None
    high_res: bool


@dataclass(frozen=True, slots=True)
class ResolvedCardSummary:
    """
    Display-ready summary of a resolved card.

    `faces` is set only for double-sided cards (two or more faces).
    """

    card: CatalogCard
    image: str | None
    high_res: bool
    faces: tuple[ResolvedFace, ...] | None = field(default=None)
