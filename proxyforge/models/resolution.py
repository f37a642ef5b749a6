"""
Resolution response models.

One ResolveItem per decklist line. Multi-faced cards stay one item: the
faces travel as data on `card.faces`, the front face is displayed.
"""

from typing import Any

from pydantic import BaseModel, Field


class LinePayload(BaseModel):
    """The decklist line an item was produced from."""

    qty: int
    name: str
    set: str | None = None
    collector: str | None = None
    foil: bool | None = None


class FacePayload(BaseModel):
    """One face of a multi-faced card."""

    name: str
    image: str | None = None
    high_res: bool = False


class CardPayload(BaseModel):
    """Identity of the resolved printing."""

    id: str
    name: str
    lang: str
    set: str
    collector_number: str
    layout: str | None = None
    faces: list[FacePayload] | None = None


class ResolveItem(BaseModel):
    """
    Resolution result for one decklist line.

    `error` and `warning` are per-line and never fail the batch.
    """

    line: LinePayload
    card: CardPayload | None = None
    image: str | None = None
    high_res: bool | None = None
    error: str | None = None
    warning: str | None = None
    face_name: str | None = Field(
        default=None,
        description="For double-sided cards, the face currently displayed",
    )
    is_secondary_face: bool | None = None
    all_printings: list[dict[str, Any]] | None = Field(
        default=None,
        description="Every known printing of the card, for printing selection",
    )
    selected_printing: dict[str, Any] | None = None
