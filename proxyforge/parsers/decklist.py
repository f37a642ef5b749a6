"""
Decklist Parser.

THIS MODULE HANDLES SYNTAX ONLY.

Turns pasted decklist text into ordered line records. Card names, set
codes and collector numbers are NOT checked against the catalog here;
that is the resolution pipeline's job.

Supported line formats:
    3 Lightning Bolt (lea) 150
    1x Sol Ring (c20) 1a *F*
    1 Anthroplasm (ulg)
    4 Counterspell

Archidekt annotations ([tags] and ^notes^) are stripped before matching.
A non-blank line matching no format becomes a record with a parse error,
so output order always mirrors input order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

PARSE_ERROR_MESSAGE = (
    'Unable to parse decklist line. Expected format like "3 Lightning Bolt (2XM) 123".'
)


@dataclass(frozen=True, slots=True)
class DecklistLine:
    """
    One parsed decklist line.

    Attributes:
        original_text: The line as pasted
        quantity: Number of copies (0 when the line failed to parse)
        name: Card name, or the raw line when parsing failed
        set_code: Set code in parentheses, if given
        collector_number: Collector number after the set code, if given
        is_foil: True if the line carried a *F* marker
        parse_error: Why the line could not be parsed
    """

    original_text: str
    quantity: int
    name: str
    set_code: str | None = None
    collector_number: str | None = None
    is_foil: bool = False
    parse_error: str | None = None

    @property
    def is_resolvable(self) -> bool:
        return self.parse_error is None and self.quantity > 0 and bool(self.name)


class DecklistParser:
    """
    Parser for pasted decklist text.

    Usage:
        lines = DecklistParser().parse(raw_text)
    """

    # "3 Lightning Bolt (lea) 150", "1x Sol Ring (c20) 1a *F*"
    _FULL_FORMAT_PATTERN = re.compile(
        r"^(\d+)x?\s+(.+?)\s+\(([^)]+)\)\s+([^\s*]+)(?:\s+\*F\*)?$", re.IGNORECASE
    )

    # "1 Anthroplasm (ulg)"
    _SET_ONLY_PATTERN = re.compile(r"^(\d+)x?\s+(.+?)\s+\(([^)]+)\)(?:\s+\*F\*)?$", re.IGNORECASE)

    # "4 Counterspell"
    _SIMPLE_FORMAT_PATTERN = re.compile(r"^(\d+)x?\s+(.+)$", re.IGNORECASE)

    _FOIL_MARKER = re.compile(r"\*F\*", re.IGNORECASE)
    _BRACKET_TAGS = re.compile(r"\s*\[[^\]]*\]")
    _CARET_NOTES = re.compile(r"\s*\^[^^]*\^")
    _EXTRA_SPACES = re.compile(r"\s{2,}")

    def parse(self, raw_input: str) -> list[DecklistLine]:
        """
        Parse decklist text into line records, one per non-blank line.

        Args:
            raw_input: Raw decklist text

        Returns:
            Line records in input order
        """
        parsed: list[DecklistLine] = []

        for raw in raw_input.splitlines():
            stripped = raw.strip()
            if not stripped:
                continue
            parsed.append(self._parse_line(raw, stripped))

        return parsed

    def _parse_line(self, raw: str, stripped: str) -> DecklistLine:
        sanitized = self._sanitize(stripped)
        is_foil = bool(self._FOIL_MARKER.search(stripped))

        match = self._FULL_FORMAT_PATTERN.match(sanitized)
        if match:
            quantity = int(match.group(1))
            name = match.group(2).strip()
            if quantity > 0 and name:
                return DecklistLine(
                    original_text=raw,
                    quantity=quantity,
                    name=name,
                    set_code=match.group(3).strip(),
                    collector_number=match.group(4).strip(),
                    is_foil=is_foil,
                )

        match = self._SET_ONLY_PATTERN.match(sanitized)
        if match:
            quantity = int(match.group(1))
            name = match.group(2).strip()
            if quantity > 0 and name:
                return DecklistLine(
                    original_text=raw,
                    quantity=quantity,
                    name=name,
                    set_code=match.group(3).strip(),
                    is_foil=is_foil,
                )

        match = self._SIMPLE_FORMAT_PATTERN.match(sanitized)
        if match:
            quantity = int(match.group(1))
            name = self._FOIL_MARKER.sub("", match.group(2)).strip()
            if quantity > 0 and name:
                return DecklistLine(
                    original_text=raw,
                    quantity=quantity,
                    name=name,
                    is_foil=is_foil,
                )

        return DecklistLine(
            original_text=raw,
            quantity=0,
            name=stripped,
            parse_error=PARSE_ERROR_MESSAGE,
        )

    def _sanitize(self, line: str) -> str:
        working = self._BRACKET_TAGS.sub("", line)
        working = self._CARET_NOTES.sub("", working)
        working = self._EXTRA_SPACES.sub(" ", working)
        return working.strip()


def parse_decklist(raw_input: str) -> list[DecklistLine]:
    """Convenience wrapper around DecklistParser."""
    return DecklistParser().parse(raw_input)
