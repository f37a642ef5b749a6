from proxyforge.parsers.decklist import DecklistLine, DecklistParser, parse_decklist

__all__ = [
    "DecklistLine",
    "DecklistParser",
    "parse_decklist",
]
