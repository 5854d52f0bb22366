from collections.abc import Sequence
from typing import Protocol

from verus_etags.core.syntax import SyntaxTree


class SourceParseError(Exception):
    """Raised when a parser cannot recover the declaration structure of a source."""


class SourceParser(Protocol):
    name: str
    verification_aware: bool

    def parse(self, source: bytes) -> SyntaxTree: ...


def parse_with_fallback(source: bytes, parsers: Sequence[SourceParser]) -> SyntaxTree:
    """Return the tree from the first parser that accepts ``source``."""
    failures: list[str] = []
    for parser in parsers:
        try:
            return parser.parse(source)
        except SourceParseError as exc:
            failures.append(f"{parser.name}: {exc}")
    raise SourceParseError("; ".join(failures) or "no parsers configured")
