"""Verus-aware front end for the tree-sitter Rust grammar.

Verus adds item modes (``spec fn``), specification clauses (``requires``,
``ensures``...), broadcast groups and ``assume_specification`` items on top of
Rust. The scanner below blanks the additions with spaces so the Rust grammar
accepts what remains, keeping every newline and byte offset where it was, and
records the Verus-only declarations it removes so they can still be tagged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from verus_etags.core.grammar.rust import attach_declaration, check_structure, lower_source, parse_rust
from verus_etags.core.location import LineIndex
from verus_etags.core.syntax import (
    AssumeSpecificationDecl,
    Declaration,
    DeclKind,
    Ident,
    ItemDecl,
    Position,
    SyntaxTree,
)

logger = logging.getLogger(__name__)

_WHITESPACE = frozenset(b" \t\r\n\x0b\x0c")
_OPEN = frozenset({b"(", b"[", b"{"})
_CLOSE = frozenset({b")", b"]", b"}"})

_MODE_MODIFIERS = frozenset(
    {b"spec", b"proof", b"exec", b"open", b"closed", b"tracked", b"ghost", b"axiom", b"uninterp", b"broadcast"}
)
_MODIFIED_ITEMS = frozenset({b"fn", b"const", b"static", b"unsafe", b"async", b"extern"})
_SPEC_CLAUSES = frozenset(
    {
        b"requires",
        b"ensures",
        b"recommends",
        b"decreases",
        b"opens_invariants",
        b"no_unwind",
        b"returns",
        b"default_ensures",
        b"by",
    }
)
_GHOST_BINDERS = frozenset({b"tracked", b"ghost"})
_EXPRESSION_KEYWORDS = frozenset({b"if", b"while", b"match", b"return", b"in", b"else", b"let", b"break", b"move"})
_LOOP_KEYWORDS = frozenset({b"while", b"loop", b"for"})
_LOOP_CLAUSES = frozenset({b"invariant", b"invariant_except_break", b"invariant_ensures", b"ensures", b"decreases"})
_QUANTIFIERS = frozenset({b"forall", b"exists", b"choose"})
_EXPRESSION_ATTRIBUTES = frozenset({b"trigger", b"auto"})
_PREFIX_CONTEXT = frozenset({b"{", b"(", b"[", b",", b";", b"=", b">"})
_BLOCK_EXPRESSIONS = frozenset({b"if", b"match", b"else"})
_BINARY_OPERATORS = frozenset({b"=", b"&", b"|", b"+", b"-", b"*", b"/", b"%", b"!", b"^", b"<"})

# Specification operators rewritten in place to Rust operators of the same width.
_OPERATOR_REWRITES = (
    (b"<==>", b"==  "),
    (b"=~~=", b"==  "),
    (b"==>", b"|| "),
    (b"<==", b"|| "),
    (b"=~=", b"== "),
)


@dataclass(frozen=True)
class Token:
    kind: str
    start: int
    end: int
    text: bytes

    @property
    def is_ident(self) -> bool:
        return self.kind == "ident"

    def is_punct(self, text: bytes) -> bool:
        return self.kind == "punct" and self.text == text


def _is_ident_start(byte: int) -> bool:
    return byte == 0x5F or 0x41 <= byte <= 0x5A or 0x61 <= byte <= 0x7A or byte >= 0x80


def _is_ident_continue(byte: int) -> bool:
    return _is_ident_start(byte) or 0x30 <= byte <= 0x39


def _utf8_length(lead: int) -> int:
    if lead >= 0xF0:
        return 4
    if lead >= 0xE0:
        return 3
    if lead >= 0xC0:
        return 2
    return 1


def _skip_string(source: bytes, i: int) -> int:
    """Return the offset just past the string literal whose opening quote is at ``i``."""
    n = len(source)
    i += 1
    while i < n:
        byte = source[i]
        if byte == 0x5C:
            i += 2
            continue
        if byte == 0x22:
            return i + 1
        i += 1
    return n


def _skip_raw_string(source: bytes, i: int) -> int | None:
    """Skip ``r#"..."#`` starting at the ``r``; None when ``i`` does not start one."""
    j = i + 1
    hashes = 0
    while j < len(source) and source[j] == 0x23:
        hashes += 1
        j += 1
    if j >= len(source) or source[j] != 0x22:
        return None
    terminator = b'"' + b"#" * hashes
    end = source.find(terminator, j + 1)
    return len(source) if end == -1 else end + len(terminator)


def tokenize(source: bytes) -> list[Token]:
    """Split Rust source into identifiers, literals, lifetimes and punctuation.

    Comments and whitespace are dropped. ``->`` and ``::`` are single tokens so
    angle-bracket counting never sees the ``>`` of an arrow.
    """
    tokens: list[Token] = []
    n = len(source)
    i = 0
    while i < n:
        byte = source[i]
        start = i

        if byte in _WHITESPACE:
            i += 1
            continue

        if source.startswith(b"//", i):
            end = source.find(b"\n", i)
            i = n if end == -1 else end
            continue

        if source.startswith(b"/*", i):
            depth = 0
            while i < n:
                if source.startswith(b"/*", i):
                    depth += 1
                    i += 2
                elif source.startswith(b"*/", i):
                    depth -= 1
                    i += 2
                    if depth == 0:
                        break
                else:
                    i += 1
            continue

        if byte == 0x22:
            i = _skip_string(source, i)
            tokens.append(Token("literal", start, i, source[start:i]))
            continue

        if byte in b"bc" and i + 1 < n and source[i + 1] in b"\"'r":
            # byte and C string prefixes
            prefix_end = i + 1
            if source[prefix_end] == 0x72:
                end = _skip_raw_string(source, prefix_end)
                if end is not None:
                    i = end
                    tokens.append(Token("literal", start, i, source[start:i]))
                    continue
            elif source[prefix_end] == 0x22:
                i = _skip_string(source, prefix_end)
                tokens.append(Token("literal", start, i, source[start:i]))
                continue
            elif byte == 0x62:
                i = _skip_char(source, prefix_end)
                tokens.append(Token("literal", start, i, source[start:i]))
                continue

        if byte == 0x72 and i + 1 < n and source[i + 1] in b'#"':
            end = _skip_raw_string(source, i)
            if end is not None:
                i = end
                tokens.append(Token("literal", start, i, source[start:i]))
                continue
            if source[i + 1] == 0x23 and i + 2 < n and _is_ident_start(source[i + 2]):
                # raw identifier r#name
                i += 2
                while i < n and _is_ident_continue(source[i]):
                    i += 1
                tokens.append(Token("ident", start, i, source[start:i]))
                continue

        if _is_ident_start(byte):
            while i < n and _is_ident_continue(source[i]):
                i += 1
            tokens.append(Token("ident", start, i, source[start:i]))
            continue

        if 0x30 <= byte <= 0x39:
            while i < n and (_is_ident_continue(source[i]) or (source[i] == 0x2E and _next_is_digit(source, i))):
                i += 1
            tokens.append(Token("literal", start, i, source[start:i]))
            continue

        if byte == 0x27:
            end = _char_literal_end(source, i)
            if end is not None:
                i = end
                tokens.append(Token("literal", start, i, source[start:i]))
                continue
            i += 1
            while i < n and _is_ident_continue(source[i]):
                i += 1
            tokens.append(Token("lifetime", start, i, source[start:i]))
            continue

        if source.startswith(b"->", i) or source.startswith(b"::", i):
            i += 2
        else:
            i += 1
        tokens.append(Token("punct", start, i, source[start:i]))
    return tokens


def _next_is_digit(source: bytes, i: int) -> bool:
    return i + 1 < len(source) and 0x30 <= source[i + 1] <= 0x39


def _char_literal_end(source: bytes, i: int) -> int | None:
    """End of the char literal opening at ``i``, or None when it is a lifetime."""
    n = len(source)
    if i + 1 >= n:
        return None
    if source[i + 1] == 0x5C:
        return _skip_char(source, i)
    after = i + 1 + _utf8_length(source[i + 1])
    if after < n and source[after] == 0x27:
        return after + 1
    return None


def _skip_char(source: bytes, i: int) -> int:
    """Skip an escaped or plain char literal whose opening quote is at ``i``."""
    n = len(source)
    i += 1
    while i < n:
        byte = source[i]
        if byte == 0x5C:
            i += 2
            continue
        if byte == 0x27:
            return i + 1
        if byte == 0x0A:
            return i
        i += 1
    return n


@dataclass
class VerusScan:
    masked: bytes
    declarations: list[ItemDecl | AssumeSpecificationDecl] = field(default_factory=list)


class _Scanner:
    def __init__(self, source: bytes) -> None:
        self._tokens = tokenize(source)
        self._buffer = bytearray(source)
        self._lines = LineIndex(source)
        self.declarations: list[ItemDecl | AssumeSpecificationDecl] = []

    def _at(self, index: int) -> Token | None:
        return self._tokens[index] if 0 <= index < len(self._tokens) else None

    def _text_at(self, index: int) -> bytes:
        token = self._at(index)
        return token.text if token is not None else b""

    def _blank(self, start: int, end: int) -> None:
        for offset in range(start, end):
            if self._buffer[offset] != 0x0A:
                self._buffer[offset] = 0x20

    def _blank_tokens(self, first: int, last: int) -> None:
        self._blank(self._tokens[first].start, self._tokens[last].end)

    def _ident(self, token: Token) -> Ident:
        position = Position(line=self._lines.line_of(token.start), column=self._lines.column_of(token.start))
        return Ident(text=token.text.decode("utf-8"), position=position)

    def _matching(self, index: int) -> int:
        depth = 0
        for position in range(index, len(self._tokens)):
            text = self._tokens[position].text
            if self._tokens[position].kind != "punct":
                continue
            if text in _OPEN:
                depth += 1
            elif text in _CLOSE:
                depth -= 1
                if depth == 0:
                    return position
        return len(self._tokens) - 1

    def _find_at_depth(self, index: int, stops: frozenset[bytes]) -> int:
        """First token from ``index`` whose text is in ``stops`` at bracket depth 0."""
        depth = 0
        for position in range(index, len(self._tokens)):
            token = self._tokens[position]
            if token.kind == "punct":
                if depth == 0 and token.text in stops:
                    return position
                if token.text in _OPEN:
                    depth += 1
                elif token.text in _CLOSE:
                    depth -= 1
                    if depth < 0:
                        return position
        return len(self._tokens)

    def _item_start(self, index: int) -> int:
        """Extend ``index`` backwards over a ``pub`` or ``pub(...)`` visibility."""
        previous = self._at(index - 1)
        if previous is None:
            return index
        if previous.is_ident and previous.text == b"pub":
            return index - 1
        if previous.is_punct(b")"):
            depth = 0
            for position in range(index - 1, -1, -1):
                token = self._tokens[position]
                if token.is_punct(b")"):
                    depth += 1
                elif token.is_punct(b"("):
                    depth -= 1
                    if depth == 0:
                        if self._text_at(position - 1) == b"pub":
                            return position - 1
                        break
        return index

    def scan(self) -> VerusScan:
        index = 0
        while index < len(self._tokens):
            index = self._step(index)
        return VerusScan(masked=bytes(self._buffer), declarations=self.declarations)

    def _step(self, index: int) -> int:
        token = self._tokens[index]
        if self._buffer[token.start] == 0x20:
            # already blanked by an earlier rule
            return index + 1
        if token.kind == "punct":
            return self._punctuation(index)
        if not token.is_ident:
            return index + 1

        text = token.text
        following = self._at(index + 1)
        if following is not None and following.is_punct(b"!") and text not in _EXPRESSION_KEYWORDS:
            return self._skip_macro(index)

        if text == b"broadcast" and self._text_at(index + 1) == b"group":
            return self._broadcast_group(index)
        if text == b"broadcast" and self._text_at(index + 1) == b"use":
            return self._blank_until_semicolon(index, index)
        if text == b"global" and self._text_at(index + 1) in (b"size_of", b"layout"):
            return self._blank_until_semicolon(index, index)
        if text == b"assume_specification":
            return self._assume_specification(index)
        if text in _GHOST_BINDERS and (self._is_binding(index + 1) or self._text_at(index - 1) == b"let"):
            # ghost and tracked fields, parameters and locals: `ghost max: nat`
            self._blank_tokens(index, index)
            return index + 1
        if text == b"proof" and self._text_at(index + 1) == b"{":
            self._blank_tokens(index, index)
            return index + 1
        if text in _QUANTIFIERS and self._text_at(index + 1) == b"|":
            first = index - 1 if self._text_at(index - 1) == b"assert" else index
            self._blank_tokens(first, index)
            return index + 1
        if text == b"by" and self._follows_expression(index) and self._text_at(index + 1) in (b"(", b"{"):
            return self._proof_block(index)
        if text in _LOOP_KEYWORDS:
            return self._loop_header(index)
        if text in _MODE_MODIFIERS:
            return self._modifiers(index)
        if text == b"fn" and following is not None and following.is_ident:
            return self._signature(index)
        if text in (b"const", b"static") and following is not None and following.is_ident:
            if following.text not in _MODIFIED_ITEMS:
                return self._const_item(index)
        return index + 1

    def _write(self, offset: int, data: bytes) -> None:
        self._buffer[offset : offset + len(data)] = data

    def _punctuation(self, index: int) -> int:
        token = self._tokens[index]
        for operator, replacement in _OPERATOR_REWRITES:
            if self._buffer.startswith(operator, token.start):
                self._write(token.start, replacement)
                return index + len(operator)
        for operator in (b"&&&", b"|||"):
            if self._buffer.startswith(operator, token.start):
                # a leading `&&&` opens a conjunction list and has no left operand
                prefix = index == 0 or self._text_at(index - 1) in _PREFIX_CONTEXT
                self._write(token.start, b"   " if prefix else operator[:2] + b" ")
                return index + len(operator)
        if token.text == b"@" and index > 0 and self._tokens[index - 1].end == token.start:
            # view suffix: `v@`
            self._blank_tokens(index, index)
            return index + 1
        if token.text == b"#":
            bracket = index + 2 if self._text_at(index + 1) == b"!" else index + 1
            if self._text_at(bracket) == b"[" and self._text_at(bracket + 1) in _EXPRESSION_ATTRIBUTES:
                close = self._matching(bracket)
                self._blank_tokens(index, close)
                return close + 1
        return index + 1

    def _follows_expression(self, index: int) -> bool:
        previous = self._at(index - 1)
        if previous is None:
            return False
        return previous.kind in ("ident", "literal") or previous.text in (b")", b"]")

    def _proof_block(self, index: int) -> int:
        # `assert(p) by { .. }` becomes `assert(p);  { .. }`
        self._write(self._tokens[index].start, b"; ")
        if self._text_at(index + 1) != b"(":
            return index + 1
        close = self._matching(index + 1)
        self._blank_tokens(index + 1, close)
        if self._text_at(close + 1) in _SPEC_CLAUSES:
            return self._blank_clause(close + 1)
        return close + 1

    def _loop_header(self, index: int) -> int:
        """Blank loop clauses (``invariant``, ``decreases``...) between a loop header and its body."""
        depth = 0
        for position in range(index + 1, len(self._tokens)):
            token = self._tokens[position]
            if token.kind == "punct":
                if depth == 0 and token.text in (b"{", b";"):
                    break
                if token.text in _OPEN:
                    depth += 1
                elif token.text in _CLOSE:
                    depth -= 1
                    if depth < 0:
                        break
            elif depth == 0 and token.is_ident and token.text in _LOOP_CLAUSES:
                self._blank_clause(position)
                break
        return index + 1

    def _skip_macro(self, index: int) -> int:
        body = index + 2
        if self._at(body) is not None and self._tokens[body].is_ident:
            body += 1
        token = self._at(body)
        if token is not None and token.kind == "punct" and token.text in _OPEN:
            return self._matching(body) + 1
        return index + 2

    def _blank_until_semicolon(self, first: int, index: int) -> int:
        end = min(self._find_at_depth(index + 1, frozenset({b";"})), len(self._tokens) - 1)
        self._blank_tokens(first, end)
        return end + 1

    def _broadcast_group(self, index: int) -> int:
        name = self._at(index + 2)
        if name is None or not name.is_ident:
            return index + 1
        first = self._item_start(index)
        close = index + 3
        if self._at(close) is not None and self._tokens[close].is_punct(b"{"):
            close = self._matching(close)
        else:
            close = index + 2
        start, end = self._tokens[first].start, self._tokens[close].end
        self.declarations.append(
            ItemDecl(span=(start, end), kind=DeclKind.BROADCAST_GROUP, name=self._ident(name))
        )
        self._blank(start, end)
        return close + 1

    def _assume_specification(self, index: int) -> int:
        position = index + 1
        if self._at(position) is not None and self._tokens[position].is_punct(b"<"):
            depth = 0
            while position < len(self._tokens):
                token = self._tokens[position]
                if token.is_punct(b"<"):
                    depth += 1
                elif token.is_punct(b">"):
                    depth -= 1
                    if depth == 0:
                        position += 1
                        break
                position += 1
        bracket = self._at(position)
        if bracket is None or not bracket.is_punct(b"["):
            return index + 1

        close = self._matching(position)
        target: Token | None = None
        angle = 0
        for token in self._tokens[position + 1 : close]:
            if token.is_punct(b"<"):
                angle += 1
            elif token.is_punct(b">"):
                angle -= 1
            elif token.is_ident and angle == 0 and token.text != b"as":
                target = token

        first = self._item_start(index)
        end = min(self._find_at_depth(close + 1, frozenset({b";"})), len(self._tokens) - 1)
        start, stop = self._tokens[first].start, self._tokens[end].end
        if target is not None:
            self.declarations.append(AssumeSpecificationDecl(span=(start, stop), target=self._ident(target)))
        self._blank(start, stop)
        return end + 1

    def _modifiers(self, index: int) -> int:
        position = index
        while position < len(self._tokens):
            token = self._tokens[position]
            if token.is_ident and token.text in _MODE_MODIFIERS:
                position += 1
                following = self._at(position)
                if following is not None and following.is_punct(b"(") and token.text in (b"spec", b"open", b"closed"):
                    position = self._matching(position) + 1
                continue
            break
        item = self._at(position)
        if item is None or not item.is_ident or item.text not in _MODIFIED_ITEMS:
            return index + 1
        self._blank_tokens(index, position - 1)
        return position

    def _blank_clause(self, index: int) -> int:
        end = self._clause_end(index + 1)
        self._blank_tokens(index, min(end, len(self._tokens)) - 1)
        return end

    def _clause_end(self, index: int) -> int:
        """Index of the ``{`` or ``;`` ending a clause list, skipping blocks of ``if``/``match``/``else``."""
        depth = 0
        awaiting_block = False
        position = index
        while position < len(self._tokens):
            token = self._tokens[position]
            if token.is_ident and depth == 0 and token.text in _BLOCK_EXPRESSIONS:
                awaiting_block = True
            elif token.kind == "punct":
                if depth == 0 and token.text == b";":
                    return position
                if depth == 0 and token.text == b"{":
                    if not awaiting_block and not self._expects_operand(position):
                        return position
                    awaiting_block = False
                    position = self._matching(position) + 1
                    continue
                if token.text in _OPEN:
                    depth += 1
                elif token.text in _CLOSE:
                    depth -= 1
                    if depth < 0:
                        return position
            position += 1
        return len(self._tokens)

    def _expects_operand(self, index: int) -> bool:
        previous = self._at(index - 1)
        if previous is None or previous.kind != "punct":
            return False
        if previous.text in _BINARY_OPERATORS:
            return True
        # `==>` and `=>` arrows
        before = self._at(index - 2)
        return previous.text == b">" and before is not None and before.is_punct(b"=") and before.end == previous.start

    def _signature(self, index: int) -> int:
        """Blank Verus additions in a fn signature; returns the index of its body or ``;``."""
        depth = 0
        position = index + 2
        while position < len(self._tokens):
            token = self._tokens[position]
            if token.kind == "punct":
                if depth == 0 and token.text in (b"{", b";"):
                    return position
                if token.text in _OPEN:
                    depth += 1
                elif token.text in _CLOSE:
                    depth -= 1
                    if depth < 0:
                        return position
                elif depth == 0 and token.text == b"->":
                    self._named_return(position)
                position += 1
                continue
            if depth == 0 and token.is_ident and token.text in _SPEC_CLAUSES:
                position = self._blank_clause(position)
                continue
            if depth == 1 and token.text in _GHOST_BINDERS:
                following = self._at(position + 1)
                if following is not None and following.is_ident:
                    self._blank_tokens(position, position)
            position += 1
        return position

    def _named_return(self, arrow: int) -> None:
        # -> (result: T) becomes -> (        T)
        if self._text_at(arrow + 1) != b"(":
            return
        position = arrow + 2
        if self._text_at(position) in _GHOST_BINDERS:
            position += 1
        if self._is_binding(position):
            self._blank_tokens(arrow + 2, position + 1)

    def _is_binding(self, index: int) -> bool:
        name = self._at(index)
        colon = self._at(index + 1)
        return name is not None and name.is_ident and colon is not None and colon.is_punct(b":")

    def _const_item(self, index: int) -> int:
        position = index + 1
        if self._text_at(position) in _GHOST_BINDERS and self._is_binding(position + 1):
            # static ghost NAME: T
            self._blank_tokens(position, position)
            position += 1
        depth = 0
        while position < len(self._tokens):
            token = self._tokens[position]
            if token.kind == "punct":
                if depth == 0 and token.text in (b"=", b";", b"{", b",", b">"):
                    return position
                if token.text in _OPEN:
                    depth += 1
                elif token.text in _CLOSE:
                    depth -= 1
                    if depth < 0:
                        return position
                position += 1
                continue
            if depth == 0 and token.is_ident and token.text in _SPEC_CLAUSES:
                end = self._blank_clause(position)
                body = self._at(end)
                if body is not None and body.is_punct(b"{"):
                    # exec const bodies: `{ value }` becomes `= value ;`
                    close = self._matching(end)
                    self._buffer[body.start] = ord("=")
                    self._buffer[self._tokens[close].start] = ord(";")
                    return close + 1
                return end
            position += 1
        return position


def scan_verus(source: bytes) -> VerusScan:
    return _Scanner(source).scan()


class VerusParser:
    """Rust grammar extended with Verus item modes, clauses and Verus-only items."""

    name = "verus"
    verification_aware = True

    def parse(self, source: bytes) -> SyntaxTree:
        scan = scan_verus(source)
        root = parse_rust(scan.masked)
        check_structure(root)
        items: list[Declaration] = lower_source(root, scan.masked)
        for declaration in scan.declarations:
            items = attach_declaration(items, declaration)
        logger.debug("Verus scan recovered %d Verus-only declaration(s)", len(scan.declarations))
        return SyntaxTree(items=tuple(items), parser=self.name)
