import logging
import re
from dataclasses import dataclass, field

from verus_etags.core.location import LineIndex, extract_pattern
from verus_etags.core.ports.parser import SourceParseError, SourceParser
from verus_etags.core.syntax import (
    AssumeSpecificationDecl,
    Declaration,
    EnumDecl,
    Ident,
    ImplDecl,
    ItemDecl,
    MacroCall,
    SyntaxTree,
)
from verus_etags.models import Tag

logger = logging.getLogger(__name__)

VERIFICATION_MACROS = frozenset({"verus", "verus_", "verus_impl"})

_NOT_NEWLINE = re.compile(rb"[^\n]")


@dataclass
class TagContext:
    """Traversal state for one file: its unmasked source and the tags found so far."""

    source: bytes
    macro_parser: SourceParser | None = None
    lines: LineIndex = field(init=False)
    tags: list[Tag] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.lines = LineIndex(self.source)

    def add(self, name: str, ident: Ident) -> None:
        line = ident.position.line
        byte_offset = self.lines.line_start(line)
        self.tags.append(
            Tag(name=name, line=line, byte_offset=byte_offset, pattern=extract_pattern(self.source, byte_offset, name))
        )


def extract_tags(tree: SyntaxTree, source: bytes, macro_parser: SourceParser | None = None) -> list[Tag]:
    """Return the tags of every declaration in ``tree``, in traversal order.

    File-scope verification macros are expanded with ``macro_parser``; pass
    None to leave them unexpanded.
    """
    context = TagContext(source=source, macro_parser=macro_parser)
    for decl in tree.items:
        if isinstance(decl, MacroCall):
            _expand_macro(context, decl)
        else:
            visit_declaration(context, decl)
    return context.tags


def visit_declaration(context: TagContext, decl: Declaration) -> None:
    if isinstance(decl, ItemDecl):
        context.add(decl.name.text, decl.name)
    elif isinstance(decl, EnumDecl):
        context.add(decl.name.text, decl.name)
        for variant in decl.variants:
            context.add(f"{decl.name.text}::{variant.text}", variant)
    elif isinstance(decl, ImplDecl):
        if decl.self_type is not None:
            if decl.trait is not None:
                name = f"impl {decl.trait.text} for {decl.self_type.text}"
            else:
                name = f"impl {decl.self_type.text}"
            context.add(name, decl.self_type)
    elif isinstance(decl, AssumeSpecificationDecl):
        context.add(f"assume_specification {decl.target.text}", decl.target)

    for item in decl.items:
        visit_declaration(context, item)


def _expand_macro(context: TagContext, call: MacroCall) -> None:
    if context.macro_parser is None or not call.path or call.path[-1] not in VERIFICATION_MACROS:
        return

    start, end = call.body
    # Everything outside the body becomes whitespace so positions stay file positions.
    source = context.source
    body_source = _blank(source[:start]) + source[start:end] + _blank(source[end:])

    try:
        tree = context.macro_parser.parse(body_source)
    except SourceParseError as exc:
        logger.warning("Skipping %s! block at byte %d: %s", call.path[-1], call.span[0], exc)
        return

    for decl in tree.items:
        visit_declaration(context, decl)


def _blank(chunk: bytes) -> bytes:
    return _NOT_NEWLINE.sub(b" ", chunk)
