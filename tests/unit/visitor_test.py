"""Tests for turning declaration trees into tags."""

import logging

import pytest

from verus_etags.core.grammar import RustParser, VerusParser
from verus_etags.core.ports.parser import SourceParseError
from verus_etags.core.syntax import (
    AssumeSpecificationDecl,
    DeclKind,
    EnumDecl,
    Ident,
    ImplDecl,
    ItemDecl,
    MacroCall,
    Position,
    SyntaxTree,
)
from verus_etags.core.visitor import extract_tags

SOURCE = b"struct Point;\nenum Color { Red, Blue }\nimpl Point {}\nimpl Show for Point {}\n"


def _ident(text: str, line: int, column: int = 1) -> Ident:
    return Ident(text=text, position=Position(line=line, column=column))


class _FailingParser:
    name = "failing"
    verification_aware = True

    def parse(self, source: bytes) -> SyntaxTree:
        raise SourceParseError("nope")


class TestExtractTags:
    def test_item_tag(self) -> None:
        tree = SyntaxTree(
            items=(ItemDecl(span=(0, 13), kind=DeclKind.STRUCT, name=_ident("Point", 1, 8)),),
            parser="rust",
        )
        [tag] = extract_tags(tree, SOURCE)
        assert (tag.name, tag.line, tag.byte_offset, tag.pattern) == ("Point", 1, 0, "struct Point;")

    def test_enum_variants_are_qualified(self) -> None:
        enum = EnumDecl(
            span=(14, 38),
            name=_ident("Color", 2, 6),
            variants=(_ident("Red", 2, 14), _ident("Blue", 2, 19)),
        )
        tags = extract_tags(SyntaxTree(items=(enum,), parser="rust"), SOURCE)
        assert [tag.name for tag in tags] == ["Color", "Color::Red", "Color::Blue"]
        assert {tag.byte_offset for tag in tags} == {14}

    def test_impl_names(self) -> None:
        inherent = ImplDecl(span=(39, 52), self_type=_ident("Point", 3, 6))
        trait_impl = ImplDecl(span=(53, 75), self_type=_ident("Point", 4, 16), trait=_ident("Show", 4, 6))
        tags = extract_tags(SyntaxTree(items=(inherent, trait_impl), parser="rust"), SOURCE)
        assert [(tag.name, tag.line, tag.byte_offset) for tag in tags] == [
            ("impl Point", 3, 39),
            ("impl Show for Point", 4, 53),
        ]

    def test_impl_without_path_type_has_no_tag_but_members_do(self) -> None:
        member = ItemDecl(span=(53, 60), kind=DeclKind.FUNCTION, name=_ident("show", 4))
        impl = ImplDecl(span=(53, 75), self_type=None, items=(member,))
        assert [tag.name for tag in extract_tags(SyntaxTree(items=(impl,), parser="rust"), SOURCE)] == ["show"]

    def test_assume_specification_name(self) -> None:
        spec = AssumeSpecificationDecl(span=(0, 13), target=_ident("swap", 1))
        [tag] = extract_tags(SyntaxTree(items=(spec,), parser="verus"), SOURCE)
        assert tag.name == "assume_specification swap"

    def test_line_past_end_uses_offset_zero(self) -> None:
        item = ItemDecl(span=(0, 1), kind=DeclKind.FUNCTION, name=_ident("ghost", 40))
        [tag] = extract_tags(SyntaxTree(items=(item,), parser="rust"), SOURCE)
        assert (tag.line, tag.byte_offset) == (40, 0)

    def test_unexpanded_macro_without_parser(self) -> None:
        call = MacroCall(span=(0, 10), path=("verus",), body=(7, 9))
        assert extract_tags(SyntaxTree(items=(call,), parser="rust"), SOURCE) == []

    def test_failed_macro_parse_yields_no_tags(self) -> None:
        call = MacroCall(span=(0, 10), path=("verus",), body=(7, 9))
        tree = SyntaxTree(items=(call,), parser="verus")
        assert extract_tags(tree, SOURCE, _FailingParser()) == []

    def test_failed_macro_parse_is_reported(self, caplog: pytest.LogCaptureFixture) -> None:
        call = MacroCall(span=(0, 10), path=("verus",), body=(7, 9))
        tree = SyntaxTree(items=(call,), parser="verus")
        with caplog.at_level(logging.WARNING, logger="verus_etags.core.visitor"):
            extract_tags(tree, SOURCE, _FailingParser())
        assert "Skipping verus! block at byte 0" in caplog.text
        assert [record.levelno for record in caplog.records] == [logging.WARNING]


class TestMacroExpansion:
    SOURCE = b"fn before() {}\nverus! {\n    spec fn inside() -> nat { 0 }\n}\nfn after() {}\n"

    def test_members_keep_file_positions_and_order(self, verus_parser: VerusParser) -> None:
        tree = verus_parser.parse(self.SOURCE)
        tags = extract_tags(tree, self.SOURCE, verus_parser)
        assert [(tag.name, tag.line) for tag in tags] == [("before", 1), ("inside", 3), ("after", 5)]
        inside = tags[1]
        assert inside.byte_offset == self.SOURCE.index(b"    spec fn")
        assert inside.pattern == "    spec fn inside() -> nat { 0 }"

    def test_other_macros_are_not_expanded(self, verus_parser: VerusParser) -> None:
        source = b"lazy_static! {\n    static ref X: u8 = 0;\n}\nfn f() {}\n"
        tags = extract_tags(verus_parser.parse(source), source, verus_parser)
        assert [tag.name for tag in tags] == ["f"]

    def test_qualified_macro_path(self, verus_parser: VerusParser) -> None:
        source = b"builtin_macros::verus! {\n    fn g() {}\n}\n"
        tags = extract_tags(verus_parser.parse(source), source, verus_parser)
        assert [tag.name for tag in tags] == ["g"]

    def test_no_expansion_without_macro_parser(self, rust_parser: RustParser) -> None:
        tags = extract_tags(rust_parser.parse(self.SOURCE), self.SOURCE)
        assert [tag.name for tag in tags] == ["before", "after"]
