from bisect import insort
from dataclasses import replace
from typing import cast

from tree_sitter import Node
from tree_sitter_language_pack import SupportedLanguage, get_parser

from verus_etags.core.ports.parser import SourceParseError
from verus_etags.core.syntax import (
    AssumeSpecificationDecl,
    Declaration,
    DeclKind,
    EnumDecl,
    Ident,
    ImplDecl,
    ItemDecl,
    MacroCall,
    Position,
    SyntaxTree,
)

_LANGUAGE = "rust"

_NAMED_ITEMS = {
    "function_item": DeclKind.FUNCTION,
    "struct_item": DeclKind.STRUCT,
    "trait_item": DeclKind.TRAIT,
    "const_item": DeclKind.CONST,
    "static_item": DeclKind.STATIC,
    "type_item": DeclKind.TYPE_ALIAS,
    "mod_item": DeclKind.MODULE,
    "macro_definition": DeclKind.MACRO_RULES,
}

# Items declared inside these are either not tagged or unparsed tokens.
_OPAQUE_NODES = frozenset({"token_tree", "foreign_mod_item"})

# Errors inside these do not disturb the declarations around them.
_TOLERANT_NODES = frozenset({"block", "token_tree"})

_PATH_LEAVES = frozenset({"identifier", "type_identifier", "primitive_type"})


def parse_rust(source: bytes) -> Node:
    parser = get_parser(cast(SupportedLanguage, _LANGUAGE))
    return parser.parse(source).root_node


def find_structural_error(node: Node) -> Node | None:
    """Return the first ERROR node that sits outside a body block or token tree."""
    if node.type == "ERROR":
        return node
    if node.type in _TOLERANT_NODES:
        return None
    for child in node.children:
        if child.has_error:
            found = find_structural_error(child)
            if found is not None:
                return found
    return None


def check_structure(root: Node) -> None:
    error = find_structural_error(root)
    if error is not None:
        line, column = error.start_point[0] + 1, error.start_point[1] + 1
        raise SourceParseError(f"unrecoverable syntax error at {line}:{column}")


class _Lowerer:
    def __init__(self, source: bytes) -> None:
        self._source = source

    def lower_source(self, root: Node) -> list[Declaration]:
        decls: list[Declaration] = []
        for child in root.named_children:
            call = self._macro_call(child)
            if call is not None:
                decls.append(call)
                continue
            decl = self._lower(child, None)
            if decl is not None:
                decls.append(decl)
            elif child.type not in _OPAQUE_NODES:
                decls.extend(self._lower_children(child))
        return decls

    def _ident(self, node: Node) -> Ident:
        text = self._source[node.start_byte : node.end_byte].decode("utf-8")
        return Ident(text=text, position=Position(line=node.start_point[0] + 1, column=node.start_point[1] + 1))

    def _lower_children(self, node: Node, container: str | None = None) -> list[Declaration]:
        decls: list[Declaration] = []
        for child in node.named_children:
            decl = self._lower(child, container)
            if decl is not None:
                decls.append(decl)
            elif child.type not in _OPAQUE_NODES:
                decls.extend(self._lower_children(child))
        return decls

    def _lower(self, node: Node, container: str | None) -> Declaration | None:
        node_type = node.type
        span = (node.start_byte, node.end_byte)

        if container is not None and node_type not in ("function_item", "function_signature_item"):
            # trait and impl bodies only contribute their functions
            return None

        if node_type == "function_signature_item":
            # bodiless functions: trait methods, `uninterp`/`axiom` fns
            node_type = "function_item"

        if node_type == "enum_item":
            return self._lower_enum(node)
        if node_type == "impl_item":
            body = node.child_by_field_name("body")
            return ImplDecl(
                span=span,
                self_type=self._last_segment(node.child_by_field_name("type")),
                trait=self._last_segment(node.child_by_field_name("trait")),
                items=tuple(self._lower_children(body, "impl")) if body is not None else (),
            )

        kind = _NAMED_ITEMS.get(node_type)
        if kind is None:
            return None
        name = node.child_by_field_name("name")
        if name is None:
            return None

        if kind is DeclKind.TRAIT:
            body = node.child_by_field_name("body")
            items = self._lower_children(body, "trait") if body is not None else []
        elif kind in (DeclKind.STRUCT, DeclKind.TYPE_ALIAS, DeclKind.MACRO_RULES):
            items = []
        else:
            items = self._lower_children(node)
        return ItemDecl(span=span, kind=kind, name=self._ident(name), items=tuple(items))

    def _lower_enum(self, node: Node) -> EnumDecl | None:
        name = node.child_by_field_name("name")
        if name is None:
            return None
        variants: list[Ident] = []
        body = node.child_by_field_name("body")
        if body is not None:
            for child in body.named_children:
                if child.type != "enum_variant":
                    continue
                variant = child.child_by_field_name("name")
                if variant is not None:
                    variants.append(self._ident(variant))
        return EnumDecl(span=(node.start_byte, node.end_byte), name=self._ident(name), variants=tuple(variants))

    def _last_segment(self, node: Node | None) -> Ident | None:
        while node is not None:
            if node.type in _PATH_LEAVES:
                return self._ident(node)
            if node.type in ("scoped_type_identifier", "scoped_identifier"):
                node = node.child_by_field_name("name")
            elif node.type == "generic_type":
                node = node.child_by_field_name("type")
            else:
                return None
        return None

    def _macro_call(self, node: Node) -> MacroCall | None:
        if node.type == "expression_statement" and node.named_child_count == 1:
            node = node.named_children[0]
        if node.type != "macro_invocation":
            return None
        macro = node.child_by_field_name("macro")
        body = next((child for child in node.children if child.type == "token_tree"), None)
        if macro is None or body is None:
            return None
        text = self._source[macro.start_byte : macro.end_byte].decode("utf-8")
        path = tuple(segment.strip() for segment in text.split("::") if segment.strip())
        return MacroCall(
            span=(node.start_byte, node.end_byte),
            path=path,
            body=(body.start_byte + 1, body.end_byte - 1),
        )


def lower_source(root: Node, source: bytes) -> list[Declaration]:
    return _Lowerer(source).lower_source(root)


def attach_declaration(
    decls: list[Declaration], extra: ItemDecl | AssumeSpecificationDecl
) -> list[Declaration]:
    """Place ``extra`` in the innermost declaration whose span contains it."""
    start = extra.span[0]
    for index, decl in enumerate(decls):
        if decl.span[0] <= start < decl.span[1]:
            decls[index] = replace(decl, items=tuple(attach_declaration(list(decl.items), extra)))
            return decls
    insort(decls, extra, key=lambda decl: decl.span[0])
    return decls


class RustParser:
    """Plain Rust grammar with no knowledge of Verus items."""

    name = "rust"
    verification_aware = False

    def parse(self, source: bytes) -> SyntaxTree:
        root = parse_rust(source)
        check_structure(root)
        return SyntaxTree(items=tuple(lower_source(root, source)), parser=self.name)
