"""Parser-independent declaration tree consumed by the tag visitor."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

Span = tuple[int, int]


class DeclKind(str, Enum):
    FUNCTION = "fn"
    STRUCT = "struct"
    TRAIT = "trait"
    CONST = "const"
    STATIC = "static"
    TYPE_ALIAS = "type"
    MODULE = "mod"
    MACRO_RULES = "macro_rules"
    BROADCAST_GROUP = "broadcast_group"


@dataclass(frozen=True)
class Position:
    line: int
    column: int


@dataclass(frozen=True)
class Ident:
    text: str
    position: Position


@dataclass(frozen=True, kw_only=True)
class Decl:
    span: Span
    items: tuple[Declaration, ...] = ()


@dataclass(frozen=True, kw_only=True)
class ItemDecl(Decl):
    kind: DeclKind
    name: Ident


@dataclass(frozen=True, kw_only=True)
class EnumDecl(Decl):
    name: Ident
    variants: tuple[Ident, ...] = ()


@dataclass(frozen=True, kw_only=True)
class ImplDecl(Decl):
    # Last path segments; self_type is None when the implemented type is not a path.
    self_type: Ident | None
    trait: Ident | None = None


@dataclass(frozen=True, kw_only=True)
class AssumeSpecificationDecl(Decl):
    target: Ident


@dataclass(frozen=True, kw_only=True)
class MacroCall(Decl):
    path: tuple[str, ...]
    body: Span


Declaration = ItemDecl | EnumDecl | ImplDecl | AssumeSpecificationDecl | MacroCall


@dataclass(frozen=True)
class SyntaxTree:
    items: tuple[Declaration, ...]
    parser: str
