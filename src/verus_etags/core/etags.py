"""Reading and writing Emacs etags tables.

A table is a sequence of sections, one per source file::

    \\x0c\\n<path>,<body size>\\n<body>

where each body line is ``<pattern>\\x7f<name>\\x01<line>,<byte offset>\\n``.
Editors use the declared size to skip whole sections, so it must be the exact
byte length of the encoded body.
"""

import logging
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from verus_etags.models import FileSection, Tag

logger = logging.getLogger(__name__)

SECTION_START = b"\x0c\n"
PATTERN_END = b"\x7f"
NAME_END = b"\x01"
INCLUDE_MARKER = b"include"


class TagsFormatError(Exception):
    """Raised when an existing tags file cannot be read back."""


@dataclass(frozen=True)
class EncodedSection:
    path: bytes
    body: bytes
    include: bool = False

    def header(self) -> bytes:
        size = INCLUDE_MARKER if self.include else str(len(self.body)).encode("ascii")
        return SECTION_START + self.path + b"," + size + b"\n"


def encode_tag(tag: Tag) -> bytes:
    entry = f"{tag.pattern}\x7f{tag.name}\x01{tag.line},{tag.byte_offset}\n"
    return entry.encode("utf-8")


def encode_section(section: FileSection) -> EncodedSection | None:
    """Encode one file's tags; None for a file without tags, which gets no section."""
    if not section.tags:
        return None
    body = b"".join(encode_tag(tag) for tag in section.tags)
    return EncodedSection(path=os.fsencode(section.path), body=body)


def encode_sections(sections: Iterable[FileSection]) -> list[EncodedSection]:
    encoded = (encode_section(section) for section in sections)
    return [section for section in encoded if section is not None]


def render(sections: Iterable[EncodedSection]) -> bytes:
    return b"".join(section.header() + section.body for section in sections)


def serialize(sections: Iterable[FileSection]) -> bytes:
    return render(encode_sections(sections))


def parse_tags_file(data: bytes) -> list[EncodedSection]:
    """Split an existing table back into its sections, trusting the declared sizes."""
    sections: list[EncodedSection] = []
    position = 0
    while position < len(data):
        if not data.startswith(SECTION_START, position):
            raise TagsFormatError(f"expected a section header at byte {position}")
        header_start = position + len(SECTION_START)
        header_end = data.find(b"\n", header_start)
        if header_end == -1:
            raise TagsFormatError(f"unterminated section header at byte {position}")
        path, comma, size = data[header_start:header_end].rpartition(b",")
        if not comma or not path:
            raise TagsFormatError(f"malformed section header at byte {position}")

        body_start = header_end + 1
        if size == INCLUDE_MARKER:
            sections.append(EncodedSection(path=path, body=b"", include=True))
            position = body_start
            continue
        if not size.isdigit():
            raise TagsFormatError(f"invalid section size {size!r} for {path!r}")
        body_end = body_start + int(size)
        if body_end > len(data):
            raise TagsFormatError(f"section for {path!r} runs past the end of the file")
        sections.append(EncodedSection(path=path, body=data[body_start:body_end]))
        position = body_end
    return sections


def merge_sections(existing: Sequence[EncodedSection], fresh: Sequence[FileSection]) -> list[EncodedSection]:
    """Merge freshly indexed files into an existing table.

    A re-indexed file replaces its old section where it stood (or drops it when
    it no longer has tags); files new to the table are appended in order.
    """
    replacements: dict[bytes, EncodedSection | None] = {
        os.fsencode(section.path): encode_section(section) for section in fresh
    }
    merged: list[EncodedSection] = []
    placed: set[bytes] = set()
    for section in existing:
        if section.include or section.path not in replacements:
            merged.append(section)
            continue
        if section.path in placed:
            continue
        placed.add(section.path)
        replacement = replacements[section.path]
        if replacement is not None:
            merged.append(replacement)

    for path, replacement in replacements.items():
        if path not in placed and replacement is not None:
            merged.append(replacement)
    return merged


def write_tags_file(path: Path, sections: Sequence[FileSection], append: bool = False) -> int:
    """Write ``sections`` to ``path`` and return the number of sections written.

    With ``append`` an existing table at ``path`` is merged rather than replaced.
    """
    encoded = encode_sections(sections)
    if append and path.exists():
        existing = parse_tags_file(path.read_bytes())
        logger.info("Merging into %d existing section(s) of %s", len(existing), path)
        encoded = merge_sections(existing, sections)

    path.write_bytes(render(encoded))
    return len(encoded)
