"""Line-start resolution and etags pattern extraction.

All offsets are byte offsets into the source as read from disk, which is what the
etags format records and what tree-sitter reports.
"""

from bisect import bisect_right


class LineIndex:
    """Precomputed table of line-start byte offsets for one source buffer."""

    def __init__(self, source: bytes) -> None:
        self._starts = [0]
        position = source.find(b"\n")
        while position != -1:
            self._starts.append(position + 1)
            position = source.find(b"\n", position + 1)

    def __len__(self) -> int:
        return len(self._starts)

    def line_start(self, line: int) -> int:
        """Return the offset of the first byte of 1-based ``line``.

        Lines past the end of the buffer resolve to 0, the same degenerate
        answer as a line the parser could never have reported.
        """
        if line <= 1 or line > len(self._starts):
            return 0
        return self._starts[line - 1]

    def line_of(self, offset: int) -> int:
        """Return the 1-based line containing byte ``offset``."""
        return bisect_right(self._starts, offset)

    def column_of(self, offset: int) -> int:
        """Return the 1-based byte column of ``offset`` within its line."""
        return offset - self._starts[self.line_of(offset) - 1] + 1


def resolve_line_start(source: bytes, line: int) -> int:
    return LineIndex(source).line_start(line)


def extract_pattern(source: bytes, byte_offset: int, name: str) -> str:
    """Return the text an editor searches for to relocate a tag.

    The whole line (trailing whitespace removed, indentation kept) unless the
    line opens a parameter list it does not close; then the header spans
    several lines and only ``name`` can be matched.
    """
    line_start = source.rfind(b"\n", 0, byte_offset) + 1
    line_end = source.find(b"\n", byte_offset)
    if line_end == -1:
        line_end = len(source)

    line = source[line_start:line_end].decode("utf-8", errors="replace").rstrip()
    if line.endswith("(") or ("(" in line and ")" not in line):
        return name
    return line
