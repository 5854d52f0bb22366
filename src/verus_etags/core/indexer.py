import logging
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from verus_etags.core.config import SortMode
from verus_etags.core.grammar import DEFAULT_PARSERS
from verus_etags.core.ordering import order_tags
from verus_etags.core.ports.parser import SourceParseError, SourceParser, parse_with_fallback
from verus_etags.core.visitor import extract_tags
from verus_etags.models import FileSection, Tag

logger = logging.getLogger(__name__)


class SourceReadError(Exception):
    """Raised when a source file cannot be read as UTF-8 text."""


@dataclass(frozen=True)
class SkippedFile:
    path: str
    reason: str


@dataclass
class IndexResult:
    sections: list[FileSection] = field(default_factory=list)
    skipped: list[SkippedFile] = field(default_factory=list)

    @property
    def tag_count(self) -> int:
        return sum(len(section.tags) for section in self.sections)


def read_source(path: Path) -> bytes:
    try:
        source = path.read_bytes()
        source.decode("utf-8")
    except OSError as exc:
        raise SourceReadError(f"cannot read file: {exc.strerror or exc}") from exc
    except UnicodeDecodeError as exc:
        raise SourceReadError(f"not valid UTF-8 at byte {exc.start}") from exc
    return source


def index_source(source: bytes, parsers: Sequence[SourceParser] = DEFAULT_PARSERS) -> list[Tag]:
    tree = parse_with_fallback(source, parsers)
    parser = next((candidate for candidate in parsers if candidate.name == tree.parser), None)
    macro_parser = parser if parser is not None and parser.verification_aware else None
    return extract_tags(tree, source, macro_parser)


def index_file(
    path: Path,
    sort_mode: SortMode = SortMode.SORTED,
    parsers: Sequence[SourceParser] = DEFAULT_PARSERS,
) -> FileSection:
    logger.info("Processing file: %s", path)
    tags = index_source(read_source(path), parsers)
    return FileSection(path=str(path), tags=order_tags(tags, sort_mode))


def _index_or_skip(
    path: Path, sort_mode: SortMode, parsers: Sequence[SourceParser]
) -> FileSection | SkippedFile:
    try:
        return index_file(path, sort_mode, parsers)
    except (SourceReadError, SourceParseError) as exc:
        logger.warning("Skipping file %s: %s", path, exc)
        return SkippedFile(path=str(path), reason=str(exc))


def build_tag_table(
    paths: Iterable[Path],
    sort_mode: SortMode = SortMode.SORTED,
    jobs: int = 1,
    parsers: Sequence[SourceParser] = DEFAULT_PARSERS,
) -> IndexResult:
    """Index every path, keeping discovery order even when files are indexed in parallel."""
    files = list(paths)
    if jobs > 1 and len(files) > 1:
        with ThreadPoolExecutor(max_workers=jobs) as executor:
            outcomes = list(executor.map(lambda path: _index_or_skip(path, sort_mode, parsers), files))
    else:
        outcomes = [_index_or_skip(path, sort_mode, parsers) for path in files]

    result = IndexResult()
    for outcome in outcomes:
        if isinstance(outcome, SkippedFile):
            result.skipped.append(outcome)
        else:
            result.sections.append(outcome)
    return result
