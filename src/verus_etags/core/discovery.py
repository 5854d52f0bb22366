import logging
import os
from collections.abc import Iterable, Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

_SOURCE_EXTENSIONS = frozenset({".rs"})


def is_editor_temp_file(name: str) -> bool:
    """Emacs lock (``.#x``), backup (``x~``) and auto-save (``#x#``) files."""
    return name.startswith(".#") or name.endswith("~") or (len(name) > 1 and name.startswith("#") and name.endswith("#"))


def is_rust_file(path: Path) -> bool:
    if is_editor_temp_file(path.name):
        return False
    return path.suffix in _SOURCE_EXTENSIONS


def _is_hidden(name: str) -> bool:
    return name.startswith(".") and name not in (".", "..")


def _walk(directory: Path) -> Iterator[Path]:
    for root, dirnames, filenames in os.walk(directory, followlinks=True):
        dirnames[:] = sorted(name for name in dirnames if not _is_hidden(name) and not is_editor_temp_file(name))
        for name in sorted(filenames):
            if _is_hidden(name):
                continue
            candidate = Path(root) / name
            if is_rust_file(candidate) and candidate.is_file():
                yield candidate


def _list(directory: Path) -> Iterator[Path]:
    try:
        entries = sorted(directory.iterdir())
    except OSError as exc:
        logger.warning("Cannot list directory %s: %s", directory, exc)
        return
    for entry in entries:
        if entry.is_file() and is_rust_file(entry):
            yield entry


def iter_source_files(paths: Iterable[Path], recurse: bool = True) -> Iterator[Path]:
    """Yield the Rust sources named by ``paths`` in a deterministic order.

    Files are yielded as given; directories are walked (or just listed when
    ``recurse`` is False) with hidden entries and editor temp files skipped.
    """
    for path in paths:
        if path.is_file():
            if is_rust_file(path):
                yield path
            else:
                logger.info("Ignoring non-Rust file %s", path)
        elif path.is_dir():
            yield from _walk(path) if recurse else _list(path)
        else:
            logger.warning("No such file or directory: %s", path)
