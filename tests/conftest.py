"""Shared fixtures and helpers for tests."""

import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from verus_etags.core.grammar import RustParser, VerusParser

_REPO_ROOT = Path(__file__).parent.parent


# ---------------------------------------------------------------------------
# Auto-marker: tag tests as "unit" or "integration" based on directory
# ---------------------------------------------------------------------------


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        test_path = Path(str(item.fspath))
        rel = test_path.relative_to(_REPO_ROOT / "tests")
        parts = rel.parts
        if parts and parts[0] == "integration":
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def data_dir() -> Path:
    """Return the directory holding the sample Rust and Verus sources."""
    return _REPO_ROOT / "tests" / "data"


@pytest.fixture
def rust_parser() -> RustParser:
    """Return the plain Rust parser."""
    return RustParser()


@pytest.fixture
def verus_parser() -> VerusParser:
    """Return the Verus-aware parser."""
    return VerusParser()


@pytest.fixture
def write_source(tmp_path: Path) -> Callable[[str, str | bytes], Path]:
    """Return a helper that writes a source file below ``tmp_path``."""

    def _write(name: str, content: str | bytes) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_bytes(content)
        return path

    return _write


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Drop the stream handler the CLI installs on the root logger."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(level)
