"""Tests for the verus-etags command line."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from typer.testing import CliRunner

from verus_etags import __version__
from verus_etags.cli.app import app
from verus_etags.core.etags import parse_tags_file

runner = CliRunner()

WriteSource = Callable[[str, str | bytes], Path]

pytestmark = pytest.mark.usefixtures("restore_logging")


def _names(tags_file: Path) -> list[str]:
    names = []
    for section in parse_tags_file(tags_file.read_bytes()):
        for line in section.body.decode().splitlines():
            names.append(line.split("\x7f")[1].split("\x01")[0])
    return names


@pytest.mark.parametrize("flag", ["-h", "--help"])
def test_help_flags(flag: str) -> None:
    result = runner.invoke(app, [flag])
    assert result.exit_code == 0
    assert "Usage" in result.output


@pytest.mark.parametrize("flag", ["-v", "--version"])
def test_version_flags(flag: str) -> None:
    result = runner.invoke(app, [flag])
    assert result.exit_code == 0
    assert f"verus-etags {__version__}" in result.output


def test_no_arguments_prints_usage() -> None:
    result = runner.invoke(app, [])
    assert "Usage" in result.output


@pytest.mark.parametrize("flag", ["-o", "--output", "-f", "--file"])
def test_output_flags(flag: str, write_source: WriteSource, tmp_path: Path) -> None:
    source = write_source("lib.rs", "fn lib() {}\n")
    target = tmp_path / "custom.TAGS"
    result = runner.invoke(app, [str(source), flag, str(target)])
    assert result.exit_code == 0, result.output
    assert _names(target) == ["lib"]


def test_default_output_is_tags_in_working_directory(
    write_source: WriteSource, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    source = write_source("lib.rs", "fn lib() {}\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("VERUS_ETAGS_OUTPUT", raising=False)
    result = runner.invoke(app, [str(source)])
    assert result.exit_code == 0, result.output
    assert (tmp_path / "TAGS").is_file()


def test_output_from_environment(write_source: WriteSource, tmp_path: Path) -> None:
    source = write_source("lib.rs", "fn lib() {}\n")
    target = tmp_path / "env.TAGS"
    result = runner.invoke(app, [str(source)], env={"VERUS_ETAGS_OUTPUT": str(target)})
    assert result.exit_code == 0, result.output
    assert _names(target) == ["lib"]


@pytest.mark.parametrize(
    ("sort", "expected"),
    [
        ("0", ["zebra", "alpha", "Beta", "middle"]),
        ("1", ["Beta", "alpha", "zebra", "middle"]),
        ("2", ["alpha", "Beta", "zebra", "middle"]),
    ],
    ids=["unsorted", "sorted", "foldcase"],
)
def test_sort_modes(sort: str, expected: list[str], write_source: WriteSource, tmp_path: Path) -> None:
    source = write_source("order.rs", "fn zebra() {} fn alpha() {} fn Beta() {}\nfn middle() {}\n")
    target = tmp_path / "TAGS"
    result = runner.invoke(app, [str(source), "-o", str(target), "-s", sort])
    assert result.exit_code == 0, result.output
    assert _names(target) == expected


def test_sort_mode_out_of_range(write_source: WriteSource) -> None:
    source = write_source("lib.rs", "fn lib() {}\n")
    result = runner.invoke(app, [str(source), "-s", "3"])
    assert result.exit_code == 2


def test_append_merges_sections(write_source: WriteSource, tmp_path: Path) -> None:
    first = write_source("a.rs", "fn a() {}\n")
    second = write_source("b.rs", "fn b() {}\n")
    target = tmp_path / "TAGS"
    assert runner.invoke(app, [str(first), "-o", str(target)]).exit_code == 0
    result = runner.invoke(app, [str(second), "-o", str(target), "-a"])
    assert result.exit_code == 0, result.output
    assert _names(target) == ["a", "b"]

    first.write_text("fn a2() {}\n")
    assert runner.invoke(app, [str(first), "-o", str(target), "--append"]).exit_code == 0
    assert _names(target) == ["a2", "b"]


def test_without_append_the_file_is_replaced(write_source: WriteSource, tmp_path: Path) -> None:
    target = tmp_path / "TAGS"
    runner.invoke(app, [str(write_source("a.rs", "fn a() {}\n")), "-o", str(target)])
    runner.invoke(app, [str(write_source("b.rs", "fn b() {}\n")), "-o", str(target)])
    assert _names(target) == ["b"]


def test_append_to_corrupt_table_fails(write_source: WriteSource, tmp_path: Path) -> None:
    target = tmp_path / "TAGS"
    target.write_bytes(b"not a tags table")
    result = runner.invoke(app, [str(write_source("a.rs", "fn a() {}\n")), "-o", str(target), "-a"])
    assert result.exit_code == 1
    assert target.read_bytes() == b"not a tags table"


def test_unwritable_output_fails(write_source: WriteSource, tmp_path: Path) -> None:
    source = write_source("a.rs", "fn a() {}\n")
    result = runner.invoke(app, [str(source), "-o", str(tmp_path / "missing" / "TAGS")])
    assert result.exit_code == 1


def test_recursion_switch(write_source: WriteSource, tmp_path: Path) -> None:
    write_source("top.rs", "fn top() {}\n")
    write_source("nested/deep.rs", "fn deep() {}\n")
    target = tmp_path / "out.TAGS"

    assert runner.invoke(app, [str(tmp_path), "-o", str(target)]).exit_code == 0
    assert _names(target) == ["top", "deep"]

    assert runner.invoke(app, [str(tmp_path), "-o", str(target), "--no-recurse"]).exit_code == 0
    assert _names(target) == ["top"]


def test_broken_files_are_skipped_without_failing(write_source: WriteSource, tmp_path: Path) -> None:
    write_source("good.rs", "fn good() {}\n")
    write_source("broken.rs", "@@@ %%% @@@\n")
    write_source("binary.rs", b"\xff\xfe\x00")
    target = tmp_path / "out.TAGS"
    result = runner.invoke(app, [str(tmp_path), "-o", str(target)])
    assert result.exit_code == 0
    assert _names(target) == ["good"]


def test_verbose_and_jobs(write_source: WriteSource, tmp_path: Path) -> None:
    paths = [str(write_source(f"m{index}.rs", f"fn m{index}() {{}}\n")) for index in range(3)]
    target = tmp_path / "out.TAGS"
    result = runner.invoke(app, [*paths, "-o", str(target), "-j", "2", "-V"])
    assert result.exit_code == 0, result.output
    assert _names(target) == ["m0", "m1", "m2"]
