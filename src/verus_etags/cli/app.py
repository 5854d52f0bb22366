import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from verus_etags import __version__
from verus_etags.core.config import IndexSettings, SortMode, default_output_path
from verus_etags.core.discovery import iter_source_files
from verus_etags.core.etags import TagsFormatError, write_tags_file
from verus_etags.core.indexer import build_tag_table

app = typer.Typer(
    name="verus-etags",
    help="Generate etags for Verus/Rust source files.",
    no_args_is_help=True,
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"verus-etags {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        force=True,
    )


def run(paths: list[Path], settings: IndexSettings) -> None:
    sources = iter_source_files(paths, recurse=settings.recurse)
    result = build_tag_table(sources, sort_mode=settings.sort_mode, jobs=settings.jobs)

    try:
        written = write_tags_file(settings.output, result.sections, append=settings.append)
    except TagsFormatError as exc:
        console.print(f"[red]Cannot append to {settings.output}: {exc}[/red]")
        raise typer.Exit(1) from exc
    except OSError as exc:
        console.print(f"[red]Failed to write {settings.output}: {exc.strerror or exc}[/red]")
        raise typer.Exit(1) from exc

    if settings.verbose:
        console.print(
            f"[green]Generated[/green] {settings.output} with {written} file section(s), "
            f"{result.tag_count} new tag(s)"
        )
    if result.skipped:
        console.print(f"[yellow]Skipped {len(result.skipped)} file(s)[/yellow]")


@app.command()
def etags(
    paths: Annotated[list[Path], typer.Argument(help="Input files or directories to process.", show_default=False)],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", "--file", "-f", help="Output file (default: TAGS).", show_default=False),
    ] = None,
    append: Annotated[bool, typer.Option("--append", "-a", help="Merge into an existing tags file.")] = False,
    recurse: Annotated[
        bool, typer.Option("--recurse/--no-recurse", "-R", help="Recurse into subdirectories.")
    ] = True,
    sort: Annotated[
        int,
        typer.Option("--sort", "-s", min=0, max=2, metavar="0|1|2", help="0=unsorted, 1=sorted, 2=foldcase."),
    ] = int(SortMode.SORTED),
    jobs: Annotated[int, typer.Option("--jobs", "-j", min=1, help="Files to index in parallel.")] = 1,
    verbose: Annotated[bool, typer.Option("--verbose", "-V", help="Verbose output.")] = False,
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=_version_callback, is_eager=True, help="Print version."),
    ] = None,
) -> None:
    """Generate etags for Verus/Rust source files."""
    _configure_logging(verbose)
    settings = IndexSettings(
        output=output or default_output_path(),
        append=append,
        recurse=recurse,
        sort_mode=SortMode(sort),
        jobs=jobs,
        verbose=verbose,
    )
    run(paths, settings)


def main() -> None:
    app()
