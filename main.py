"""Longbox CLI entry point."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from sqlmodel import Session

from longbox.config import DEFAULT_CONFIG_PATH, LongboxConfig, load_config, write_default_config
from longbox.database import get_engine, init_db, reset_database
from longbox.errors import LongboxError, NotFoundError, PreconditionError
from longbox.folders import (
    FolderNode,
    get_folder_by_path,
    get_folder_tree,
    get_root_folders,
    prune_empty_folders,
    recalculate_library_counts,
    rename_folder,
)
from longbox.library import get_libraries, get_library
from longbox.logging_config import setup_logging
from longbox.migrations import get_status, run_migrations, stamp_if_needed
from longbox.pipeline import LinkStats, link_new_file, process_unlinked_files
from longbox.scanner import (
    apply_scan_results,
    get_all_library_stats,
    prepare_library,
    scan_library,
    verify_library_path,
)


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Longbox comic library CLI")
logger = logging.getLogger("longbox")


def _ensure_config() -> LongboxConfig:
    try:
        return load_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: longbox init --library /path/to/comics")
        raise typer.Exit(code=1)


def _start_logging(config: LongboxConfig) -> None:
    settings = config.logging
    setup_logging(
        settings.level,
        log_dir=config.data_dir,
        max_mb=settings.max_file_mb,
        backups=settings.backup_count,
    )


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except LongboxError as exc:
        typer.secho(f"[ERROR] {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _prepare() -> tuple[LongboxConfig, int]:
    config = _ensure_config()
    _start_logging(config)
    with _cli_errors():
        library_id = prepare_library(config)
    return config, library_id


def _echo_link_stats(stats: LinkStats) -> None:
    typer.echo(
        f"✓ Linked {stats.linked}/{stats.processed} files: "
        f"{stats.created} new series, {stats.folder_scoped} from series.json, "
        f"{stats.needs_confirmation} need confirmation, {stats.no_name} without a name, "
        f"{stats.failed} failed."
    )


@app.command()
def init(
    library: Path = typer.Option(..., "--library", help="Path to your comics folder"),
    name: str = typer.Option("My Comic Library", "--name", help="Library name"),
) -> None:
    """Initialize config.ini with default settings."""
    check = verify_library_path(library)
    if not check.valid:
        typer.echo(f"[WARN] {check.error}")
    write_default_config(DEFAULT_CONFIG_PATH, library, name)
    typer.echo(f"[OK] Config created at {DEFAULT_CONFIG_PATH}")


@app.command()
def scan(
    yes: bool = typer.Option(False, "--yes", "-y", help="Remove vanished files without asking"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show the scan plan"),
    no_link: bool = typer.Option(False, "--no-link", help="Do not link new files to series"),
) -> None:
    """Scan the library and apply the changes."""
    config, library_id = _prepare()

    with _cli_errors():
        result = scan_library(library_id, config)

    typer.echo(f"Scan plan: {result.summary()} ({result.scan_duration:.1f}s)")
    for error in result.errors:
        typer.echo(f"  ! {error.path}: {error.error}")
    for orphan in result.orphaned_files:
        typer.echo(f"  - {orphan.path}")

    if dry_run:
        return
    if not result.has_changes:
        typer.echo("[OK] Library is up to date.")
        return
    if result.orphaned_files and not yes:
        typer.confirm(
            f"{len(result.orphaned_files)} files are gone from disk and will be removed. Continue?",
            abort=True,
        )

    with _cli_errors():
        outcome = apply_scan_results(result, config, link=not no_link)

    typer.echo(
        "✓ Scan applied: "
        f"{outcome.added} added, "
        f"{outcome.moved} moved, "
        f"{outcome.orphaned} removed, "
        f"{outcome.series_archived} series archived."
    )
    if outcome.link_job is not None:
        _echo_link_stats(outcome.link_job.join())


@app.command()
def stats() -> None:
    """Show file counts per library."""
    _prepare()
    all_stats = get_all_library_stats()
    with Session(get_engine()) as session:
        libraries = {library.id: library for library in get_libraries(session)}

    for library_id, counts in all_stats.items():
        library = libraries.get(library_id)
        title = library.name if library else f"Library {library_id}"
        typer.echo(f"{title}:")
        typer.echo(f"  Total files: {counts['total']}")
        for key in ("pending", "indexed", "orphaned", "quarantined"):
            typer.echo(f"  {key.capitalize()}: {counts[key]}")


def _echo_tree(node: FolderNode, indent: int = 0) -> None:
    typer.echo(f"{'  ' * indent}{node.name}/ ({node.file_count} here, {node.total_files} total)")
    for child in node.children:
        _echo_tree(child, indent + 1)


@app.command()
def folders(
    path: Optional[str] = typer.Option(None, "--path", help="Folder path relative to the library"),
    depth: int = typer.Option(1, "--depth", help="Levels to show below each folder"),
) -> None:
    """Show the folder tree with file counts."""
    _, library_id = _prepare()

    with Session(get_engine()) as session, _cli_errors():
        if path:
            folder = get_folder_by_path(session, library_id, path.strip("/"))
            if folder is None:
                raise NotFoundError("folder", path)
            roots = [folder]
        else:
            roots = get_root_folders(session, library_id)
        trees = [get_folder_tree(session, folder.id, max_depth=depth) for folder in roots]

    if not trees:
        typer.echo("No folders yet. Run: longbox scan")
    for tree in trees:
        _echo_tree(tree)


@app.command()
def link(
    file_id: Optional[int] = typer.Argument(None, help="Catalog id of the file to link"),
    all_files: bool = typer.Option(False, "--all", help="Link every file without a series"),
) -> None:
    """Link files to series."""
    config, library_id = _prepare()

    if all_files:
        _echo_link_stats(process_unlinked_files(library_id, config))
        return
    if file_id is None:
        typer.echo("[ERROR] Pass a FILE_ID or --all.")
        raise typer.Exit(code=1)

    with Session(get_engine()) as session, _cli_errors():
        result = link_new_file(session, file_id, config, None, LinkStats())
        if result is None:
            raise NotFoundError("file", file_id)

    if result.success:
        typer.echo(f"✓ File {file_id} linked to series {result.series_id} ({result.match_type})")
    elif result.needs_confirmation:
        typer.echo(f"[WARN] File {file_id} needs confirmation. Candidates:")
        for suggestion in result.suggestions:
            typer.echo(
                f"  {suggestion.series_id}: {suggestion.series_name} "
                f"({suggestion.confidence:.0%})"
            )
    else:
        typer.echo(f"[ERROR] {result.error}")
        raise typer.Exit(code=1)


@app.command()
def recount() -> None:
    """Recalculate every folder count from the file table."""
    _, library_id = _prepare()
    with Session(get_engine()) as session:
        processed = recalculate_library_counts(session, library_id)
        session.commit()
    typer.echo(f"✓ Recalculated {processed} folders.")


@app.command()
def prune() -> None:
    """Remove folders that no longer hold any files."""
    _, library_id = _prepare()
    with Session(get_engine()) as session:
        removed = prune_empty_folders(session, library_id)
        session.commit()
    typer.echo(f"✓ Removed {removed} empty folders.")


@app.command("rename-folder")
def rename_folder_command(
    path: str = typer.Argument(..., help="Folder path relative to the library"),
    new_name: str = typer.Argument(..., help="New folder name"),
) -> None:
    """Rename a folder on disk and in the catalog."""
    _, library_id = _prepare()

    with Session(get_engine()) as session, _cli_errors():
        folder = get_folder_by_path(session, library_id, path.strip("/"))
        if folder is None:
            raise NotFoundError("folder", path)
        library = get_library(session, library_id)
        old_dir = library.root / folder.path
        new_dir = old_dir.with_name(new_name)
        if new_dir.exists():
            raise PreconditionError(f"{new_dir} already exists on disk")

        renamed_on_disk = old_dir.is_dir()
        if renamed_on_disk:
            old_dir.rename(new_dir)
        try:
            rename_folder(session, folder.id, new_name)
            session.commit()
        except LongboxError:
            session.rollback()
            if renamed_on_disk:
                new_dir.rename(old_dir)
            raise

    typer.echo(f"✓ Renamed {path} -> {new_name}")


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Print status and exit (1 if not at head)"),
) -> None:
    """Run pending database migrations (or check status with --check)."""
    _ensure_config()
    init_db()
    stamp_if_needed()

    current, head = get_status()

    if check:
        if current == head:
            typer.echo(f"[OK] Database at {head} (head).")
            raise typer.Exit(code=0)
        typer.echo(f"[WARN] Database behind: current {current}, head {head}")
        raise typer.Exit(code=1)

    if current == head:
        typer.echo(f"[OK] Database already at {head} (head). Nothing to do.")
        raise typer.Exit(code=0)

    logger.info(f"Migrating database {current} -> {head} ...")
    run_migrations(backup=True)
    typer.echo("[OK] Migration complete.")


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm destructive reset"),
) -> None:
    """Reset the database and covers, then rescan the library."""
    if not confirm:
        typer.echo("[ERROR] This will delete your database and series covers. Use --confirm.")
        raise typer.Exit(code=1)

    config = _ensure_config()
    _start_logging(config)

    reset_database()
    covers: List[Path] = list(config.covers_dir.glob("*.jpg")) if config.covers_dir.exists() else []
    for cover in covers:
        cover.unlink()

    typer.echo("[INFO] Database and covers reset. Rescanning library...")
    with _cli_errors():
        library_id = prepare_library(config)
        outcome = apply_scan_results(scan_library(library_id, config), config)
    typer.echo(f"✓ {outcome.added} files added.")
    if outcome.link_job is not None:
        _echo_link_stats(outcome.link_job.join())


if __name__ == "__main__":
    app()
