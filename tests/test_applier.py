from sqlmodel import select

from longbox import applier, removal
from longbox.applier import apply_scan_results
from longbox.folders import get_folder_by_path
from longbox.models import (
    CollectionItem,
    ComicFile,
    FileStatus,
    Series,
    SeriesProgress,
    SeriesStatus,
)
from longbox.planner import scan_library
from longbox.removal import settle_series
from longbox.series import create_series


def _scan_and_apply(session, library_id, config):
    result = scan_library(session, library_id, config)
    return apply_scan_results(session, result, config, link=False)


def test_apply_adds_pending_rows_and_folder_counts(session, library_id, library_root, config, make_cbz):
    make_cbz(library_root / "Batman" / "001.cbz", color="red")
    make_cbz(library_root / "Batman" / "Annuals" / "Annual 01.cbz", color="blue")
    make_cbz(library_root / "loose.cbz", color="green")

    outcome = _scan_and_apply(session, library_id, config)

    assert outcome.added == 3
    assert len(outcome.new_file_ids) == 3
    assert outcome.link_job is None

    files = {f.relative_path: f for f in session.exec(select(ComicFile)).all()}
    assert all(f.status == FileStatus.PENDING for f in files.values())
    assert all(f.fingerprint for f in files.values())
    assert files["loose.cbz"].folder_id is None

    batman = get_folder_by_path(session, library_id, "Batman")
    annuals = get_folder_by_path(session, library_id, "Batman/Annuals")
    assert files["Batman/001.cbz"].folder_id == batman.id
    assert files["Batman/Annuals/Annual 01.cbz"].folder_id == annuals.id
    assert (batman.file_count, batman.total_files, batman.child_count) == (1, 2, 1)
    assert (annuals.file_count, annuals.total_files, annuals.child_count) == (1, 1, 0)


def test_moved_file_keeps_row_and_changes_folder(session, library_id, library_root, config, make_cbz):
    make_cbz(library_root / "Batman" / "001.cbz")
    _scan_and_apply(session, library_id, config)
    file = session.exec(select(ComicFile)).one()
    series = create_series(session, "Batman")
    file.series_id = series.id
    session.add(file)
    session.commit()
    file_id, series_id = file.id, series.id

    (library_root / "Batman").rename(library_root / "Batman (2011)")
    outcome = _scan_and_apply(session, library_id, config)

    assert outcome.moved == 1
    assert outcome.added == 0
    assert outcome.orphaned == 0

    moved = session.get(ComicFile, file_id)
    assert moved.relative_path == "Batman (2011)/001.cbz"
    assert moved.path == str(library_root / "Batman (2011)" / "001.cbz")
    assert moved.series_id == series_id

    new_folder = get_folder_by_path(session, library_id, "Batman (2011)")
    old_folder = get_folder_by_path(session, library_id, "Batman")
    assert moved.folder_id == new_folder.id
    assert (new_folder.file_count, new_folder.total_files) == (1, 1)
    assert (old_folder.file_count, old_folder.total_files) == (0, 0)


def test_orphan_removal_archives_emptied_series(session, library_id, library_root, config, make_cbz):
    make_cbz(library_root / "Superman" / "001.cbz", color="red")
    make_cbz(library_root / "Superman" / "002.cbz", color="blue")
    _scan_and_apply(session, library_id, config)

    series = create_series(session, "Superman")
    files = session.exec(select(ComicFile)).all()
    for file in files:
        file.series_id = series.id
        session.add(file)
    session.add(CollectionItem(collection="Favorites", file_id=files[0].id))
    session.add(CollectionItem(collection="Favorites", series_id=series.id))
    session.commit()
    series_id = series.id

    for path in (library_root / "Superman").iterdir():
        path.unlink()
    outcome = _scan_and_apply(session, library_id, config)

    assert outcome.orphaned == 2
    assert outcome.series_archived == 1
    assert session.exec(select(ComicFile)).all() == []

    archived = session.get(Series, series_id)
    assert archived.status == SeriesStatus.ARCHIVED
    assert archived.archived_at is not None

    items = session.exec(select(CollectionItem)).all()
    assert len(items) == 2
    assert all(not item.is_available for item in items)
    assert all(item.file_id is None for item in items)

    folder = get_folder_by_path(session, library_id, "Superman")
    assert (folder.file_count, folder.total_files) == (0, 0)


def test_series_with_remaining_files_stays_active(session, library_id, library_root, config, make_cbz):
    make_cbz(library_root / "Saga" / "001.cbz", color="red")
    make_cbz(library_root / "Saga" / "002.cbz", color="blue")
    _scan_and_apply(session, library_id, config)

    series = create_series(session, "Saga")
    for file in session.exec(select(ComicFile)).all():
        file.series_id = series.id
        session.add(file)
    session.commit()
    series_id = series.id

    (library_root / "Saga" / "001.cbz").unlink()
    outcome = _scan_and_apply(session, library_id, config)

    assert outcome.orphaned == 1
    assert outcome.series_archived == 0
    remaining = session.exec(select(ComicFile)).one()
    refreshed = session.get(Series, series_id)
    assert refreshed.status == SeriesStatus.ACTIVE
    assert refreshed.cover_file_id == remaining.id
    assert (config.covers_dir / f"series-{series_id}.jpg").exists()


def test_rows_left_orphaned_are_healed(session, library_id, library_root, config, make_cbz):
    make_cbz(library_root / "Batman" / "001.cbz", color="red")
    make_cbz(library_root / "Batman" / "002.cbz", color="blue")
    _scan_and_apply(session, library_id, config)

    # Simulate an apply that stopped after flagging orphans
    stale = session.exec(select(ComicFile).where(ComicFile.relative_path == "Batman/001.cbz")).one()
    stale.status = FileStatus.ORPHANED
    session.add(stale)
    session.commit()
    stale_id = stale.id

    result = scan_library(session, library_id, config)
    assert result.existing_orphaned_count == 1
    outcome = apply_scan_results(session, result, config, link=False)

    assert outcome.self_healed == 1
    assert outcome.added == 1
    assert session.get(ComicFile, stale_id) is None

    files = session.exec(select(ComicFile).order_by(ComicFile.relative_path)).all()
    assert [f.relative_path for f in files] == ["Batman/001.cbz", "Batman/002.cbz"]
    assert all(f.status == FileStatus.PENDING for f in files)

    folder = get_folder_by_path(session, library_id, "Batman")
    assert (folder.file_count, folder.total_files) == (2, 2)


def test_quarantined_orphan_is_removed(session, library_id, library_root, config, make_cbz):
    make_cbz(library_root / "Bad" / "001.cbz")
    _scan_and_apply(session, library_id, config)
    file = session.exec(select(ComicFile)).one()
    file.status = FileStatus.QUARANTINED
    session.add(file)
    session.commit()

    (library_root / "Bad" / "001.cbz").unlink()
    outcome = _scan_and_apply(session, library_id, config)

    assert outcome.orphaned == 1
    assert session.exec(select(ComicFile)).all() == []


def test_prune_after_apply_when_configured(session, library_id, library_root, config, make_cbz):
    make_cbz(library_root / "Old" / "Deep" / "001.cbz")
    _scan_and_apply(session, library_id, config)

    (library_root / "Old" / "Deep" / "001.cbz").unlink()
    config.scanner.prune_empty_folders = True
    outcome = _scan_and_apply(session, library_id, config)

    assert outcome.folders_pruned == 2
    assert get_folder_by_path(session, library_id, "Old") is None
    assert get_folder_by_path(session, library_id, "Old/Deep") is None


def _catalog_with_move_and_orphan(session, library_id, library_root, config, make_cbz):
    make_cbz(library_root / "Batman" / "001.cbz", color="red")
    make_cbz(library_root / "Gone" / "001.cbz", color="green")
    _scan_and_apply(session, library_id, config)
    (library_root / "Batman").rename(library_root / "Batman (2011)")
    (library_root / "Gone" / "001.cbz").unlink()


def test_failed_add_does_not_stop_the_apply(
    session, library_id, library_root, config, make_cbz, monkeypatch
):
    _catalog_with_move_and_orphan(session, library_id, library_root, config, make_cbz)
    make_cbz(library_root / "New" / "a.cbz", color="blue")
    make_cbz(library_root / "New" / "b.cbz", color="yellow")
    real_add_file = applier.add_file

    def flaky_add_file(session, library_id, discovered, config):
        if discovered.relative_path == "New/a.cbz":
            raise ValueError("Datetime values must have timezone information")
        return real_add_file(session, library_id, discovered, config)

    monkeypatch.setattr(applier, "add_file", flaky_add_file)

    outcome = _scan_and_apply(session, library_id, config)

    assert outcome.added == 1
    assert outcome.moved == 1
    assert outcome.orphaned == 1
    assert len(outcome.errors) == 1
    assert outcome.errors[0].startswith("New/a.cbz:")

    paths = sorted(session.exec(select(ComicFile.relative_path)).all())
    assert paths == ["Batman (2011)/001.cbz", "New/b.cbz"]
    new_folder = get_folder_by_path(session, library_id, "New")
    assert (new_folder.file_count, new_folder.total_files) == (1, 1)


def test_failed_move_does_not_stop_the_apply(
    session, library_id, library_root, config, make_cbz, monkeypatch
):
    _catalog_with_move_and_orphan(session, library_id, library_root, config, make_cbz)

    def broken_move_file(session, library_id, moved):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(applier, "move_file", broken_move_file)

    outcome = _scan_and_apply(session, library_id, config)

    assert outcome.moved == 0
    assert outcome.orphaned == 1
    assert outcome.errors == ["Batman/001.cbz: database is locked"]
    assert session.exec(select(ComicFile.relative_path)).all() == ["Batman/001.cbz"]


def test_cover_failure_does_not_fail_the_apply(
    session, library_id, library_root, config, make_cbz, monkeypatch
):
    make_cbz(library_root / "Saga" / "001.cbz", color="red")
    make_cbz(library_root / "Saga" / "002.cbz", color="blue")
    _scan_and_apply(session, library_id, config)
    series = create_series(session, "Saga")
    for file in session.exec(select(ComicFile)).all():
        file.series_id = series.id
        session.add(file)
    session.commit()
    series_id = series.id

    def broken_cover(session, series_id, config):
        raise OSError("disk full")

    monkeypatch.setattr(removal, "recalculate_series_cover", broken_cover)

    (library_root / "Saga" / "001.cbz").unlink()
    outcome = _scan_and_apply(session, library_id, config)

    assert outcome.orphaned == 1
    assert outcome.errors == []
    assert session.get(Series, series_id).status == SeriesStatus.ACTIVE
    progress = session.exec(
        select(SeriesProgress).where(SeriesProgress.series_id == series_id)
    ).one()
    assert progress.total_owned == 1

    stats = settle_series(session, [series_id], config)
    assert (stats.covers_updated, stats.cover_failures, stats.failed) == (0, 1, 0)
