from datetime import datetime, timezone

import pytest
from sqlmodel import select

from longbox.errors import InvalidTransitionError
from longbox.models import (
    CollectionItem,
    ComicFile,
    FileMetadata,
    FileStatus,
    ReadingProgress,
    SeriesStatus,
    set_file_status,
    transition_series,
)
from longbox.series import (
    archive_series,
    check_and_archive_empty_series,
    create_series,
    find_or_create_from_definition,
    restore_series,
    series_files_in_order,
    update_series_progress,
)
from longbox.sidecar import SeriesDefinition


def _issue(session, library_id, series_id, number, filename=None):
    filename = filename or f"{number}.cbz"
    file = ComicFile(
        library_id=library_id,
        path=f"/comics/Saga/{filename}",
        relative_path=f"Saga/{filename}",
        filename=filename,
        extension="cbz",
        size=1,
        modified_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        series_id=series_id,
    )
    if number is not None:
        file.metadata_rel = FileMetadata(issue_number=str(number), issue_sort=float(number))
    session.add(file)
    session.flush()
    return file


def test_file_status_transitions():
    file = ComicFile(
        id=1,
        library_id=1,
        path="/a.cbz",
        relative_path="a.cbz",
        filename="a.cbz",
        extension="cbz",
        size=1,
        modified_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    assert file.status == FileStatus.PENDING
    assert set_file_status(file, FileStatus.INDEXED) is True
    assert set_file_status(file, FileStatus.INDEXED) is False

    with pytest.raises(InvalidTransitionError):
        set_file_status(file, FileStatus.PENDING)

    assert set_file_status(file, FileStatus.ORPHANED) is True
    assert set_file_status(file, FileStatus.QUARANTINED) is True
    with pytest.raises(InvalidTransitionError):
        set_file_status(file, FileStatus.INDEXED)


def test_series_transitions(session):
    series = create_series(session, "Saga")

    assert transition_series(series, SeriesStatus.ARCHIVED) is True
    assert series.archived_at is not None
    assert transition_series(series, SeriesStatus.ARCHIVED) is False
    assert transition_series(series, SeriesStatus.ACTIVE) is True
    assert series.archived_at is None


def test_archive_and_restore_toggle_collection_items(session):
    series = create_series(session, "Saga")
    session.add(CollectionItem(collection="Want", series_id=series.id))
    session.flush()

    assert archive_series(session, series) is True
    assert archive_series(session, series) is False
    item = session.exec(select(CollectionItem)).one()
    assert item.is_available is False

    assert restore_series(session, series) is True
    session.commit()
    assert session.get(CollectionItem, item.id).is_available is True


def test_check_and_archive_only_archives_empty_series(session, library_id):
    empty = create_series(session, "Empty")
    owned = create_series(session, "Owned")
    _issue(session, library_id, owned.id, 1)

    assert check_and_archive_empty_series(session, empty.id) is True
    assert check_and_archive_empty_series(session, owned.id) is False
    assert check_and_archive_empty_series(session, 9999) is False
    assert owned.status == SeriesStatus.ACTIVE


def test_files_are_ordered_by_issue_then_filename(session, library_id):
    series = create_series(session, "Saga")
    _issue(session, library_id, series.id, 10)
    _issue(session, library_id, series.id, 2)
    _issue(session, library_id, series.id, None, "b-extra.cbz")
    _issue(session, library_id, series.id, None, "a-extra.cbz")

    ordered = [f.filename for f in series_files_in_order(session, series.id)]

    assert ordered == ["2.cbz", "10.cbz", "a-extra.cbz", "b-extra.cbz"]


def test_progress_next_unread_follows_last_read(session, library_id):
    series = create_series(session, "Saga")
    first, second, third = (_issue(session, library_id, series.id, n) for n in (1, 2, 3))
    session.add(ReadingProgress(file_id=first.id, completed=True, current_page=20,
                                last_read_at=datetime(2024, 5, 1, tzinfo=timezone.utc)))
    session.flush()

    progress = update_series_progress(session, series.id)

    assert progress.total_owned == 3
    assert progress.total_read == 1
    assert progress.total_in_progress == 0
    assert progress.last_read_file_id == first.id
    assert progress.next_unread_file_id == second.id


def test_progress_prefers_issue_in_progress(session, library_id):
    series = create_series(session, "Saga")
    first, second, third = (_issue(session, library_id, series.id, n) for n in (1, 2, 3))
    session.add(ReadingProgress(file_id=third.id, current_page=4,
                                last_read_at=datetime(2024, 5, 2, tzinfo=timezone.utc)))
    session.flush()

    progress = update_series_progress(session, series.id)

    assert progress.total_in_progress == 1
    assert progress.next_unread_file_id == third.id


def test_progress_for_series_without_files(session):
    series = create_series(session, "Empty")

    progress = update_series_progress(session, series.id)

    assert progress.total_owned == 0
    assert progress.next_unread_file_id is None


def test_find_or_create_from_definition_merges_missing_fields(session):
    existing = create_series(session, "Saga")
    archive_series(session, existing)
    definition = SeriesDefinition(
        name="saga", start_year=2012, aliases=["Saga Comic"], comicvine_id="43585"
    )

    series, created = find_or_create_from_definition(session, definition, "Saga")

    assert created is False
    assert series.id == existing.id
    assert series.status == SeriesStatus.ACTIVE
    assert series.start_year == 2012
    assert series.alias_list == ["Saga Comic"]
    assert series.comicvine_id == "43585"
