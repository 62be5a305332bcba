import json

from sqlmodel import select

from longbox.applier import apply_scan_results
from longbox.models import ComicFile, FileStatus, Series
from longbox.pipeline import process_unlinked_files
from longbox.planner import scan_library


def test_link_job_caches_metadata_and_links_new_files(
    session, library_id, library_root, config, make_cbz, make_comicinfo
):
    make_cbz(library_root / "Saga" / "001.cbz", make_comicinfo("Saga", "1", 2012, "Image"), "red")
    make_cbz(library_root / "Saga" / "002.cbz", make_comicinfo("Saga", "2", 2012, "Image"), "blue")

    outcome = apply_scan_results(session, scan_library(session, library_id, config), config)
    assert outcome.link_job is not None
    stats = outcome.link_job.join(timeout=30)

    assert outcome.link_job.done
    assert stats.processed == 2
    assert stats.metadata_cached == 2
    assert stats.linked == 2
    assert stats.created == 1
    assert stats.failed == 0

    session.expire_all()
    series = session.exec(select(Series)).one()
    assert (series.name, series.publisher, series.start_year) == ("Saga", "Image", 2012)
    files = session.exec(select(ComicFile).order_by(ComicFile.relative_path)).all()
    assert all(f.status == FileStatus.INDEXED for f in files)
    assert all(f.series_id == series.id for f in files)
    assert [f.metadata_rel.issue_sort for f in files] == [1.0, 2.0]
    assert series.cover_file_id == files[0].id


def test_link_job_uses_folder_sidecar(session, library_id, library_root, config, make_cbz, make_comicinfo):
    make_cbz(library_root / "Mixed" / "a.cbz", make_comicinfo("Batman"), "red")
    make_cbz(library_root / "Mixed" / "b.cbz", make_comicinfo("Detective Comics"), "blue")
    (library_root / "Mixed" / "series.json").write_text(
        json.dumps(
            {
                "series": [
                    {"name": "Batman", "publisher": "DC", "startYear": 2011},
                    {"name": "Detective Comics", "publisher": "DC"},
                ]
            }
        )
    )

    outcome = apply_scan_results(session, scan_library(session, library_id, config), config)
    stats = outcome.link_job.join(timeout=30)

    assert stats.linked == 2
    assert stats.failed == 0
    session.expire_all()
    names = {s.name: s for s in session.exec(select(Series)).all()}
    assert set(names) == {"Batman", "Detective Comics"}
    assert names["Batman"].publisher == "DC"
    assert names["Batman"].start_year == 2011


def test_files_without_a_name_stay_pending(session, library_id, library_root, config, make_cbz):
    make_cbz(library_root / "loose.cbz")

    outcome = apply_scan_results(session, scan_library(session, library_id, config), config)
    stats = outcome.link_job.join(timeout=30)

    assert stats.no_name == 1
    assert stats.linked == 0
    session.expire_all()
    file = session.exec(select(ComicFile)).one()
    assert file.status == FileStatus.PENDING
    assert file.series_id is None


def test_process_unlinked_files_links_existing_rows(
    session, library_id, library_root, config, make_cbz, make_comicinfo
):
    make_cbz(library_root / "Invincible" / "001.cbz", make_comicinfo("Invincible", "1"))
    apply_scan_results(session, scan_library(session, library_id, config), config, link=False)

    stats = process_unlinked_files(library_id, config)

    assert stats.processed == 1
    assert stats.linked == 1
    session.expire_all()
    file = session.exec(select(ComicFile)).one()
    assert file.status == FileStatus.INDEXED
    assert session.get(Series, file.series_id).name == "Invincible"

    assert process_unlinked_files(library_id, config).processed == 0
