import pytest
from sqlmodel import select
from typer.testing import CliRunner

import main
from longbox.models import ComicFile, Folder


@pytest.fixture
def cli(tmp_path, engine, library_root, monkeypatch):
    """CliRunner with config.ini and the database inside tmp_path."""
    config_path = tmp_path / "config.ini"
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setattr("main.DEFAULT_CONFIG_PATH", config_path)
    monkeypatch.setattr("longbox.config.DEFAULT_CONFIG_PATH", config_path)
    monkeypatch.setattr("main.setup_logging", lambda *args, **kwargs: None)

    runner = CliRunner()
    result = runner.invoke(main.app, ["init", "--library", str(library_root), "--name", "Test"])
    assert result.exit_code == 0, result.output
    return runner


def test_init_writes_config(cli, tmp_path, library_root):
    content = (tmp_path / "config.ini").read_text()

    assert f"path = {library_root}" in content
    assert "name = Test" in content
    assert "[matching]" in content


def test_commands_without_config_fail(tmp_path, monkeypatch):
    monkeypatch.setattr("longbox.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.ini")

    result = CliRunner().invoke(main.app, ["stats"])

    assert result.exit_code == 1
    assert "config.ini not found" in result.output


def test_scan_stats_and_folders(cli, engine, library_root, make_cbz, make_comicinfo):
    make_cbz(library_root / "Batman" / "001.cbz", make_comicinfo("Batman", "1"))

    result = cli.invoke(main.app, ["scan", "--yes"])
    assert result.exit_code == 0, result.output
    assert "1 added" in result.output
    assert "Linked 1/1 files" in result.output

    result = cli.invoke(main.app, ["stats"])
    assert result.exit_code == 0, result.output
    assert "Total files: 1" in result.output
    assert "Indexed: 1" in result.output

    result = cli.invoke(main.app, ["folders"])
    assert result.exit_code == 0, result.output
    assert "Batman/ (1 here, 1 total)" in result.output


def test_scan_dry_run_writes_nothing(cli, engine, library_root, make_cbz):
    make_cbz(library_root / "Batman" / "001.cbz")

    result = cli.invoke(main.app, ["scan", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "1 new" in result.output
    with engine.connect() as conn:
        assert conn.exec_driver_sql("SELECT COUNT(*) FROM files").scalar() == 0


def test_scan_asks_before_removing_files(cli, engine, library_root, make_cbz):
    comic = make_cbz(library_root / "Batman" / "001.cbz")
    assert cli.invoke(main.app, ["scan", "--yes", "--no-link"]).exit_code == 0
    comic.unlink()

    result = cli.invoke(main.app, ["scan"], input="n\n")

    assert result.exit_code == 1
    with engine.connect() as conn:
        assert conn.exec_driver_sql("SELECT COUNT(*) FROM files").scalar() == 1


def test_folders_before_first_scan(cli):
    result = cli.invoke(main.app, ["folders"])

    assert result.exit_code == 0, result.output
    assert "No folders yet" in result.output


def test_rename_folder_moves_directory_and_rows(cli, session, library_root, make_cbz):
    make_cbz(library_root / "Batman" / "001.cbz")
    assert cli.invoke(main.app, ["scan", "--yes", "--no-link"]).exit_code == 0

    result = cli.invoke(main.app, ["rename-folder", "Batman", "Batman (2011)"])

    assert result.exit_code == 0, result.output
    assert (library_root / "Batman (2011)" / "001.cbz").exists()
    assert not (library_root / "Batman").exists()
    file = session.exec(select(ComicFile)).one()
    assert file.relative_path == "Batman (2011)/001.cbz"
    assert session.exec(select(Folder.path)).all() == ["Batman (2011)"]


def test_rename_unknown_folder_fails(cli):
    result = cli.invoke(main.app, ["rename-folder", "Nope", "Other"])

    assert result.exit_code == 1


def test_link_all(cli, library_root, make_cbz, make_comicinfo):
    make_cbz(library_root / "Saga" / "001.cbz", make_comicinfo("Saga", "1"))
    assert cli.invoke(main.app, ["scan", "--yes", "--no-link"]).exit_code == 0

    result = cli.invoke(main.app, ["link", "--all"])

    assert result.exit_code == 0, result.output
    assert "Linked 1/1 files" in result.output


def test_recount_and_prune(cli, library_root, make_cbz):
    comic = make_cbz(library_root / "Old" / "001.cbz")
    assert cli.invoke(main.app, ["scan", "--yes", "--no-link"]).exit_code == 0
    comic.unlink()
    assert cli.invoke(main.app, ["scan", "--yes", "--no-link"]).exit_code == 0

    result = cli.invoke(main.app, ["recount"])
    assert result.exit_code == 0, result.output
    assert "Recalculated 1 folders" in result.output

    result = cli.invoke(main.app, ["prune"])
    assert result.exit_code == 0, result.output
    assert "Removed 1 empty folders" in result.output


def test_migrate_check_reports_head(cli):
    result = cli.invoke(main.app, ["migrate", "--check"])

    assert result.exit_code == 0, result.output
    assert "0001" in result.output
