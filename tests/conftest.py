import io
import zipfile
from pathlib import Path
from typing import Optional

import pytest
from PIL import Image
from sqlmodel import Session, create_engine

from longbox.config import LibraryConfig, LongboxConfig, ScannerConfig
from longbox.database import init_db
from longbox.library import register_library


def _png_bytes(color: str) -> bytes:
    img = Image.new("RGB", (10, 10), color=color)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def write_cbz(
    path: Path,
    comicinfo: Optional[str] = None,
    color: str = "red",
    pages: int = 1,
) -> Path:
    """Create a valid CBZ with `pages` tiny PNGs and an optional ComicInfo.xml.

    `color` changes the bytes, so two archives with different colors get
    different fingerprints.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for page in range(1, pages + 1):
            zf.writestr(f"page{page:03d}.png", _png_bytes(color))
        if comicinfo is not None:
            zf.writestr("ComicInfo.xml", comicinfo)
    return path


def comicinfo_xml(series: str, number: Optional[str] = None, year: Optional[int] = None,
                  publisher: Optional[str] = None) -> str:
    parts = [f"<Series>{series}</Series>"]
    if number is not None:
        parts.append(f"<Number>{number}</Number>")
    if year is not None:
        parts.append(f"<Year>{year}</Year>")
    if publisher is not None:
        parts.append(f"<Publisher>{publisher}</Publisher>")
    return f'<?xml version="1.0"?>\n<ComicInfo>{"".join(parts)}</ComicInfo>'


@pytest.fixture
def make_cbz():
    return write_cbz


@pytest.fixture
def make_comicinfo():
    return comicinfo_xml


@pytest.fixture
def engine(tmp_path, monkeypatch):
    """Point the module engine at a temporary SQLite file and create tables."""
    db_file = tmp_path / "library.db"
    test_engine = create_engine(
        f"sqlite:///{db_file}", connect_args={"check_same_thread": False}
    )
    monkeypatch.setattr("longbox.database.DB_PATH", db_file, raising=True)
    monkeypatch.setattr("longbox.database.engine", test_engine, raising=True)
    init_db()
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def library_root(tmp_path) -> Path:
    root = tmp_path / "comics"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def config(tmp_path, library_root) -> LongboxConfig:
    return LongboxConfig(
        library=LibraryConfig(path=library_root, name="Test Library"),
        scanner=ScannerConfig(workers=2),
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def library_id(session, library_root) -> int:
    library = register_library(session, library_root, "Test Library")
    session.commit()
    return library.id
