"""Library registration and lookup."""

from __future__ import annotations

from pathlib import Path
from typing import List

from sqlmodel import Session, select

from .errors import NotFoundError
from .logging_config import get_logger
from .models import Library

logger = get_logger(__name__)


def get_library(session: Session, library_id: int) -> Library:
    library = session.get(Library, library_id)
    if library is None:
        raise NotFoundError("library", library_id)
    return library


def get_libraries(session: Session) -> List[Library]:
    return list(session.exec(select(Library).order_by(Library.id)).all())


def register_library(session: Session, root: Path, name: str) -> Library:
    """Return the library rooted at `root`, creating it on first use.

    A library created here has no file rows yet, so it is marked as already
    backfilled.
    """
    root_path = str(root.expanduser().resolve())
    library = session.exec(select(Library).where(Library.root_path == root_path)).first()
    if library is not None:
        if library.name != name:
            library.name = name
            session.add(library)
            session.flush()
        return library

    library = Library(name=name, root_path=root_path, folders_backfilled=True)
    session.add(library)
    session.flush()
    session.refresh(library)
    logger.info(f"Registered library '{name}' at {root_path}")
    return library
