"""Config management for Longbox.

Reads `config.ini` from DATA_DIR (the project root unless the DATA_DIR
environment variable points elsewhere).
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import sys
from typing import Optional

from .logging_config import get_logger

logger = get_logger(__name__)


def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

# DATA_DIR holds all persistent state (config.ini, library.db, covers/, longbox.log).
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"


@dataclasses.dataclass
class LibraryConfig:
    path: pathlib.Path
    name: str = "My Comic Library"


@dataclasses.dataclass
class ScannerConfig:
    supported_formats: tuple[str, ...] = ("cbz", "cbr")
    ignore_patterns: tuple[str, ...] = (".DS_Store", "Thumbs.db", "@eaDir")
    load_series_json: bool = True
    fingerprint_bytes: int = 64 * 1024
    workers: int = 4
    prune_empty_folders: bool = False

    @property
    def extensions(self) -> frozenset[str]:
        """Allow-listed suffixes, lower-case with the leading dot."""
        return frozenset(f".{fmt.lower().lstrip('.')}" for fmt in self.supported_formats)


@dataclasses.dataclass
class MatchingConfig:
    fuzzy_threshold: float = 0.7
    auto_link_threshold: float = 0.9
    ambiguity_ratio: float = 0.8
    folder_match_threshold: float = 0.8


@dataclasses.dataclass
class CoverConfig:
    width: int = 300
    height: int = 450
    quality: int = 85


@dataclasses.dataclass
class LoggingConfig:
    level: str = "INFO"
    max_file_mb: int = 10
    backup_count: int = 5


@dataclasses.dataclass
class LongboxConfig:
    library: LibraryConfig
    scanner: ScannerConfig = dataclasses.field(default_factory=ScannerConfig)
    matching: MatchingConfig = dataclasses.field(default_factory=MatchingConfig)
    covers: CoverConfig = dataclasses.field(default_factory=CoverConfig)
    logging: LoggingConfig = dataclasses.field(default_factory=LoggingConfig)
    data_dir: pathlib.Path = DATA_DIR

    @property
    def library_path(self) -> pathlib.Path:
        return self.library.path

    @property
    def database_path(self) -> pathlib.Path:
        return self.data_dir / "library.db"

    @property
    def covers_dir(self) -> pathlib.Path:
        return self.data_dir / "covers"


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_config(config_path: Optional[pathlib.Path] = None) -> LongboxConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    library = LibraryConfig(
        path=pathlib.Path(
            parser.get("library", "path", fallback="/path/to/comics")
        ).expanduser(),
        name=parser.get("library", "name", fallback="My Comic Library"),
    )

    scanner = ScannerConfig(
        supported_formats=_parse_list(
            parser.get("scanner", "supported_formats", fallback="cbz,cbr")
        ),
        ignore_patterns=_parse_list(
            parser.get(
                "scanner",
                "ignore_patterns",
                fallback=".DS_Store,Thumbs.db,@eaDir",
            )
        ),
        load_series_json=_parse_bool(
            parser.get("scanner", "load_series_json", fallback="true"), True
        ),
        fingerprint_bytes=parser.getint(
            "scanner", "fingerprint_bytes", fallback=64 * 1024
        ),
        workers=parser.getint("scanner", "workers", fallback=4),
        prune_empty_folders=_parse_bool(
            parser.get("scanner", "prune_empty_folders", fallback="false"), False
        ),
    )

    matching = MatchingConfig(
        fuzzy_threshold=parser.getfloat("matching", "fuzzy_threshold", fallback=0.7),
        auto_link_threshold=parser.getfloat(
            "matching", "auto_link_threshold", fallback=0.9
        ),
        ambiguity_ratio=parser.getfloat("matching", "ambiguity_ratio", fallback=0.8),
        folder_match_threshold=parser.getfloat(
            "matching", "folder_match_threshold", fallback=0.8
        ),
    )

    covers = CoverConfig(
        width=parser.getint("covers", "width", fallback=300),
        height=parser.getint("covers", "height", fallback=450),
        quality=parser.getint("covers", "quality", fallback=85),
    )

    return LongboxConfig(
        library=library,
        scanner=scanner,
        matching=matching,
        covers=covers,
        logging=LoggingConfig(
            level=parser.get("logging", "level", fallback="INFO"),
            max_file_mb=parser.getint("logging", "max_file_mb", fallback=10),
            backup_count=parser.getint("logging", "backup_count", fallback=5),
        ),
        data_dir=path.parent,
    )


def write_default_config(
    config_path: pathlib.Path, library_path: pathlib.Path, library_name: str
) -> None:
    """Write a config.ini with default settings for the given library."""
    parser = configparser.ConfigParser()

    parser["library"] = {
        "path": str(library_path.expanduser()),
        "name": library_name,
    }
    parser["scanner"] = {
        "supported_formats": "cbz,cbr",
        "ignore_patterns": ".DS_Store,Thumbs.db,@eaDir",
        "load_series_json": "true",
        "fingerprint_bytes": str(64 * 1024),
        "workers": "4",
        "prune_empty_folders": "false",
    }
    parser["matching"] = {
        "fuzzy_threshold": "0.7",
        "auto_link_threshold": "0.9",
        "ambiguity_ratio": "0.8",
        "folder_match_threshold": "0.8",
    }
    parser["covers"] = {
        "width": "300",
        "height": "450",
        "quality": "85",
    }
    parser["logging"] = {"level": "INFO", "max_file_mb": "10", "backup_count": "5"}

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as handle:
        parser.write(handle)
    logger.debug(f"Wrote default config to {config_path}")


_cached_config: Optional[LongboxConfig] = None


def get_config() -> LongboxConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config_cache() -> None:
    """Clear the cached config (useful for tests)."""
    global _cached_config
    _cached_config = None
