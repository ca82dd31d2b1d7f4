from __future__ import annotations

import os
from pathlib import Path

HOME_ENV = "FONTSHELF_HOME"

_SUBDIRS = ("logs", "data", "config", "fonts")


def app_root() -> Path:
    # FONTSHELF_HOME keeps the catalog, logs and settings together (portable mode)
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser().resolve()
    return (Path.home() / ".fontshelf").resolve()


def ensure_app_dirs() -> None:
    root = app_root()
    for name in _SUBDIRS:
        (root / name).mkdir(parents=True, exist_ok=True)


def fonts_dir() -> Path:
    """Default root registered on first run."""
    return app_root() / "fonts"


def db_path() -> Path:
    data = app_root() / "data"
    data.mkdir(parents=True, exist_ok=True)
    return data / "catalog.db"
