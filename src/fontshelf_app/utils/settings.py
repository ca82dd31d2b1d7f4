from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Literal

from fontshelf_app.utils.paths import app_root

WritePolicy = Literal["last_write_wins", "per_path"]

_WRITE_POLICIES = ("last_write_wins", "per_path")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class AppSettings:
    scan_workers: int = 1
    write_policy: WritePolicy = "last_write_wins"
    watch: bool = True
    log_level: str = "INFO"

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level, logging.INFO)


def settings_path() -> Path:
    p = app_root() / "config"
    p.mkdir(parents=True, exist_ok=True)
    return p / "settings.json"


def _coerce(data: dict[str, Any]) -> AppSettings:
    defaults = AppSettings()

    workers = data.get("scan_workers", defaults.scan_workers)
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        workers = defaults.scan_workers

    policy = data.get("write_policy", defaults.write_policy)
    if policy not in _WRITE_POLICIES:
        policy = defaults.write_policy

    watch = data.get("watch", defaults.watch)
    if not isinstance(watch, bool):
        watch = defaults.watch

    level = str(data.get("log_level", defaults.log_level)).upper()
    if level not in _LOG_LEVELS:
        level = defaults.log_level

    return AppSettings(scan_workers=workers, write_policy=policy, watch=watch, log_level=level)


def load_settings() -> AppSettings:
    path = settings_path()
    if not path.exists():
        return AppSettings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return AppSettings()
    if not isinstance(data, dict):
        return AppSettings()
    return _coerce(data)


def save_settings(s: AppSettings) -> None:
    path = settings_path()
    data: dict[str, Any] = asdict(s)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
