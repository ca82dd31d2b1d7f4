from __future__ import annotations

import os
import queue
import threading
from pathlib import PurePath
from typing import Iterable, Optional

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from fontshelf_app.db.repo import Repo
from fontshelf_app.models.entities import Category, WatchEvent
from fontshelf_app.services.scanner import Scanner
from fontshelf_app.utils.app_logging import get_logger

logger = get_logger()

_STOP = object()


def _decode(path: str | bytes) -> str:
    return os.fsdecode(path)


def is_hidden(path: str, roots: Iterable[str] = ()) -> bool:
    """True when any component below its root starts with a dot."""
    for root in roots:
        if _is_under(path, root):
            rel = os.path.relpath(path, root)
            return any(part.startswith(".") for part in PurePath(rel).parts)
    return any(part.startswith(".") for part in PurePath(path).parts[1:])


def _is_under(path: str, root: str) -> bool:
    root = root.rstrip(os.sep) or os.sep
    return path == root or path.startswith(root if root.endswith(os.sep) else root + os.sep)


def normalize_event(event: FileSystemEvent) -> list[WatchEvent]:
    """
    Map a native watchdog event onto add/change/remove.

    Directory creations and modifications carry nothing to index (the files
    inside report their own events); a deleted or moved-away directory
    becomes a remove for that directory path.
    """
    src = _decode(event.src_path)
    kind = event.event_type

    if kind == EVENT_TYPE_MOVED:
        dest = _decode(getattr(event, "dest_path", "") or "")
        out = [WatchEvent("remove", src)]
        if dest and not event.is_directory:
            out.append(WatchEvent("add", dest))
        return out
    if kind == EVENT_TYPE_DELETED:
        return [WatchEvent("remove", src)]
    if event.is_directory:
        return []
    if kind == EVENT_TYPE_CREATED:
        return [WatchEvent("add", src)]
    if kind == EVENT_TYPE_MODIFIED:
        return [WatchEvent("change", src)]
    return []


class _Handler(FileSystemEventHandler):
    def __init__(self, bridge: "WatcherBridge") -> None:
        self.bridge = bridge

    def on_any_event(self, event: FileSystemEvent) -> None:
        for ev in normalize_event(event):
            self.bridge.submit(ev)


class WatcherBridge:
    """
    Feeds filesystem events for every 'ok' root into the catalog.

    Native events are normalized on the observer thread and queued; a single
    dispatcher thread drains the queue so reconciliation never blocks the
    observer.
    """

    def __init__(self, repo: Repo, scanner: Scanner, observer: Optional[Observer] = None) -> None:
        self.repo = repo
        self.scanner = scanner
        self.observer = observer or Observer()
        self._handler = _Handler(self)
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._dispatcher: Optional[threading.Thread] = None
        self._watches: dict[int, object] = {}
        self._lock = threading.Lock()

    # -------------------- lifecycle --------------------
    def start(self) -> None:
        for cat in self.repo.list_categories():
            if cat.status == "ok":
                self.watch_category(cat)

        self._dispatcher = threading.Thread(
            target=self._drain, name="watch-dispatch", daemon=True
        )
        self._dispatcher.start()
        self.observer.start()
        logger.info("Watcher started for %d root(s)", len(self._watches))

    def stop(self) -> None:
        if self.observer.is_alive():
            self.observer.stop()
            self.observer.join()
        if self._dispatcher is not None:
            self._queue.put(_STOP)
            self._dispatcher.join()
            self._dispatcher = None
        logger.info("Watcher stopped.")

    def watch_category(self, category: Category) -> bool:
        if not os.path.isdir(category.path):
            logger.warning("Watch root not found or not a directory: %s", category.path)
            return False
        with self._lock:
            if category.id in self._watches:
                return True
            self._watches[category.id] = self.observer.schedule(
                self._handler, category.path, recursive=True
            )
        logger.info("Watching for changes in: %s", category.path)
        return True

    # -------------------- events --------------------
    def submit(self, event: WatchEvent) -> None:
        self._queue.put(event)

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.handle(item)  # type: ignore[arg-type]
            except Exception:
                logger.exception("Error handling watch event %s", item)
            finally:
                self._queue.task_done()

    def resolve_category(self, path: str) -> Optional[Category]:
        """Owning 'ok' category by longest root-path prefix."""
        best: Optional[Category] = None
        for cat in self.repo.list_categories():
            if cat.status != "ok" or not _is_under(path, cat.path):
                continue
            if best is None or len(cat.path) > len(best.path):
                best = cat
        return best

    def handle(self, event: WatchEvent) -> None:
        path = os.path.abspath(event.path)
        category = self.resolve_category(path)
        if category is None:
            logger.debug("Ignoring %s for untracked path %s", event.kind, path)
            return
        if is_hidden(path, [category.path]):
            return

        logger.debug("Watch %s: %s", event.kind, path)
        if event.kind == "remove":
            self.scanner.remove_path(path)
        else:
            self.scanner.process_file(path, category.id, category.path)
