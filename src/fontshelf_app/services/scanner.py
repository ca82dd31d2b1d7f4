from __future__ import annotations

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Literal, Optional

from fontshelf_app.db.repo import CatalogError, Repo
from fontshelf_app.models.entities import FaceDescriptor, NewFontFile
from fontshelf_app.services.identity import identify, url_key_for
from fontshelf_app.services.parser import SUPPORTED_EXTENSIONS, ParseError, parse_font
from fontshelf_app.utils.app_logging import get_logger

ProgressCb = Optional[Callable[[str], None]]
Outcome = Literal["ignored", "unchanged", "indexed", "failed"]
WritePolicy = Literal["last_write_wins", "per_path"]

logger = get_logger()


@dataclass
class ScanResult:
    scanned_categories: int = 0
    missing_categories: list[int] = field(default_factory=list)
    error_categories: list[int] = field(default_factory=list)
    files_seen: int = 0
    indexed: int = 0
    unchanged: int = 0
    failed: int = 0
    ignored: int = 0

    def count(self, outcome: Outcome) -> None:
        self.files_seen += 1
        setattr(self, outcome, getattr(self, outcome) + 1)

    def merge(self, other: "ScanResult") -> None:
        self.scanned_categories += other.scanned_categories
        self.missing_categories.extend(other.missing_categories)
        self.error_categories.extend(other.error_categories)
        self.files_seen += other.files_seen
        self.indexed += other.indexed
        self.unchanged += other.unchanged
        self.failed += other.failed
        self.ignored += other.ignored


class _PathLocks:
    """One lock per path, dropped again once nobody holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, path: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(path, (threading.Lock(), 0))
            self._locks[path] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                _, users = self._locks[path]
                if users <= 1:
                    del self._locks[path]
                else:
                    self._locks[path] = (lock, users - 1)


def extension_of(path: str) -> str:
    return os.path.splitext(path)[1].lower().lstrip(".")


class Scanner:
    """
    Write path into the catalog.

    scan_all/scan_category walk the registered roots; process_file is the
    per-file reconciliation unit, shared with the watcher. Only one full
    scan runs at a time per Scanner; process_file may run concurrently for
    any number of paths.
    """

    def __init__(
        self,
        repo: Repo,
        *,
        parser: Callable[[bytes], list[FaceDescriptor]] = parse_font,
        workers: int = 1,
        write_policy: WritePolicy = "last_write_wins",
        extensions: frozenset[str] = SUPPORTED_EXTENSIONS,
    ) -> None:
        self.repo = repo
        self.parser = parser
        self.workers = max(1, int(workers))
        self.write_policy = write_policy
        self.extensions = extensions

        self._state_lock = threading.Lock()
        self._scanning = False
        self._path_locks = _PathLocks()

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    def _progress(self, cb: ProgressCb, msg: str) -> None:
        if cb:
            cb(msg)

    # -------------------- full scan --------------------
    def scan_all(self, progress: ProgressCb = None) -> Optional[ScanResult]:
        """Scan every 'ok' root. Returns None when a scan was already running."""
        with self._state_lock:
            if self._scanning:
                logger.info("Scan already in progress; ignoring request.")
                return None
            self._scanning = True

        logger.info("Starting full scan…")
        result = ScanResult()
        try:
            for cat in self.repo.list_categories():
                if cat.status != "ok":
                    continue
                self._progress(progress, f"Category: {cat.name} ({cat.path})")
                try:
                    result.merge(self.scan_category(cat.id, cat.path, progress=progress))
                except CatalogError as e:
                    # root deleted while the scan was running
                    logger.warning("Skipping category %s: %s", cat.id, e)
        finally:
            with self._state_lock:
                self._scanning = False
        logger.info(
            "Scan complete: %d files, +%d indexed, %d unchanged, %d failed",
            result.files_seen,
            result.indexed,
            result.unchanged,
            result.failed,
        )
        return result

    def scan_category(
        self, category_id: int, root_path: str, progress: ProgressCb = None
    ) -> ScanResult:
        if self.repo.get_category(category_id) is None:
            logger.warning("Category %s no longer exists; not scanning %s", category_id, root_path)
            return ScanResult()

        result = ScanResult(scanned_categories=1)

        if not os.path.isdir(root_path):
            reason = "Path not found" if not os.path.exists(root_path) else "Not a directory"
            logger.warning("Category %s unavailable: %s (%s)", category_id, root_path, reason)
            self.repo.set_category_status(category_id, "missing", reason)
            result.missing_categories.append(category_id)
            return result

        try:
            with os.scandir(root_path):
                pass
        except OSError as e:
            logger.warning("Category %s unreadable: %s (%s)", category_id, root_path, e)
            self.repo.set_category_status(category_id, "error", str(e))
            result.error_categories.append(category_id)
            return result

        self.repo.set_category_status(category_id, "ok", None)

        files = self.iter_files(root_path)
        if self.workers == 1:
            for full_path in files:
                result.count(self.process_file(full_path, category_id, root_path))
        else:
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="scan") as pool:
                for outcome in pool.map(
                    lambda p: self.process_file(p, category_id, root_path), files
                ):
                    result.count(outcome)

        self._progress(
            progress,
            f"  Files: {result.files_seen} | +{result.indexed} indexed | {result.failed} failed",
        )
        return result

    def iter_files(self, root_path: str) -> Iterator[str]:
        """Every regular file below root_path; unreadable subdirectories are skipped."""

        def _on_error(err: OSError) -> None:
            logger.warning("Error scanning dir %s: %s", err.filename, err)

        for dirpath, _dirnames, filenames in os.walk(root_path, onerror=_on_error):
            for name in filenames:
                full_path = os.path.join(dirpath, name)
                if os.path.isfile(full_path):
                    yield full_path

    # -------------------- single file --------------------
    def _guard(self, path: str):
        if self.write_policy == "per_path":
            return self._path_locks.hold(path)
        return nullcontext()

    def remove_path(self, full_path: str) -> int:
        """
        Drop the file stored at full_path, or every file below it when the
        path was a directory. Returns how many files were removed.
        """
        with self._guard(full_path):
            if self.repo.delete_font_file_by_path(full_path):
                return 1
            return self.repo.delete_font_files_under(full_path)

    def process_file(self, full_path: str, category_id: int, root_path: str) -> Outcome:
        ext = extension_of(full_path)
        if ext not in self.extensions:
            return "ignored"

        with self._guard(full_path):
            try:
                return self._reconcile(full_path, ext, category_id, root_path)
            except ParseError as e:
                logger.warning("Failed to parse font %s: %s", full_path, e)
                return "failed"
            except Exception:
                logger.exception("Error processing file %s", full_path)
                return "failed"

    def _reconcile(self, full_path: str, ext: str, category_id: int, root_path: str) -> Outcome:
        existing = self.repo.get_font_file_by_path(full_path)
        st = os.stat(full_path)
        mtime_ms = st.st_mtime_ns // 1_000_000

        if existing and existing.size_bytes == st.st_size and existing.mtime_ms == mtime_ms:
            logger.debug("Unchanged: %s", full_path)
            return "unchanged"

        data = Path(full_path).read_bytes()
        sha1, size = identify(data)
        faces = self.parser(data)

        filename = os.path.basename(full_path)
        new = NewFontFile(
            category_id=category_id,
            full_path=full_path,
            rel_path=os.path.relpath(full_path, root_path),
            filename=filename,
            ext=ext,
            size_bytes=size,
            mtime_ms=mtime_ms,
            sha1=sha1,
            url_key=url_key_for(sha1, filename),
            fallback_url_key=url_key_for(sha1, filename, discriminator=full_path),
        )
        if not os.path.exists(full_path):
            # removed while it was being parsed; the remove event owns the row now
            logger.debug("Vanished before indexing: %s", full_path)
            return "ignored"
        stored = self.repo.replace_font_file(new, faces)
        logger.debug("Indexed %s (%d face(s), key=%s)", full_path, len(faces), stored.url_key)
        return "indexed"
