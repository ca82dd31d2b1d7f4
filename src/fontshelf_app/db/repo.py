from __future__ import annotations

import os
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from fontshelf_app.db.schema import SCHEMA_SQL
from fontshelf_app.models.entities import (
    Category,
    CategoryStatus,
    Collection,
    CollectionItem,
    FaceDescriptor,
    FaceWithFile,
    Favorite,
    FontFace,
    FontFile,
    NewFontFile,
)

_FILE_FIELDS = (
    "id",
    "category_id",
    "full_path",
    "rel_path",
    "filename",
    "ext",
    "size_bytes",
    "mtime_ms",
    "sha1",
    "url_key",
    "duplicate_group_key",
    "created_at",
    "updated_at",
)
_FACE_FIELDS = (
    "id",
    "font_file_id",
    "family",
    "subfamily",
    "postscript_name",
    "weight",
    "italic",
    "stretch",
    "version",
    "full_name",
    "created_at",
)

_FILE_COLS = ", ".join(_FILE_FIELDS)
_FACE_JOIN_COLS = ", ".join(f"fc.{c}" for c in _FACE_FIELDS) + ", " + ", ".join(
    f"f.{c} AS f_{c}" for c in _FILE_FIELDS
)


class CatalogError(RuntimeError):
    pass


def normalize_root(path: str | os.PathLike[str]) -> str:
    return os.path.abspath(os.path.expanduser(os.fspath(path)))


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


def _category_from_row(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        path=row["path"],
        status=row["status"],
        last_error=row["last_error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _file_from_row(row: sqlite3.Row, prefix: str = "") -> FontFile:
    return FontFile(**{name: row[prefix + name] for name in _FILE_FIELDS})


def _face_from_row(row: sqlite3.Row) -> FontFace:
    values = {name: row[name] for name in _FACE_FIELDS}
    values["italic"] = bool(values["italic"])
    return FontFace(**values)


def _collection_from_row(row: sqlite3.Row) -> Collection:
    return Collection(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        color=row["color"],
        count=row["count"] if "count" in row.keys() else 0,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class Repo:
    """
    Catalog store on SQLite, safe to share between the scan loop and the
    watcher thread.

    - One connection opened with check_same_thread=False
    - An RLock serializes every statement; writes that must be seen
      all-or-nothing (replace_font_file, delete_category) run in one
      transaction while the lock is held, so readers never observe a
      half-replaced file.
    """

    def __init__(self, db_file: Path, clock: Callable[[], float] = time.time):
        self.db_file = Path(db_file)
        self.db_file.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            str(self.db_file),
            timeout=30,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.create_function("casefold", 1, _casefold, deterministic=True)

        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA foreign_keys=ON;")

        self._ensure_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -------------------- schema --------------------
    def _ensure_schema(self) -> None:
        with self._lock:
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()

    # -------------------- categories --------------------
    def create_category(self, name: str, path: str | os.PathLike[str]) -> Category:
        root = normalize_root(path)
        now = self._clock()
        try:
            with self._lock, self._conn:
                cur = self._conn.execute(
                    """
                    INSERT INTO categories(name, path, status, last_error, created_at, updated_at)
                    VALUES(?, ?, 'ok', NULL, ?, ?)
                    """,
                    (name, root, now, now),
                )
                category_id = cur.lastrowid
        except sqlite3.IntegrityError as e:
            raise CatalogError(f"Category already registered for path: {root}") from e
        return self._require_category(category_id)

    def get_category(self, category_id: int) -> Optional[Category]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM categories WHERE id=?", (category_id,)
            ).fetchone()
        return _category_from_row(row) if row else None

    def _require_category(self, category_id: int) -> Category:
        category = self.get_category(category_id)
        if category is None:
            raise CatalogError(f"Unknown category: {category_id}")
        return category

    def get_category_by_path(self, path: str | os.PathLike[str]) -> Optional[Category]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM categories WHERE path=?", (normalize_root(path),)
            ).fetchone()
        return _category_from_row(row) if row else None

    def list_categories(self) -> list[Category]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM categories ORDER BY name COLLATE NOCASE ASC, id ASC"
            ).fetchall()
        return [_category_from_row(r) for r in rows]

    def update_category(
        self,
        category_id: int,
        *,
        name: Optional[str] = None,
        path: str | os.PathLike[str] | None = None,
    ) -> Category:
        sets: list[str] = []
        params: list[object] = []
        if name is not None:
            sets.append("name=?")
            params.append(name)
        if path is not None:
            sets.append("path=?")
            params.append(normalize_root(path))
        sets.append("updated_at=?")
        params.append(self._clock())
        params.append(category_id)

        try:
            with self._lock, self._conn:
                cur = self._conn.execute(
                    f"UPDATE categories SET {', '.join(sets)} WHERE id=?", tuple(params)
                )
        except sqlite3.IntegrityError as e:
            raise CatalogError(f"Category already registered for path: {path}") from e
        if cur.rowcount == 0:
            raise CatalogError(f"Unknown category: {category_id}")
        return self._require_category(category_id)

    def set_category_status(
        self, category_id: int, status: CategoryStatus, last_error: Optional[str] = None
    ) -> None:
        with self._lock, self._conn:
            cur = self._conn.execute(
                "UPDATE categories SET status=?, last_error=?, updated_at=? WHERE id=?",
                (status, last_error, self._clock(), category_id),
            )
        if cur.rowcount == 0:
            raise CatalogError(f"Unknown category: {category_id}")

    def delete_category(self, category_id: int) -> bool:
        """Delete a root; its files and their faces go with it (FK cascade)."""
        with self._lock, self._conn:
            hashes = [
                r["sha1"]
                for r in self._conn.execute(
                    "SELECT DISTINCT sha1 FROM font_files WHERE category_id=?",
                    (category_id,),
                )
            ]
            cur = self._conn.execute("DELETE FROM categories WHERE id=?", (category_id,))
            for sha1 in hashes:
                self._refresh_duplicate_group(sha1)
        return cur.rowcount > 0

    # -------------------- font files --------------------
    def get_font_file(self, file_id: int) -> Optional[FontFile]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_FILE_COLS} FROM font_files WHERE id=?", (file_id,)
            ).fetchone()
        return _file_from_row(row) if row else None

    def get_font_file_by_path(self, full_path: str) -> Optional[FontFile]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_FILE_COLS} FROM font_files WHERE full_path=?", (full_path,)
            ).fetchone()
        return _file_from_row(row) if row else None

    def get_font_file_by_url_key(self, url_key: str) -> Optional[FontFile]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_FILE_COLS} FROM font_files WHERE url_key=?", (url_key,)
            ).fetchone()
        return _file_from_row(row) if row else None

    def list_font_files(self, category_id: Optional[int] = None) -> list[FontFile]:
        sql = f"SELECT {_FILE_COLS} FROM font_files"
        params: tuple[object, ...] = ()
        if category_id is not None:
            sql += " WHERE category_id=?"
            params = (category_id,)
        sql += " ORDER BY id"
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_file_from_row(r) for r in rows]

    def faces_for_file(self, file_id: int) -> list[FontFace]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {', '.join(_FACE_FIELDS)} FROM font_faces WHERE font_file_id=? ORDER BY id",
                (file_id,),
            ).fetchall()
        return [_face_from_row(r) for r in rows]

    def replace_font_file(
        self, new: NewFontFile, faces: Sequence[FaceDescriptor]
    ) -> FontFile:
        """
        Drop whatever is stored for new.full_path and store the new version
        with its faces, as one transaction.
        """
        now = self._clock()
        with self._lock, self._conn:
            old = self._conn.execute(
                "SELECT id, sha1 FROM font_files WHERE full_path=?", (new.full_path,)
            ).fetchone()
            if old:
                self._conn.execute("DELETE FROM font_files WHERE id=?", (old["id"],))

            url_key = new.url_key
            holder = self._conn.execute(
                "SELECT 1 FROM font_files WHERE url_key=?", (url_key,)
            ).fetchone()
            if holder and new.fallback_url_key:
                url_key = new.fallback_url_key

            cur = self._conn.execute(
                """
                INSERT INTO font_files(category_id, full_path, rel_path, filename, ext,
                    size_bytes, mtime_ms, sha1, url_key, created_at, updated_at)
                VALUES(?,?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    new.category_id,
                    new.full_path,
                    new.rel_path,
                    new.filename,
                    new.ext,
                    new.size_bytes,
                    new.mtime_ms,
                    new.sha1,
                    url_key,
                    now,
                    now,
                ),
            )
            file_id = cur.lastrowid
            self._conn.executemany(
                """
                INSERT INTO font_faces(font_file_id, family, subfamily, postscript_name,
                    weight, italic, stretch, version, full_name, created_at)
                VALUES(?,?,?,?,?,?,?,?,?,?)
                """,
                [
                    (
                        file_id,
                        d.family,
                        d.subfamily,
                        d.postscript_name,
                        int(d.weight),
                        1 if d.italic else 0,
                        d.stretch,
                        d.version,
                        d.full_name,
                        now,
                    )
                    for d in faces
                ],
            )

            self._refresh_duplicate_group(new.sha1)
            if old and old["sha1"] != new.sha1:
                self._refresh_duplicate_group(old["sha1"])

            row = self._conn.execute(
                f"SELECT {_FILE_COLS} FROM font_files WHERE id=?", (file_id,)
            ).fetchone()
        return _file_from_row(row)

    def delete_font_file(self, file_id: int) -> bool:
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT sha1 FROM font_files WHERE id=?", (file_id,)
            ).fetchone()
            if not row:
                return False
            self._conn.execute("DELETE FROM font_files WHERE id=?", (file_id,))
            self._refresh_duplicate_group(row["sha1"])
        return True

    def delete_font_file_by_path(self, full_path: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT id FROM font_files WHERE full_path=?", (full_path,)
            ).fetchone()
            if not row:
                return False
            return self.delete_font_file(row["id"])

    def delete_font_files_under(self, directory: str) -> int:
        """Delete every file stored below a directory (a removed folder)."""
        prefix = directory.rstrip(os.sep) + os.sep
        with self._lock:
            ids = [
                r["id"]
                for r in self._conn.execute(
                    "SELECT id FROM font_files WHERE substr(full_path, 1, ?)=?",
                    (len(prefix), prefix),
                )
            ]
            return sum(1 for file_id in ids if self.delete_font_file(file_id))

    def _refresh_duplicate_group(self, sha1: str) -> None:
        # caller holds the lock and the transaction
        count = self._conn.execute(
            "SELECT COUNT(1) FROM font_files WHERE sha1=?", (sha1,)
        ).fetchone()[0]
        self._conn.execute(
            "UPDATE font_files SET duplicate_group_key=? WHERE sha1=?",
            (sha1 if count > 1 else None, sha1),
        )

    def duplicate_groups(self) -> dict[str, list[FontFile]]:
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_FILE_COLS} FROM font_files
                WHERE duplicate_group_key IS NOT NULL
                ORDER BY duplicate_group_key, id
                """
            ).fetchall()
        groups: dict[str, list[FontFile]] = {}
        for r in rows:
            f = _file_from_row(r)
            groups.setdefault(f.duplicate_group_key or f.sha1, []).append(f)
        return groups

    def orphan_face_count(self) -> int:
        with self._lock:
            return int(
                self._conn.execute(
                    """
                    SELECT COUNT(1) FROM font_faces fc
                    LEFT JOIN font_files f ON f.id = fc.font_file_id
                    WHERE f.id IS NULL
                    """
                ).fetchone()[0]
            )

    # -------------------- face queries --------------------
    def select_face_rows(
        self,
        *,
        q: Optional[str] = None,
        category_id: Optional[int] = None,
        types: Iterable[str] = (),
        italic: Optional[bool] = None,
        weight_min: Optional[int] = None,
        weight_max: Optional[int] = None,
    ) -> list[FaceWithFile]:
        """Flat face/file filter, in face insertion order."""
        where: list[str] = []
        params: list[object] = []

        needle = (q or "").strip().casefold()
        if needle:
            where.append(
                "(instr(casefold(fc.family), ?) > 0"
                " OR instr(casefold(fc.subfamily), ?) > 0"
                " OR instr(casefold(f.filename), ?) > 0)"
            )
            params.extend([needle, needle, needle])

        if category_id is not None:
            where.append("f.category_id=?")
            params.append(category_id)

        exts = sorted({t.strip().lower().lstrip(".") for t in types if t and t.strip()})
        if exts:
            where.append(f"f.ext IN ({','.join('?' * len(exts))})")
            params.extend(exts)

        if italic is not None:
            where.append("fc.italic=?")
            params.append(1 if italic else 0)

        if weight_min is not None:
            where.append("fc.weight>=?")
            params.append(int(weight_min))
        if weight_max is not None:
            where.append("fc.weight<=?")
            params.append(int(weight_max))

        sql_where = (" WHERE " + " AND ".join(where)) if where else ""
        sql = f"""
            SELECT {_FACE_JOIN_COLS}
            FROM font_faces fc
            JOIN font_files f ON f.id = fc.font_file_id
            {sql_where}
            ORDER BY fc.id ASC
        """
        with self._lock:
            rows = self._conn.execute(sql, tuple(params)).fetchall()
        return [FaceWithFile(face=_face_from_row(r), file=_file_from_row(r, "f_")) for r in rows]

    def faces_for_family(self, family: str) -> list[FaceWithFile]:
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_FACE_JOIN_COLS}
                FROM font_faces fc
                JOIN font_files f ON f.id = fc.font_file_id
                WHERE fc.family=?
                ORDER BY fc.id ASC
                """,
                (family,),
            ).fetchall()
        return [FaceWithFile(face=_face_from_row(r), file=_file_from_row(r, "f_")) for r in rows]

    # -------------------- favorites --------------------
    def toggle_favorite(self, target_type: str, target_id: str) -> bool:
        """Returns True when the target is a favorite after the call."""
        with self._lock, self._conn:
            cur = self._conn.execute(
                "DELETE FROM favorites WHERE target_type=? AND target_id=?",
                (target_type, target_id),
            )
            if cur.rowcount:
                return False
            self._conn.execute(
                "INSERT INTO favorites(target_type, target_id, created_at) VALUES(?,?,?)",
                (target_type, target_id, self._clock()),
            )
            return True

    def list_favorites(self) -> list[Favorite]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, target_type, target_id, created_at FROM favorites"
                " ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [
            Favorite(
                id=r["id"],
                target_type=r["target_type"],
                target_id=r["target_id"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def favorite_targets(self, target_type: str) -> set[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT target_id FROM favorites WHERE target_type=?", (target_type,)
            ).fetchall()
        return {r["target_id"] for r in rows}

    # -------------------- collections --------------------
    def create_collection(
        self, name: str, description: Optional[str] = None, color: Optional[str] = None
    ) -> Collection:
        now = self._clock()
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO collections(name, description, color, created_at, updated_at)
                VALUES(?,?,?,?,?)
                """,
                (name, description, color, now, now),
            )
        return self._require_collection(cur.lastrowid)

    def get_collection(self, collection_id: int) -> Optional[Collection]:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT c.*, COUNT(i.id) AS count
                FROM collections c
                LEFT JOIN collection_items i ON i.collection_id = c.id
                WHERE c.id=?
                GROUP BY c.id
                """,
                (collection_id,),
            ).fetchone()
        return _collection_from_row(row) if row else None

    def _require_collection(self, collection_id: int) -> Collection:
        collection = self.get_collection(collection_id)
        if collection is None:
            raise CatalogError(f"Unknown collection: {collection_id}")
        return collection

    def list_collections(self) -> list[Collection]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT c.*, COUNT(i.id) AS count
                FROM collections c
                LEFT JOIN collection_items i ON i.collection_id = c.id
                GROUP BY c.id
                ORDER BY c.name COLLATE NOCASE ASC, c.id ASC
                """
            ).fetchall()
        return [_collection_from_row(r) for r in rows]

    def update_collection(
        self,
        collection_id: int,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Collection:
        sets: list[str] = []
        params: list[object] = []
        for column, value in (("name", name), ("description", description), ("color", color)):
            if value is not None:
                sets.append(f"{column}=?")
                params.append(value)
        sets.append("updated_at=?")
        params.append(self._clock())
        params.append(collection_id)

        with self._lock, self._conn:
            cur = self._conn.execute(
                f"UPDATE collections SET {', '.join(sets)} WHERE id=?", tuple(params)
            )
        if cur.rowcount == 0:
            raise CatalogError(f"Unknown collection: {collection_id}")
        return self._require_collection(collection_id)

    def delete_collection(self, collection_id: int) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM collections WHERE id=?", (collection_id,))
        return cur.rowcount > 0

    def add_collection_item(
        self, collection_id: int, target_type: str, target_id: str
    ) -> CollectionItem:
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    """
                    INSERT OR IGNORE INTO collection_items(collection_id, target_type, target_id, created_at)
                    VALUES(?,?,?,?)
                    """,
                    (collection_id, target_type, target_id, self._clock()),
                )
                row = self._conn.execute(
                    """
                    SELECT * FROM collection_items
                    WHERE collection_id=? AND target_type=? AND target_id=?
                    """,
                    (collection_id, target_type, target_id),
                ).fetchone()
        except sqlite3.IntegrityError as e:
            raise CatalogError(f"Unknown collection: {collection_id}") from e
        return CollectionItem(
            id=row["id"],
            collection_id=row["collection_id"],
            target_type=row["target_type"],
            target_id=row["target_id"],
            created_at=row["created_at"],
        )

    def remove_collection_item(
        self, collection_id: int, target_type: str, target_id: str
    ) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                DELETE FROM collection_items
                WHERE collection_id=? AND target_type=? AND target_id=?
                """,
                (collection_id, target_type, target_id),
            )
        return cur.rowcount > 0

    def collection_targets(self, collection_id: int, target_type: str) -> set[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT target_id FROM collection_items WHERE collection_id=? AND target_type=?",
                (collection_id, target_type),
            ).fetchall()
        return {r["target_id"] for r in rows}

    def collections_containing(self, target_type: str, target_id: str) -> list[int]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT collection_id FROM collection_items
                WHERE target_type=? AND target_id=?
                ORDER BY collection_id
                """,
                (target_type, target_id),
            ).fetchall()
        return [r["collection_id"] for r in rows]

    def collection_families(
        self, collection_id: int, limit: int = 50, offset: int = 0
    ) -> tuple[list[str], int]:
        with self._lock:
            total = self._conn.execute(
                "SELECT COUNT(1) FROM collection_items WHERE collection_id=?",
                (collection_id,),
            ).fetchone()[0]
            rows = self._conn.execute(
                """
                SELECT target_id FROM collection_items
                WHERE collection_id=?
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (collection_id, int(limit), int(offset)),
            ).fetchall()
        return [r["target_id"] for r in rows], int(total)
