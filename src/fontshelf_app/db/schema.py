from __future__ import annotations

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS categories (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  path TEXT NOT NULL UNIQUE,
  status TEXT NOT NULL DEFAULT 'ok' CHECK (status IN ('ok', 'missing', 'error')),
  last_error TEXT,
  created_at REAL NOT NULL,
  updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS font_files (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
  full_path TEXT NOT NULL UNIQUE,
  rel_path TEXT NOT NULL,
  filename TEXT NOT NULL,
  ext TEXT NOT NULL,
  size_bytes INTEGER NOT NULL,
  mtime_ms INTEGER NOT NULL,
  sha1 TEXT NOT NULL,
  url_key TEXT NOT NULL UNIQUE,
  duplicate_group_key TEXT,
  created_at REAL NOT NULL,
  updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS font_faces (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  font_file_id INTEGER NOT NULL REFERENCES font_files(id) ON DELETE CASCADE,
  family TEXT NOT NULL,
  subfamily TEXT NOT NULL,
  postscript_name TEXT,
  weight INTEGER NOT NULL DEFAULT 400,
  italic INTEGER NOT NULL DEFAULT 0,
  stretch TEXT,
  version TEXT,
  full_name TEXT,
  created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS favorites (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  target_type TEXT NOT NULL,
  target_id TEXT NOT NULL,
  created_at REAL NOT NULL,
  UNIQUE (target_type, target_id)
);

CREATE TABLE IF NOT EXISTS collections (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  description TEXT,
  color TEXT,
  created_at REAL NOT NULL,
  updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS collection_items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  collection_id INTEGER NOT NULL REFERENCES collections(id) ON DELETE CASCADE,
  target_type TEXT NOT NULL,
  target_id TEXT NOT NULL,
  created_at REAL NOT NULL,
  UNIQUE (collection_id, target_type, target_id)
);

CREATE INDEX IF NOT EXISTS idx_files_category ON font_files(category_id);
CREATE INDEX IF NOT EXISTS idx_files_sha1 ON font_files(sha1);
CREATE INDEX IF NOT EXISTS idx_faces_file ON font_faces(font_file_id);
CREATE INDEX IF NOT EXISTS idx_faces_family ON font_faces(family);
CREATE INDEX IF NOT EXISTS idx_items_target ON collection_items(target_type, target_id);
"""
