from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

SCHEMA_VERSION = 2


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def initialize_sqlite(conn: sqlite3.Connection) -> None:
    """
    Configure the connection and bring the schema up to SCHEMA_VERSION.

    Safe to call on every startup.
    """
    _configure_connection(conn)
    _apply_migrations(conn)


def _configure_connection(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA busy_timeout = 5000")

    # In-memory databases reject WAL.
    try:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
    except sqlite3.DatabaseError:
        pass


_MIGRATIONS: dict[int, str] = {
    1: """
CREATE TABLE IF NOT EXISTS profiles (
  id TEXT PRIMARY KEY,
  handle TEXT NOT NULL,
  platform TEXT NOT NULL,
  display_name TEXT,
  bio TEXT NOT NULL DEFAULT '',
  followers_count INTEGER,
  avatar_url TEXT,
  verified INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  last_updated TEXT NOT NULL,
  UNIQUE (handle, platform)
);

CREATE TABLE IF NOT EXISTS posts (
  id TEXT PRIMARY KEY,
  profile_id TEXT NOT NULL,
  platform TEXT NOT NULL,
  platform_post_id TEXT NOT NULL,
  embed_url TEXT NOT NULL,
  caption TEXT NOT NULL DEFAULT '',
  transcript TEXT,
  metrics_json TEXT NOT NULL DEFAULT '{}',
  date_posted TEXT,
  thumbnail TEXT,
  is_video INTEGER NOT NULL DEFAULT 0,
  is_carousel INTEGER NOT NULL DEFAULT 0,
  carousel_media_json TEXT NOT NULL DEFAULT '[]',
  video_url TEXT,
  display_url TEXT,
  shortcode TEXT,
  width INTEGER,
  height INTEGER,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  FOREIGN KEY (profile_id) REFERENCES profiles(id),
  UNIQUE (platform, platform_post_id)
);

CREATE INDEX IF NOT EXISTS idx_posts_profile_id
  ON posts(profile_id);

CREATE TABLE IF NOT EXISTS board_posts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  board_id TEXT NOT NULL,
  post_id TEXT NOT NULL,
  added_at TEXT NOT NULL,
  FOREIGN KEY (post_id) REFERENCES posts(id) ON DELETE CASCADE,
  UNIQUE (board_id, post_id)
);

CREATE INDEX IF NOT EXISTS idx_board_posts_board_id
  ON board_posts(board_id);
""".strip(),
    2: """
ALTER TABLE posts ADD COLUMN original_url TEXT;
""".strip(),
}


def _apply_migrations(conn: sqlite3.Connection) -> None:
    with conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)"
        )

    applied = {int(r[0]) for r in conn.execute("SELECT version FROM schema_migrations").fetchall()}

    for version in range(1, SCHEMA_VERSION + 1):
        if version in applied:
            continue

        script = _MIGRATIONS.get(version)
        if not script:
            raise RuntimeError(f"Missing migration script for version={version}")

        with conn:
            conn.executescript(script)
            conn.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                (version, _utc_now_iso()),
            )
