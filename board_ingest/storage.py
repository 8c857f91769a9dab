from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from .datastore import BoardPostRecord, PostRecord, ProfileRecord
from .errors import DuplicateAssociation, PersistenceError
from .post import Platform
from .storage_schema import initialize_sqlite

_PROFILE_COLUMNS = (
    "display_name",
    "bio",
    "followers_count",
    "avatar_url",
    "verified",
    "last_updated",
)

_POST_COLUMNS = (
    "embed_url",
    "caption",
    "transcript",
    "metrics_json",
    "date_posted",
    "thumbnail",
    "is_video",
    "is_carousel",
    "carousel_media_json",
    "video_url",
    "display_url",
    "shortcode",
    "width",
    "height",
    "original_url",
    "updated_at",
)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_dumps(value: Any) -> str:
    return json.dumps(
        value,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def _json_loads(raw: str | None, default: Any) -> Any:
    try:
        value = json.loads(raw or "")
    except ValueError:
        return default
    return value if isinstance(value, type(default)) else default


def _require(fields: Mapping[str, Any], *names: str) -> list[str]:
    values: list[str] = []
    for name in names:
        v = str(fields.get(name) or "").strip()
        if not v:
            raise ValueError(f"{name} must be non-empty")
        values.append(v)
    return values


def _is_board_post_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    msg = str(exc)
    return "UNIQUE constraint failed" in msg and "board_posts" in msg


def _profile_from_row(row: sqlite3.Row) -> ProfileRecord:
    return ProfileRecord(
        id=str(row["id"]),
        handle=str(row["handle"]),
        platform=row["platform"],
        display_name=row["display_name"],
        bio=str(row["bio"] or ""),
        followers_count=int(row["followers_count"]) if row["followers_count"] is not None else None,
        avatar_url=row["avatar_url"],
        verified=bool(row["verified"]),
        last_updated=str(row["last_updated"]),
    )


def _post_from_row(row: sqlite3.Row) -> PostRecord:
    metrics = _json_loads(row["metrics_json"], {})
    carousel = _json_loads(row["carousel_media_json"], [])
    return PostRecord(
        id=str(row["id"]),
        profile_id=str(row["profile_id"]),
        platform=row["platform"],
        platform_post_id=str(row["platform_post_id"]),
        embed_url=str(row["embed_url"]),
        caption=str(row["caption"] or ""),
        transcript=row["transcript"],
        metrics={str(k): int(v) for k, v in metrics.items() if isinstance(v, int)},
        date_posted=row["date_posted"],
        thumbnail=row["thumbnail"],
        is_video=bool(row["is_video"]),
        is_carousel=bool(row["is_carousel"]),
        carousel_items=tuple(c for c in carousel if isinstance(c, dict)),
        video_url=row["video_url"],
        display_url=row["display_url"],
        shortcode=row["shortcode"],
        width=row["width"],
        height=row["height"],
        original_url=row["original_url"],
    )


class SQLiteDatastore:
    """
    SQLite-backed datastore for profiles, posts and board memberships.

    Uniqueness of (handle, platform), (platform, platform_post_id) and
    (board_id, post_id) is enforced by the schema. Boards live elsewhere;
    only their ids are stored here.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row

    @classmethod
    def open(cls, path: str | Path) -> "SQLiteDatastore":
        db_path = str(path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(db_path)
        except sqlite3.DatabaseError as e:
            raise PersistenceError(f"Failed to open sqlite database: {db_path}: {e}") from e

        try:
            initialize_sqlite(conn)
        except (sqlite3.DatabaseError, RuntimeError) as e:
            conn.close()
            raise PersistenceError(f"Failed to initialize sqlite schema: {e}") from e

        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteDatastore":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def _fetchone(self, sql: str, params: tuple[Any, ...], *, what: str) -> sqlite3.Row | None:
        try:
            return self._conn.execute(sql, params).fetchone()
        except sqlite3.DatabaseError as e:
            raise PersistenceError(f"Failed to read {what}: {e}") from e

    def _fetchall(self, sql: str, params: tuple[Any, ...], *, what: str) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.DatabaseError as e:
            raise PersistenceError(f"Failed to read {what}: {e}") from e

    # profiles

    def find_profile(self, handle: str, platform: Platform) -> ProfileRecord | None:
        row = self._fetchone(
            "SELECT * FROM profiles WHERE handle = ? AND platform = ?",
            ((handle or "").strip(), platform),
            what="profile",
        )
        return _profile_from_row(row) if row is not None else None

    def upsert_profile(self, fields: Mapping[str, Any]) -> ProfileRecord:
        handle, platform = _require(fields, "handle", "platform")
        now = _utc_now_iso()

        values = {
            "display_name": fields.get("display_name"),
            "bio": fields.get("bio") or "",
            "followers_count": fields.get("followers_count"),
            "avatar_url": fields.get("avatar_url"),
            "verified": 1 if fields.get("verified") else 0,
            "last_updated": fields.get("last_updated") or now,
        }
        updates = ",\n  ".join(f"{c} = excluded.{c}" for c in _PROFILE_COLUMNS)

        try:
            with self._conn:
                self._conn.execute(
                    f"""
                    INSERT INTO profiles(id, handle, platform, {", ".join(_PROFILE_COLUMNS)}, created_at)
                    VALUES (?, ?, ?, {", ".join("?" for _ in _PROFILE_COLUMNS)}, ?)
                    ON CONFLICT(handle, platform) DO UPDATE SET
                      {updates}
                    """.strip(),
                    (uuid.uuid4().hex, handle, platform, *(values[c] for c in _PROFILE_COLUMNS), now),
                )
        except sqlite3.DatabaseError as e:
            raise PersistenceError(f"Failed to upsert profile {platform}/{handle}: {e}") from e

        record = self.find_profile(handle, platform)  # type: ignore[arg-type]
        if record is None:
            raise PersistenceError("Failed to read profile after upsert")
        return record

    # posts

    def find_post(self, platform: Platform, platform_post_id: str) -> PostRecord | None:
        row = self._fetchone(
            "SELECT * FROM posts WHERE platform = ? AND platform_post_id = ?",
            (platform, (platform_post_id or "").strip()),
            what="post",
        )
        return _post_from_row(row) if row is not None else None

    def get_post(self, post_id: str) -> PostRecord | None:
        row = self._fetchone("SELECT * FROM posts WHERE id = ?", ((post_id or "").strip(),), what="post")
        return _post_from_row(row) if row is not None else None

    def upsert_post(self, fields: Mapping[str, Any]) -> PostRecord:
        profile_id, platform, post_key, embed_url = _require(
            fields, "profile_id", "platform", "platform_post_id", "embed_url"
        )
        now = _utc_now_iso()

        values = {
            "embed_url": embed_url,
            "caption": fields.get("caption") or "",
            "transcript": fields.get("transcript"),
            "metrics_json": _json_dumps(dict(fields.get("metrics") or {})),
            "date_posted": fields.get("date_posted"),
            "thumbnail": fields.get("thumbnail"),
            "is_video": 1 if fields.get("is_video") else 0,
            "is_carousel": 1 if fields.get("is_carousel") else 0,
            "carousel_media_json": _json_dumps(list(fields.get("carousel_items") or [])),
            "video_url": fields.get("video_url"),
            "display_url": fields.get("display_url"),
            "shortcode": fields.get("shortcode"),
            "width": fields.get("width"),
            "height": fields.get("height"),
            "original_url": fields.get("original_url"),
            "updated_at": now,
        }
        # The owning profile is fixed at first insert.
        updates = ",\n  ".join(f"{c} = excluded.{c}" for c in _POST_COLUMNS)

        try:
            with self._conn:
                self._conn.execute(
                    f"""
                    INSERT INTO posts(
                      id, profile_id, platform, platform_post_id, {", ".join(_POST_COLUMNS)}, created_at
                    ) VALUES (?, ?, ?, ?, {", ".join("?" for _ in _POST_COLUMNS)}, ?)
                    ON CONFLICT(platform, platform_post_id) DO UPDATE SET
                      {updates}
                    """.strip(),
                    (
                        uuid.uuid4().hex,
                        profile_id,
                        platform,
                        post_key,
                        *(values[c] for c in _POST_COLUMNS),
                        now,
                    ),
                )
        except sqlite3.DatabaseError as e:
            raise PersistenceError(f"Failed to upsert post {platform}/{post_key}: {e}") from e

        record = self.find_post(platform, post_key)  # type: ignore[arg-type]
        if record is None:
            raise PersistenceError("Failed to read post after upsert")
        return record

    def update_post_transcript(self, post_id: str, transcript: str) -> None:
        pid = (post_id or "").strip()
        if not pid:
            raise ValueError("post_id must be non-empty")

        try:
            with self._conn:
                cur = self._conn.execute(
                    "UPDATE posts SET transcript = ?, updated_at = ? WHERE id = ?",
                    (transcript, _utc_now_iso(), pid),
                )
        except sqlite3.DatabaseError as e:
            raise PersistenceError(f"Failed to store transcript for post {pid}: {e}") from e

        if cur.rowcount == 0:
            raise PersistenceError(f"Post {pid} does not exist")

    # board membership

    def find_board_post(self, board_id: str, post_id: str) -> BoardPostRecord | None:
        row = self._fetchone(
            "SELECT board_id, post_id, added_at FROM board_posts WHERE board_id = ? AND post_id = ?",
            ((board_id or "").strip(), (post_id or "").strip()),
            what="board membership",
        )
        if row is None:
            return None
        return BoardPostRecord(
            board_id=str(row["board_id"]),
            post_id=str(row["post_id"]),
            added_at=str(row["added_at"]),
        )

    def insert_board_post(self, board_id: str, post_id: str) -> BoardPostRecord:
        b = (board_id or "").strip()
        p = (post_id or "").strip()
        if not b or not p:
            raise ValueError("board_id and post_id must be non-empty")

        ts = _utc_now_iso()
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO board_posts(board_id, post_id, added_at) VALUES (?, ?, ?)",
                    (b, p, ts),
                )
        except sqlite3.IntegrityError as e:
            if _is_board_post_unique_violation(e):
                raise DuplicateAssociation(b, p) from e
            raise PersistenceError(f"Failed to add post {p} to board {b}: {e}") from e
        except sqlite3.DatabaseError as e:
            raise PersistenceError(f"Failed to add post {p} to board {b}: {e}") from e

        return BoardPostRecord(board_id=b, post_id=p, added_at=ts)

    def posts_in_board(self, board_id: str) -> list[PostRecord]:
        rows = self._fetchall(
            """
            SELECT p.*
            FROM board_posts bp
            JOIN posts p ON p.id = bp.post_id
            WHERE bp.board_id = ?
            ORDER BY bp.id
            """.strip(),
            ((board_id or "").strip(),),
            what="board posts",
        )
        return [_post_from_row(r) for r in rows]

    # counts

    def profile_count(self) -> int:
        row = self._fetchone("SELECT COUNT(1) AS n FROM profiles", (), what="profile count")
        return int(row["n"]) if row is not None else 0

    def post_count(self) -> int:
        row = self._fetchone("SELECT COUNT(1) AS n FROM posts", (), what="post count")
        return int(row["n"]) if row is not None else 0

    def board_post_count(self, board_id: str | None = None) -> int:
        if board_id is None:
            row = self._fetchone("SELECT COUNT(1) AS n FROM board_posts", (), what="board post count")
        else:
            row = self._fetchone(
                "SELECT COUNT(1) AS n FROM board_posts WHERE board_id = ?",
                (board_id.strip(),),
                what="board post count",
            )
        return int(row["n"]) if row is not None else 0
