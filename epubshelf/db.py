from __future__ import annotations

import datetime as dt
import json
import sqlite3
from pathlib import Path
from typing import Optional

from .env import project_root, read_env_path
from .errors import ProgressStoreError
from .models import ReadingProgress

DB_FILENAME = "epubshelf.db"


def db_path(root: Optional[Path] = None) -> Path:
    if root is not None:
        return Path(root) / "data" / DB_FILENAME
    return read_env_path("EPUBSHELF_DB_PATH", project_root() / "data" / DB_FILENAME)


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def connect(path: Optional[Path] = None) -> sqlite3.Connection:
    target = Path(path) if path is not None else db_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(target)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(path: Optional[Path] = None) -> None:
    conn = connect(path)
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS book_records (
                content_hash TEXT PRIMARY KEY,
                storage_path TEXT NOT NULL,
                title TEXT NOT NULL,
                filename TEXT,
                filesize INTEGER,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS reading_progress (
                user_id TEXT NOT NULL,
                book_id TEXT NOT NULL,
                percent_complete REAL NOT NULL,
                last_location TEXT NOT NULL DEFAULT '{}',
                updated_at TEXT NOT NULL,
                PRIMARY KEY (user_id, book_id)
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_reading_progress_updated ON reading_progress(updated_at DESC)"
        )
    conn.close()


def upsert_book_record(
    content_hash: str,
    storage_path: str,
    title: str,
    filename: Optional[str],
    filesize: Optional[int],
    path: Optional[Path] = None,
) -> None:
    init_db(path)
    conn = connect(path)
    with conn:
        conn.execute(
            """
            INSERT INTO book_records(content_hash, storage_path, title, filename, filesize, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(content_hash) DO UPDATE SET
                storage_path=excluded.storage_path,
                title=excluded.title,
                filename=excluded.filename,
                filesize=excluded.filesize,
                updated_at=excluded.updated_at
            """,
            (content_hash, storage_path, title, filename, filesize, _now_iso()),
        )
    conn.close()


def get_book_record(content_hash: str, path: Optional[Path] = None) -> Optional[dict]:
    init_db(path)
    conn = connect(path)
    row = conn.execute(
        "SELECT content_hash, storage_path, title, filename, filesize, updated_at FROM book_records WHERE content_hash = ?",
        (content_hash,),
    ).fetchone()
    conn.close()
    return dict(row) if row else None


def upsert_reading_progress(
    user_id: str,
    book_id: str,
    percent_complete: float,
    last_location: dict,
    path: Optional[Path] = None,
) -> None:
    conn = connect(path)
    with conn:
        conn.execute(
            """
            INSERT INTO reading_progress(user_id, book_id, percent_complete, last_location, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, book_id) DO UPDATE SET
                percent_complete=excluded.percent_complete,
                last_location=excluded.last_location,
                updated_at=excluded.updated_at
            """,
            (user_id, book_id, percent_complete, json.dumps(last_location, sort_keys=True), _now_iso()),
        )
    conn.close()


def get_reading_progress(user_id: str, book_id: str, path: Optional[Path] = None) -> Optional[dict]:
    conn = connect(path)
    row = conn.execute(
        """
        SELECT user_id, book_id, percent_complete, last_location, updated_at
        FROM reading_progress WHERE user_id = ? AND book_id = ?
        """,
        (user_id, book_id),
    ).fetchone()
    conn.close()
    if not row:
        return None
    data = dict(row)
    try:
        data["last_location"] = json.loads(data["last_location"] or "{}")
    except json.JSONDecodeError:
        data["last_location"] = {}
    return data


class SqliteProgressStore:
    """Reading progress for one user, keyed by book id."""

    def __init__(self, user_id: str, path: Optional[Path] = None) -> None:
        self.user_id = user_id
        self.path = path
        init_db(path)

    def load_progress(self, book_id: str) -> Optional[ReadingProgress]:
        try:
            row = get_reading_progress(self.user_id, book_id, self.path)
        except sqlite3.Error as exc:
            raise ProgressStoreError(f"Failed to load progress: {exc}") from exc
        if row is None:
            return None
        location = row["last_location"] if isinstance(row["last_location"], dict) else {}
        return ReadingProgress(percent_complete=float(row["percent_complete"]), last_location=location)

    def save_progress(self, book_id: str, last_location: dict, percent: Optional[float] = None) -> None:
        if percent is None:
            current = self.load_progress(book_id)
            percent = current.percent_complete if current else 0.0
        try:
            upsert_reading_progress(self.user_id, book_id, percent, last_location, self.path)
        except sqlite3.Error as exc:
            raise ProgressStoreError(f"Failed to save progress: {exc}") from exc
