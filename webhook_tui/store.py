"""
Record Store - durable, append-only SQLite table of received webhooks
"""
import json
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Tuple

from .config import DB_FILE, PAGE_SIZE
from .log import Logger, get_logger
from .models import WebhookRecord, format_timestamp, parse_timestamp


class StorageError(RuntimeError):
    """Raised when the database cannot be opened, written or read."""


SCHEMA = """
CREATE TABLE IF NOT EXISTS webhooks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
    method TEXT,
    path TEXT,
    headers TEXT,
    body TEXT,
    body_json TEXT
)
"""


class RecordStore:
    """Webhook persistence.

    One connection is shared by the ingestion threads and the page loaders;
    every statement runs under a lock, so there is a single writer and one
    reader at a time.
    """

    def __init__(self, path: Path = DB_FILE, logger: Optional[Logger] = None):
        self.path = Path(path)
        self.logger = logger or get_logger('store')
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def open(self) -> 'RecordStore':
        """Create the storage directory and schema (idempotent)."""
        try:
            self.path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), check_same_thread=False)
            conn.execute(SCHEMA)
            conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Failed to initialize database at {self.path}: {e}") from e
        self._conn = conn
        self.logger.write(f"database ready at {self.path}")
        return self

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> 'RecordStore':
        return self.open()

    def __exit__(self, *exc):
        self.close()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Database not initialized")
        return self._conn

    def insert(self, record: WebhookRecord) -> int:
        """Persist a record and return the id it was stored under.

        The record's own id is used when it is free. When another row already
        holds it, SQLite assigns the next one instead and that id is returned.
        """
        values = (
            format_timestamp(record.timestamp),
            record.method,
            record.path,
            json.dumps(record.headers),
            record.body,
            json.dumps(record.body_json) if record.has_json else '',
        )
        with self._lock:
            conn = self._connection()
            try:
                try:
                    conn.execute(
                        "INSERT INTO webhooks (id, timestamp, method, path, headers, body, body_json) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (record.id,) + values,
                    )
                    stored_id = record.id
                except sqlite3.IntegrityError:
                    conn.rollback()
                    cursor = conn.execute(
                        "INSERT INTO webhooks (timestamp, method, path, headers, body, body_json) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        values,
                    )
                    stored_id = cursor.lastrowid
                    self.logger.write(f"id {record.id} already taken, webhook stored as #{stored_id}")
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageError(f"Failed to save webhook #{record.id}: {e}") from e
        return stored_id

    def query_page(self, page_index: int, page_size: int = PAGE_SIZE) -> Tuple[List[WebhookRecord], int]:
        """Return (records newest first, total count) for one page."""
        offset = max(0, page_index) * page_size
        with self._lock:
            conn = self._connection()
            try:
                total_count = conn.execute("SELECT COUNT(*) FROM webhooks").fetchone()[0]
                rows = conn.execute(
                    """
                    SELECT id, timestamp, method, path, headers, body, body_json
                    FROM webhooks
                    ORDER BY id DESC
                    LIMIT ? OFFSET ?
                    """,
                    (page_size, offset),
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to load webhooks: {e}") from e

        return [self._row_to_record(row) for row in rows], total_count

    def last_id(self) -> int:
        """Highest stored id, 0 when the table is empty."""
        with self._lock:
            conn = self._connection()
            try:
                value = conn.execute("SELECT MAX(id) FROM webhooks").fetchone()[0]
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read last webhook id: {e}") from e
        return int(value or 0)

    @staticmethod
    def _row_to_record(row) -> WebhookRecord:
        record_id, timestamp, method, path, headers_json, body, body_json = row
        try:
            headers = json.loads(headers_json) if headers_json else {}
        except ValueError:
            headers = {}
        if not isinstance(headers, dict):
            headers = {}

        parsed_body = None
        if body_json:
            try:
                parsed_body = json.loads(body_json)
            except ValueError:
                parsed_body = None

        return WebhookRecord(
            id=record_id,
            timestamp=parse_timestamp(timestamp),
            method=method or '',
            path=path or '',
            headers={str(k): str(v) for k, v in headers.items()},
            body=body or '',
            body_json=parsed_body,
        )
