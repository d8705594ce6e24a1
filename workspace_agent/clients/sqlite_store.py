"""SQLite-backed substitute for DynamoDB-style document storage."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Optional


class SQLiteStore:
    """Simple document store using a normalized table keyed by (pk, sk).

    One connection is shared by every caller; access is serialized with a
    lock because calls arrive from ``asyncio.to_thread`` workers.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None

    def open(self) -> "SQLiteStore":
        if self._db_path != ":memory:":
            path = Path(self._db_path)
            if path.parent and not path.parent.exists():
                path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        self._conn = conn
        self._ensure_schema()
        return self

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("SQLite store is not open")
        return self._conn

    def _ensure_schema(self) -> None:
        with self._lock, self._connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_records (
                    pk TEXT NOT NULL,
                    sk TEXT NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (pk, sk)
                )
                """
            )

    @staticmethod
    def _keys(item: Dict[str, Any]) -> tuple[str, str]:
        pk = item.get("pk")
        sk = item.get("sk")
        if not pk or not sk:
            raise ValueError("Item must include 'pk' and 'sk' keys")
        return pk, sk

    def put_item(self, item: Dict[str, Any]) -> None:
        pk, sk = self._keys(item)
        data_json = json.dumps(item)
        with self._lock, self._connection() as conn:
            conn.execute(
                """
                INSERT INTO kv_records (pk, sk, data)
                VALUES (?, ?, ?)
                ON CONFLICT(pk, sk) DO UPDATE SET data = excluded.data
                """,
                (pk, sk, data_json),
            )

    def put_item_if_absent(self, item: Dict[str, Any]) -> bool:
        """Insert ``item`` unless its key exists. Returns whether it was written."""
        pk, sk = self._keys(item)
        data_json = json.dumps(item)
        with self._lock, self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO kv_records (pk, sk, data)
                VALUES (?, ?, ?)
                ON CONFLICT(pk, sk) DO NOTHING
                """,
                (pk, sk, data_json),
            )
            return cursor.rowcount == 1

    def get_item(
        self, *, partition_key: str, sort_key: str
    ) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._connection().execute(
                "SELECT data FROM kv_records WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["data"])

    def delete_item(self, *, partition_key: str, sort_key: str) -> None:
        with self._lock, self._connection() as conn:
            conn.execute(
                "DELETE FROM kv_records WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            )

    def ping(self) -> None:
        with self._lock:
            self._connection().execute("SELECT 1").fetchone()

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


__all__ = ["SQLiteStore"]
