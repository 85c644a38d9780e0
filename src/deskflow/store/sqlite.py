from __future__ import annotations

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from uuid import uuid4

from deskflow.store.base import (
    NotFoundError,
    Record,
    SnapshotHub,
    SnapshotListener,
    StoreError,
    Subscription,
    normalize_timestamp,
)

SERVER_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

DDL = (
    "CREATE TABLE IF NOT EXISTS documents ("
    "collection TEXT NOT NULL, "
    "doc_id TEXT NOT NULL, "
    "body TEXT NOT NULL, "
    "created_at TEXT NOT NULL, "
    "updated_at TEXT NOT NULL, "
    "PRIMARY KEY (collection, doc_id))"
)
INDEX_DDL = "CREATE INDEX IF NOT EXISTS idx_documents_collection_created ON documents (collection, created_at)"


class SqliteDocumentStore:
    """Document collections kept in a single SQLite table.

    Timestamps are taken from SQLite's clock inside the write statement, so
    every process sharing the file agrees on ordering. Other processes' writes
    show up through polling when ``poll_interval`` is set.
    """

    def __init__(self, db_path: Path, poll_interval: float | None = None) -> None:
        self.db_path = Path(db_path)
        self._hub = SnapshotHub(self.snapshot, poll_interval=poll_interval)
        self._ensure_schema()

    @contextmanager
    def connect(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(f"SQLite error: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def create(self, collection: str, fields: Record) -> str:
        doc_id = await asyncio.to_thread(self._create, collection, dict(fields))
        await self._hub.refresh_quietly(collection)
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Record) -> None:
        await asyncio.to_thread(self._update, collection, doc_id, dict(fields))
        await self._hub.refresh_quietly(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        await asyncio.to_thread(self._delete, collection, doc_id)
        await self._hub.refresh_quietly(collection)

    async def snapshot(self, collection: str) -> list[Record]:
        return await asyncio.to_thread(self._snapshot, collection)

    async def subscribe(self, collection: str, on_change: SnapshotListener) -> Subscription:
        return await self._hub.subscribe(collection, on_change)

    async def close(self) -> None:
        await self._hub.close()

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            conn.execute(DDL)
            conn.execute(INDEX_DDL)

    def _create(self, collection: str, fields: Record) -> str:
        doc_id = str(uuid4())
        body = _dump_body(fields)
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO documents (collection, doc_id, body, created_at, updated_at) "
                f"VALUES (?, ?, ?, {SERVER_NOW}, {SERVER_NOW})",
                (collection, doc_id, body),
            )
        return doc_id

    def _update(self, collection: str, doc_id: str, fields: Record) -> None:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"{collection}/{doc_id} not found.", status_code=404)
            merged = {**json.loads(row["body"]), **fields}
            conn.execute(
                f"UPDATE documents SET body = ?, updated_at = MAX(updated_at, {SERVER_NOW}) "
                "WHERE collection = ? AND doc_id = ?",
                (_dump_body(merged), collection, doc_id),
            )

    def _delete(self, collection: str, doc_id: str) -> None:
        with self.connect() as conn:
            cur = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"{collection}/{doc_id} not found.", status_code=404)

    def _snapshot(self, collection: str) -> list[Record]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT doc_id, body, created_at, updated_at FROM documents "
                "WHERE collection = ? ORDER BY created_at DESC, rowid DESC",
                (collection,),
            ).fetchall()
        return [_row_to_record(row) for row in rows]


def _dump_body(fields: Record) -> str:
    payload = {key: value for key, value in fields.items() if key not in {"id", "created_at", "updated_at"}}
    return json.dumps(payload, default=str)


def _row_to_record(row: sqlite3.Row) -> Record:
    record: dict[str, Any] = json.loads(row["body"])
    record["id"] = row["doc_id"]
    record["created_at"] = normalize_timestamp(row["created_at"])
    record["updated_at"] = normalize_timestamp(row["updated_at"])
    return record
