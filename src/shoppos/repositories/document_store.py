from __future__ import annotations

import json
import logging
import shutil
import sqlite3
import uuid
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from shoppos.domain.errors import NotFoundError, PermissionDeniedError, PersistenceError, ValidationError
from shoppos.repositories.contracts import Document, DocumentRow, Listener, Unsubscribe

log = logging.getLogger(__name__)

_PERMISSION_MARKERS = ("readonly", "read-only", "permission", "not authorized", "access")


def _check_values(value, path: str = "") -> None:
    if value is None:
        raise ValidationError(f"Field '{path or '<root>'}' has no value; omit it instead of writing None.")
    if isinstance(value, dict):
        for k, v in value.items():
            _check_values(v, f"{path}.{k}" if path else str(k))
    elif isinstance(value, (list, tuple)):
        for i, v in enumerate(value):
            _check_values(v, f"{path}[{i}]")


def _matches(doc: Document, where: Optional[dict]) -> bool:
    if not where:
        return True
    return all(doc.get(k) == v for k, v in where.items())


class SqliteDocumentStore:
    def __init__(self, db_path: Path | str, timeout: float = 10.0):
        self.db_path = str(db_path)
        self.timeout = timeout
        self._listeners: dict[str, list[tuple[Listener, Optional[dict]]]] = defaultdict(list)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _guard(self, op: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            text = str(exc).lower()
            log.error("store_failed op=%s error=%s", op, exc)
            if any(m in text for m in _PERMISSION_MARKERS):
                raise PermissionDeniedError(f"Permission denied while trying to {op}: {exc}") from exc
            raise PersistenceError(f"Could not {op}: {exc}") from exc

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_documents),
                (2, self._migration_v2_sequences),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_documents(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS documents (
            collection TEXT NOT NULL,
            id TEXT NOT NULL,
            body TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (collection, id)
        )
        """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection, created_at)")

    def _migration_v2_sequences(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS sequences (
            name TEXT PRIMARY KEY,
            value INTEGER NOT NULL DEFAULT 0 CHECK(value >= 0)
        )
        """
        )

    # ---------- Change notification ----------
    def subscribe(self, collection: str, listener: Listener, where: Optional[dict] = None) -> Unsubscribe:
        entry = (listener, where)
        self._listeners[collection].append(entry)
        listener(self.list(collection, where))

        def unsubscribe() -> None:
            if entry in self._listeners[collection]:
                self._listeners[collection].remove(entry)

        return unsubscribe

    def _notify(self, collection: str) -> None:
        subscribers = list(self._listeners.get(collection, ()))
        if not subscribers:
            return
        rows = self.list(collection)
        for listener, where in subscribers:
            try:
                listener([(doc_id, doc) for doc_id, doc in rows if _matches(doc, where)])
            except Exception:
                log.exception("listener_failed collection=%s", collection)

    # ---------- Documents ----------
    def create(self, collection: str, doc: Document, doc_id: Optional[str] = None) -> str:
        _check_values(doc)
        new_id = doc_id or uuid.uuid4().hex
        now = datetime.now().isoformat(timespec="microseconds")
        conn = self._conn()
        try:
            with self._guard(f"create {collection} document"):
                cur = conn.cursor()
                cur.execute(
                    """
                    INSERT INTO documents (collection, id, body, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (collection, new_id, json.dumps(doc, ensure_ascii=False), now, now),
                )
                conn.commit()
        finally:
            conn.close()
        self._notify(collection)
        return new_id

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        conn = self._conn()
        try:
            with self._guard(f"read {collection} document"):
                cur = conn.cursor()
                cur.execute("SELECT body FROM documents WHERE collection=? AND id=?", (collection, str(doc_id)))
                row = cur.fetchone()
        finally:
            conn.close()
        return json.loads(row[0]) if row else None

    def list(self, collection: str, where: Optional[dict] = None) -> list[DocumentRow]:
        conn = self._conn()
        try:
            with self._guard(f"list {collection}"):
                cur = conn.cursor()
                cur.execute(
                    "SELECT id, body FROM documents WHERE collection=? ORDER BY created_at, id",
                    (collection,),
                )
                rows = cur.fetchall()
        finally:
            conn.close()
        out: list[DocumentRow] = []
        for doc_id, body in rows:
            doc = json.loads(body)
            if _matches(doc, where):
                out.append((str(doc_id), doc))
        return out

    def update(self, collection: str, doc_id: str, partial: Document, unset: Iterable[str] = ()) -> None:
        _check_values(partial)
        self.mutate(collection, doc_id, lambda _doc: partial, unset=unset)

    def mutate(
        self,
        collection: str,
        doc_id: str,
        fn: Callable[[Document], Document],
        unset: Iterable[str] = (),
    ) -> Document:
        """Read-modify-write one document inside a single write transaction.

        `fn` receives the current document and returns the fields to merge;
        keys named in `unset` are removed afterwards. Anything `fn` raises
        rolls the transaction back and propagates.
        """
        unset = tuple(unset)
        conn = self._conn()
        try:
            with self._guard(f"update {collection} document"):
                cur = conn.cursor()
                cur.execute("BEGIN IMMEDIATE")
                cur.execute("SELECT body FROM documents WHERE collection=? AND id=?", (collection, str(doc_id)))
                row = cur.fetchone()
                if not row:
                    conn.rollback()
                    raise NotFoundError(f"{collection} document not found: {doc_id}")
                current = json.loads(row[0])
                try:
                    partial = fn(dict(current))
                    _check_values(partial)
                except Exception:
                    conn.rollback()
                    raise
                merged = {**current, **partial}
                for key in unset:
                    merged.pop(key, None)
                cur.execute(
                    "UPDATE documents SET body=?, updated_at=? WHERE collection=? AND id=?",
                    (
                        json.dumps(merged, ensure_ascii=False),
                        datetime.now().isoformat(timespec="microseconds"),
                        collection,
                        str(doc_id),
                    ),
                )
                conn.commit()
        finally:
            conn.close()
        self._notify(collection)
        return merged

    def delete(self, collection: str, doc_id: str) -> bool:
        conn = self._conn()
        try:
            with self._guard(f"delete {collection} document"):
                cur = conn.cursor()
                cur.execute("DELETE FROM documents WHERE collection=? AND id=?", (collection, str(doc_id)))
                changed = cur.rowcount > 0
                conn.commit()
        finally:
            conn.close()
        if changed:
            self._notify(collection)
        return bool(changed)

    # ---------- Sequences ----------
    def next_sequence(self, name: str) -> int:
        conn = self._conn()
        try:
            with self._guard(f"advance sequence {name}"):
                cur = conn.cursor()
                cur.execute("BEGIN IMMEDIATE")
                cur.execute("INSERT OR IGNORE INTO sequences (name, value) VALUES (?, 0)", (name,))
                cur.execute("UPDATE sequences SET value = value + 1 WHERE name=?", (name,))
                cur.execute("SELECT value FROM sequences WHERE name=?", (name,))
                value = int(cur.fetchone()[0])
                conn.commit()
        finally:
            conn.close()
        return value

    def peek_sequence(self, name: str) -> int:
        conn = self._conn()
        try:
            with self._guard(f"read sequence {name}"):
                cur = conn.cursor()
                cur.execute("SELECT value FROM sequences WHERE name=?", (name,))
                row = cur.fetchone()
        finally:
            conn.close()
        return int(row[0]) if row else 0

    def integrity_check(self) -> str:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("PRAGMA integrity_check")
            row = cur.fetchone()
        finally:
            conn.close()
        return str(row[0]) if row else "unknown"
