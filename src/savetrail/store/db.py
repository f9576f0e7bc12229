"""
SQLite ledger of change records.

WAL mode, transaction helper, store-level write lock. Holds no rollback
semantics beyond the mechanical coverage bookkeeping.
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from ..errors import StorageUnavailableError
from .models import EDIT, OPERATION_TYPES, ChangeRecord, HistoryStats
from .schema import INIT_META_SQL, SCHEMA_SQL, SCHEMA_VERSION

logger = logging.getLogger(__name__)

DB_DIRNAME = ".savetrail"
DB_FILENAME = "changes.db"


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@contextmanager
def _storage_errors(action: str):
    try:
        yield
    except (sqlite3.Error, OSError) as e:
        raise StorageUnavailableError(f"{action} failed: {e}") from e


class ChangeStore:
    """Append-only change ledger for one project."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        with _storage_errors("open store"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._init_schema()

    @classmethod
    def for_project(cls, project_root: Path) -> "ChangeStore":
        return cls(Path(project_root) / DB_DIRNAME / DB_FILENAME)

    def _init_schema(self):
        self._conn.executescript(SCHEMA_SQL)
        self._conn.execute(INIT_META_SQL, (str(SCHEMA_VERSION),))

    @contextmanager
    def transaction(self):
        """Group writes atomically. Nested blocks join the outer transaction."""
        with self._lock:
            if self._conn.in_transaction:
                yield
                return
            with _storage_errors("begin transaction"):
                self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield
            except Exception:
                with _storage_errors("rollback transaction"):
                    self._conn.execute("ROLLBACK")
                raise
            with _storage_errors("commit transaction"):
                self._conn.execute("COMMIT")

    def _now(self) -> str:
        return datetime.now().isoformat()

    def close(self):
        with self._lock:
            self._conn.close()

    # ── Writes ──

    def insert(
        self,
        file_path: str,
        old_content: str,
        new_content: str,
        diff: str,
        lines_added: int,
        lines_removed: int,
        batch_id: Optional[str] = None,
        operation_type: str = EDIT,
        rollback_to_id: Optional[int] = None,
    ) -> int:
        if operation_type not in OPERATION_TYPES:
            raise ValueError(f"Unknown operation type: {operation_type}")
        with self._lock, _storage_errors("insert change"):
            cur = self._conn.execute(
                """INSERT INTO changes
                   (file_path, old_content, new_content, diff, content_hash,
                    lines_added, lines_removed, batch_id, operation_type,
                    rollback_to_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (file_path, old_content, new_content, diff, content_hash(new_content),
                 lines_added, lines_removed, batch_id, operation_type,
                 rollback_to_id, self._now()),
            )
            return cur.lastrowid

    def mark_covered_by_rollback(self, file_path: str, rollback_id: int, rollback_to_id: int) -> int:
        """Cover the open interval (rollback_to_id, rollback_id) of one file."""
        with self._lock, _storage_errors("mark coverage"):
            cur = self._conn.execute(
                """UPDATE changes SET covered_by_rollback_id = ?
                   WHERE file_path = ? AND id > ? AND id < ?
                     AND covered_by_rollback_id IS NULL""",
                (rollback_id, file_path, rollback_to_id, rollback_id),
            )
            return cur.rowcount

    def clear_covered_by_rollback(self, rollback_id: int) -> int:
        with self._lock, _storage_errors("clear coverage"):
            cur = self._conn.execute(
                "UPDATE changes SET covered_by_rollback_id = NULL WHERE covered_by_rollback_id = ?",
                (rollback_id,),
            )
            return cur.rowcount

    def delete_by_id(self, change_id: int) -> bool:
        with self._lock, _storage_errors("delete change"):
            cur = self._conn.execute("DELETE FROM changes WHERE id = ?", (change_id,))
            return cur.rowcount > 0

    # ── Retention ──

    def prune_by_age(self, max_age_days: int) -> int:
        """Delete records created more than max_age_days ago."""
        cutoff = (datetime.now() - timedelta(days=max_age_days)).isoformat()
        with self.transaction(), _storage_errors("prune by age"):
            cur = self._conn.execute("DELETE FROM changes WHERE created_at < ?", (cutoff,))
            deleted = cur.rowcount
            self._clear_dangling_coverage()
        if deleted:
            logger.info("Pruned %d records older than %d days", deleted, max_age_days)
        return deleted

    def prune_by_size(self, max_records: int) -> int:
        """Keep only the newest max_records rows across the whole store."""
        with self.transaction(), _storage_errors("prune by size"):
            cur = self._conn.execute(
                """DELETE FROM changes WHERE id NOT IN (
                       SELECT id FROM changes ORDER BY id DESC LIMIT ?
                   )""",
                (max(max_records, 0),),
            )
            deleted = cur.rowcount
            self._clear_dangling_coverage()
        if deleted:
            logger.info("Pruned %d records beyond the newest %d", deleted, max_records)
        return deleted

    def _clear_dangling_coverage(self) -> None:
        self._conn.execute(
            """UPDATE changes SET covered_by_rollback_id = NULL
               WHERE covered_by_rollback_id IS NOT NULL
                 AND covered_by_rollback_id NOT IN (SELECT id FROM changes)"""
        )

    def clear_all(self) -> int:
        with self._lock, _storage_errors("clear history"):
            cur = self._conn.execute("DELETE FROM changes")
            deleted = cur.rowcount
        logger.info("Cleared %d history records", deleted)
        return deleted

    # ── Reads ──

    def get_by_id(self, change_id: int) -> Optional[ChangeRecord]:
        with self._lock, _storage_errors("read change"):
            row = self._conn.execute(
                "SELECT * FROM changes WHERE id = ?", (change_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_by_file(self, file_path: str, limit: Optional[int] = 50) -> list[ChangeRecord]:
        """History of one file, most recent first. limit=None returns all of it."""
        sql = "SELECT * FROM changes WHERE file_path = ? ORDER BY id DESC"
        params: list = [file_path]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._lock, _storage_errors("read file history"):
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_record(r) for r in rows]

    def get_recent(self, limit: int = 100) -> list[ChangeRecord]:
        with self._lock, _storage_errors("read recent changes"):
            rows = self._conn.execute(
                "SELECT * FROM changes ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def get_by_batch(self, batch_id: str) -> list[ChangeRecord]:
        with self._lock, _storage_errors("read batch"):
            rows = self._conn.execute(
                "SELECT * FROM changes WHERE batch_id = ? ORDER BY id DESC", (batch_id,)
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def get_latest_for_file(self, file_path: str) -> Optional[ChangeRecord]:
        records = self.get_by_file(file_path, limit=1)
        return records[0] if records else None

    def list_files(self) -> list[str]:
        with self._lock, _storage_errors("list files"):
            rows = self._conn.execute(
                "SELECT DISTINCT file_path FROM changes ORDER BY file_path"
            ).fetchall()
        return [r["file_path"] for r in rows]

    def _row_to_record(self, row) -> ChangeRecord:
        return ChangeRecord(
            id=row["id"],
            file_path=row["file_path"],
            old_content=row["old_content"],
            new_content=row["new_content"],
            diff=row["diff"],
            content_hash=row["content_hash"],
            lines_added=row["lines_added"],
            lines_removed=row["lines_removed"],
            batch_id=row["batch_id"],
            operation_type=row["operation_type"],
            rollback_to_id=row["rollback_to_id"],
            covered_by_rollback_id=row["covered_by_rollback_id"],
            created_at=row["created_at"],
        )

    # ── Stats ──

    def get_stats(self) -> HistoryStats:
        with self._lock, _storage_errors("read stats"):
            row = self._conn.execute(
                """SELECT COUNT(*) AS total,
                          SUM(CASE WHEN operation_type = 'edit' THEN 1 ELSE 0 END) AS edits,
                          SUM(CASE WHEN operation_type = 'rollback' THEN 1 ELSE 0 END) AS rollbacks,
                          SUM(CASE WHEN covered_by_rollback_id IS NOT NULL THEN 1 ELSE 0 END) AS covered,
                          COUNT(DISTINCT file_path) AS files,
                          MIN(created_at) AS oldest,
                          MAX(created_at) AS newest
                   FROM changes"""
            ).fetchone()
            db_size = self.db_path.stat().st_size if self.db_path.exists() else 0
        return HistoryStats(
            total_records=row["total"],
            edit_records=row["edits"] or 0,
            rollback_records=row["rollbacks"] or 0,
            covered_records=row["covered"] or 0,
            tracked_files=row["files"],
            oldest_record=row["oldest"],
            newest_record=row["newest"],
            db_size=db_size,
        )
