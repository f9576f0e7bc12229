"""
Domain models for the change history.

Pure dataclasses, no external dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

EDIT = "edit"
ROLLBACK = "rollback"
OPERATION_TYPES = (EDIT, ROLLBACK)


@dataclass
class ChangeRecord:
    """One recorded content transition for one file."""
    id: int = 0
    file_path: str = ""  # workspace-relative, posix separators
    old_content: str = ""
    new_content: str = ""
    diff: str = ""
    content_hash: str = ""  # sha256 of new_content
    lines_added: int = 0
    lines_removed: int = 0
    batch_id: Optional[str] = None  # None for single rollbacks
    operation_type: str = EDIT  # edit, rollback
    rollback_to_id: Optional[int] = None  # rollback records only
    covered_by_rollback_id: Optional[int] = None  # None means active
    created_at: str = ""

    @property
    def is_rollback(self) -> bool:
        return self.operation_type == ROLLBACK

    @property
    def is_covered(self) -> bool:
        return self.covered_by_rollback_id is not None

    def summary(self) -> dict:
        """Record without its content columns, for listings."""
        return {
            "id": self.id,
            "file_path": self.file_path,
            "operation_type": self.operation_type,
            "lines_added": self.lines_added,
            "lines_removed": self.lines_removed,
            "batch_id": self.batch_id,
            "rollback_to_id": self.rollback_to_id,
            "covered_by_rollback_id": self.covered_by_rollback_id,
            "content_hash": self.content_hash,
            "created_at": self.created_at,
        }


@dataclass
class HistoryStats:
    """Summary statistics for the store."""
    total_records: int = 0
    edit_records: int = 0
    rollback_records: int = 0
    covered_records: int = 0
    tracked_files: int = 0
    oldest_record: Optional[str] = None
    newest_record: Optional[str] = None
    db_size: int = 0
