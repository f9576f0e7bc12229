"""
Typed failures raised by the history core and its collaborators.

Every error carries a stable ``kind`` string so callers (CLI, MCP server,
batch results) can report it without matching on classes.
"""

from __future__ import annotations

from typing import Optional


class SavetrailError(Exception):
    """Base class for all savetrail failures."""

    kind = "error"

    def __init__(self, message: str, change_id: Optional[int] = None):
        super().__init__(message)
        self.change_id = change_id

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": str(self), "change_id": self.change_id}


class NotFoundError(SavetrailError):
    """Referenced change record does not exist."""

    kind = "not_found"


class NotRestorableError(SavetrailError):
    """Restore attempted on a record that is not the latest rollback of its file."""

    kind = "not_restorable"


class StaleTargetError(SavetrailError):
    """Rollback target is no longer a valid destination at commit time."""

    kind = "stale_target"


class StorageUnavailableError(SavetrailError):
    """The underlying SQLite store failed."""

    kind = "storage_unavailable"


class FileAccessError(SavetrailError):
    """Reading or writing a tracked file on disk failed."""

    kind = "file_access"


class FileMismatchError(SavetrailError):
    """Two records that must belong to one file belong to different files."""

    kind = "file_mismatch"
