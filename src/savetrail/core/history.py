"""
History controller: rollback and restore protocols over a ChangeStore.

Stateless apart from the store handle it is given. Rollback is two-phase
(preview, then commit with re-validation); restore undoes the latest
rollback of a file. Neither touches the disk: both return the content the
caller must write.
"""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from ..errors import (
    FileMismatchError, NotFoundError, NotRestorableError, SavetrailError, StaleTargetError,
)
from ..store.db import ChangeStore
from ..store.models import EDIT, ROLLBACK, ChangeRecord
from . import status
from .differ import count_changes, render_diff

logger = logging.getLogger(__name__)


def new_batch_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"batch_{int(time.time() * 1000)}_{suffix}"


@dataclass
class RollbackPreview:
    """What a rollback to target would supersede. Nothing is written yet."""
    target: ChangeRecord
    affected: list[ChangeRecord] = field(default_factory=list)  # id >= target, newest first
    can_rollback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.summary(),
            "affected": [r.summary() for r in self.affected],
            "can_rollback": self.can_rollback,
        }


@dataclass
class RollbackResult:
    file_path: str
    target_id: int
    rollback_id: int
    content: str  # to be written to file_path
    covered_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "target_id": self.target_id,
            "rollback_id": self.rollback_id,
            "covered_count": self.covered_count,
        }


@dataclass
class RestoreResult:
    file_path: str
    rollback_id: int
    content: str  # pre-rollback content, to be written to file_path
    reactivated_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "rollback_id": self.rollback_id,
            "reactivated_count": self.reactivated_count,
        }


@dataclass
class RangeDiff:
    """Difference between the saved states of two records of one file."""
    file_path: str
    from_id: int
    to_id: int
    diff: str
    lines_added: int = 0
    lines_removed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "from_id": self.from_id,
            "to_id": self.to_id,
            "lines_added": self.lines_added,
            "lines_removed": self.lines_removed,
            "diff": self.diff,
        }


@dataclass
class FileRollbackOutcome:
    """Result of one file within a batch rollback."""
    target_id: int
    file_path: Optional[str] = None  # None when the target id was not found
    result: Optional[RollbackResult] = None
    error: Optional[SavetrailError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "file_path": self.file_path,
            "target_id": self.target_id,
            "ok": self.ok,
        }
        if self.result:
            d["rollback_id"] = self.result.rollback_id
        if self.error:
            d["error"] = self.error.to_dict()
        return d


@dataclass
class BatchRollbackResult:
    batch_id: str
    outcomes: list[FileRollbackOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[FileRollbackOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[FileRollbackOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def by_file(self) -> dict[Optional[str], FileRollbackOutcome]:
        return {o.file_path: o for o in self.outcomes}

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class HistoryController:
    """Rollback/restore protocols and annotated queries."""

    def __init__(self, store: ChangeStore):
        self.store = store

    # ── Recording ──

    def record_edit(
        self,
        file_path: str,
        old_content: str,
        new_content: str,
        diff: str = "",
        lines_added: int = 0,
        lines_removed: int = 0,
        batch_id: Optional[str] = None,
    ) -> int:
        """Append an edit record for a save reported by the watcher."""
        change_id = self.store.insert(
            file_path, old_content, new_content, diff,
            lines_added, lines_removed, batch_id, EDIT,
        )
        logger.info("Recorded change #%d for %s", change_id, file_path)
        return change_id

    # ── Queries ──

    def _require(self, change_id: int) -> ChangeRecord:
        record = self.store.get_by_id(change_id)
        if record is None:
            raise NotFoundError(f"Change record #{change_id} not found", change_id)
        return record

    def _full_history(self, file_paths: Iterable[str]) -> list[ChangeRecord]:
        history: list[ChangeRecord] = []
        for path in dict.fromkeys(file_paths):
            history.extend(self.store.get_by_file(path, limit=None))
        return history

    def list_recent(self, limit: int = 100) -> list[status.RecordStatus]:
        records = self.store.get_recent(limit)
        history = self._full_history(r.file_path for r in records)
        return status.annotate(records, history)

    def list_by_file(self, file_path: str, limit: int = 50) -> list[status.RecordStatus]:
        records = self.store.get_by_file(file_path, limit)
        return status.annotate(records, self.store.get_by_file(file_path, limit=None))

    def get_change(self, change_id: int) -> status.RecordStatus:
        record = self._require(change_id)
        history = self.store.get_by_file(record.file_path, limit=None)
        return status.annotate([record], history)[0]

    def range_diff(self, from_id: int, to_id: int) -> RangeDiff:
        """Diff the file as saved by from_id against the file as saved by to_id."""
        start = self._require(from_id)
        end = self._require(to_id)
        if start.file_path != end.file_path:
            raise FileMismatchError(
                f"Change records #{from_id} ({start.file_path}) and #{to_id} "
                f"({end.file_path}) belong to different files",
                to_id,
            )
        diff = render_diff(start.new_content, end.new_content, start.file_path)
        added, removed = count_changes(diff)
        return RangeDiff(
            file_path=start.file_path,
            from_id=from_id,
            to_id=to_id,
            diff=diff,
            lines_added=added,
            lines_removed=removed,
        )

    # ── Rollback ──

    def preview_rollback(self, change_id: int) -> RollbackPreview:
        target = self._require(change_id)
        history = self.store.get_by_file(target.file_path, limit=None)
        return RollbackPreview(
            target=target,
            affected=[r for r in history if r.id >= target.id],
            can_rollback=status.can_rollback_to(target, history),
        )

    def commit_rollback(
        self,
        change_id: int,
        current_content: str,
        batch_id: Optional[str] = None,
    ) -> RollbackResult:
        """Roll a file back to the state right after change_id was saved.

        current_content is what is on disk now; it becomes the rollback
        record's old_content so a later restore can bring it back.
        """
        with self.store.transaction():
            target = self._require(change_id)
            history = self.store.get_by_file(target.file_path, limit=None)
            if not status.can_rollback_to(target, history):
                raise StaleTargetError(
                    f"Change record #{change_id} is no longer a valid rollback target",
                    change_id,
                )

            diff = render_diff(current_content, target.new_content, target.file_path)
            rollback_id = self.store.insert(
                target.file_path, current_content, target.new_content, diff,
                0, 0, batch_id, ROLLBACK, target.id,
            )
            covered = self.store.mark_covered_by_rollback(target.file_path, rollback_id, target.id)

        logger.info(
            "Created rollback record #%d for %s, marked %d records as covered",
            rollback_id, target.file_path, covered,
        )
        return RollbackResult(
            file_path=target.file_path,
            target_id=target.id,
            rollback_id=rollback_id,
            content=target.new_content,
            covered_count=covered,
        )

    def group_batch_targets(
        self, change_ids: Iterable[int],
    ) -> tuple[dict[str, ChangeRecord], list[FileRollbackOutcome]]:
        """Pick the oldest requested record per file.

        Returns the targets keyed by file plus outcomes for ids that could not
        be loaded.
        """
        targets: dict[str, ChangeRecord] = {}
        missing: list[FileRollbackOutcome] = []
        for change_id in dict.fromkeys(change_ids):
            try:
                record = self._require(change_id)
            except SavetrailError as e:
                missing.append(FileRollbackOutcome(target_id=change_id, error=e))
                continue
            current = targets.get(record.file_path)
            if current is None or record.id < current.id:
                targets[record.file_path] = record
        return targets, missing

    def batch_rollback(
        self,
        change_ids: Iterable[int],
        current_content_by_file: Mapping[str, str],
        batch_id: Optional[str] = None,
    ) -> BatchRollbackResult:
        """Roll back several files in one user action.

        One failing file does not abort the others. Files absent from
        current_content_by_file are treated as empty.
        """
        targets, missing = self.group_batch_targets(change_ids)
        return self.commit_batch(targets, current_content_by_file, batch_id, outcomes=missing)

    def commit_batch(
        self,
        targets: Mapping[str, ChangeRecord],
        current_content_by_file: Mapping[str, str],
        batch_id: Optional[str] = None,
        outcomes: Iterable[FileRollbackOutcome] = (),
    ) -> BatchRollbackResult:
        """Commit one rollback per file under a shared batch id.

        outcomes seeds the result with failures the caller already knows about.
        """
        batch_id = batch_id or new_batch_id()
        result = BatchRollbackResult(batch_id=batch_id, outcomes=list(outcomes))

        for file_path, target in targets.items():
            outcome = FileRollbackOutcome(target_id=target.id, file_path=file_path)
            try:
                outcome.result = self.commit_rollback(
                    target.id, current_content_by_file.get(file_path, ""), batch_id=batch_id,
                )
            except SavetrailError as e:
                logger.warning("Rollback of %s to #%d failed: %s", file_path, target.id, e)
                outcome.error = e
            result.outcomes.append(outcome)

        logger.info(
            "Batch rollback %s: %d succeeded, %d failed",
            batch_id, len(result.succeeded), len(result.failed),
        )
        return result

    # ── Restore ──

    def restore(self, change_id: int) -> RestoreResult:
        """Undo the latest rollback of a file, returning the pre-rollback content."""
        with self.store.transaction():
            record = self._require(change_id)
            history = self.store.get_by_file(record.file_path, limit=None)
            if not status.can_restore(record, history):
                reason = "not a rollback" if not record.is_rollback else "not the latest record of its file"
                raise NotRestorableError(f"Change record #{change_id} is {reason}", change_id)

            reactivated = self.store.clear_covered_by_rollback(record.id)
            self.store.delete_by_id(record.id)

        logger.info("Restored %s to its state before rollback #%d", record.file_path, record.id)
        return RestoreResult(
            file_path=record.file_path,
            rollback_id=record.id,
            content=record.old_content,
            reactivated_count=reactivated,
        )
