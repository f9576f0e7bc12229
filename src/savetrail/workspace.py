"""
Workspace: one project's history wired together.

Owns the store handle, controller, suppression registry and recorder for a
project root, and performs the disk side of rollback and restore: read the
current file, run the protocol, write the returned content under a
suppression token.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from .config import ProjectConfig
from .core.history import (
    BatchRollbackResult, FileRollbackOutcome, HistoryController, RestoreResult,
    RollbackPreview, RollbackResult,
)
from .errors import FileAccessError
from .store.db import DB_DIRNAME, ChangeStore
from .store.models import ChangeRecord
from .watch.recorder import BatchWindow, ChangeRecorder
from .watch.suppression import SuppressionRegistry
from .watch.watcher import FileWatcher

logger = logging.getLogger(__name__)

GITIGNORE_ENTRY = f"{DB_DIRNAME}/"


class Workspace:
    """History of one project root."""

    def __init__(
        self,
        project_root: Path | str,
        config: Optional[ProjectConfig] = None,
        store: Optional[ChangeStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.project_root = Path(project_root).resolve()
        self.config = config or ProjectConfig.load(self.project_root)
        self.store = store or ChangeStore.for_project(self.project_root)
        self.controller = HistoryController(self.store)
        self.suppressions = SuppressionRegistry(clock=clock)
        self.recorder = ChangeRecorder(
            self.controller,
            self.suppressions,
            BatchWindow(self.config.batch_timeout, clock=clock),
        )
        self._clock = clock
        self.watcher: Optional[FileWatcher] = None

    def close(self):
        self.store.close()

    def create_watcher(self) -> FileWatcher:
        self.watcher = FileWatcher(
            self.project_root,
            self.recorder,
            ignore=self.config.ignore,
            debounce_delay=self.config.debounce_delay,
            clock=self._clock,
        )
        return self.watcher

    # ── Disk access ──

    def resolve(self, file_path: str) -> Path:
        path = (self.project_root / file_path).resolve()
        try:
            path.relative_to(self.project_root)
        except ValueError:
            raise FileAccessError(f"{file_path} is outside {self.project_root}") from None
        return path

    def read_current(self, file_path: str) -> str:
        """Current on-disk content; a missing file reads as empty."""
        path = self.resolve(file_path)
        if not path.exists():
            return ""
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FileAccessError(f"Cannot read {file_path}: {e}") from e

    def write_content(self, file_path: str, content: str) -> None:
        """Write content without the watcher recording it as an edit."""
        path = self.resolve(file_path)
        try:
            with self.suppressions.suppressing(file_path, self.config.suppression_ttl):
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise FileAccessError(f"Cannot write {file_path}: {e}") from e
        if self.watcher is not None:
            # The resynced cache already hides this write from the watcher
            self.watcher.resync(file_path, content)
            self.suppressions.release(file_path)

    # ── Commands ──

    def preview_rollback(self, change_id: int) -> RollbackPreview:
        return self.controller.preview_rollback(change_id)

    def rollback(self, change_id: int) -> RollbackResult:
        target = self.controller.preview_rollback(change_id).target
        current = self.read_current(target.file_path)
        result = self.controller.commit_rollback(change_id, current)
        self.write_content(result.file_path, result.content)
        return result

    def batch_rollback(self, change_ids: Iterable[int]) -> BatchRollbackResult:
        targets, outcomes = self.controller.group_batch_targets(change_ids)
        readable: dict[str, ChangeRecord] = {}
        contents: dict[str, str] = {}
        for file_path, target in targets.items():
            try:
                contents[file_path] = self.read_current(file_path)
            except FileAccessError as e:
                # Unreadable files keep their history untouched
                outcomes.append(FileRollbackOutcome(target_id=target.id, file_path=file_path, error=e))
                continue
            readable[file_path] = target

        result = self.controller.commit_batch(readable, contents, outcomes=outcomes)

        for outcome in result.outcomes:
            if outcome.result is None:
                continue
            try:
                self.write_content(outcome.file_path, outcome.result.content)
            except FileAccessError as e:
                logger.warning("Rolled back %s in history but could not write it: %s", outcome.file_path, e)
                outcome.error = e
        return result

    def restore(self, change_id: int) -> RestoreResult:
        result = self.controller.restore(change_id)
        self.write_content(result.file_path, result.content)
        return result

    # ── Retention ──

    def apply_retention(
        self,
        retention_days: Optional[int] = None,
        max_records: Optional[int] = None,
    ) -> dict[str, int]:
        days = self.config.retention_days if retention_days is None else retention_days
        size = self.config.max_history_size if max_records is None else max_records
        return {
            "pruned_by_age": self.store.prune_by_age(days),
            "pruned_by_size": self.store.prune_by_size(size),
        }

    def ensure_gitignore(self) -> bool:
        """Add the history directory to .gitignore. Returns True if it was added."""
        gitignore = self.project_root / ".gitignore"
        content = ""
        try:
            if gitignore.exists():
                content = gitignore.read_text(encoding="utf-8")
                entries = {line.strip() for line in content.splitlines()}
                if GITIGNORE_ENTRY in entries or DB_DIRNAME in entries:
                    return False
            separator = "\n" if content and not content.endswith("\n") else ""
            if content:
                separator += "\n"
            gitignore.write_text(
                f"{content}{separator}# savetrail local history\n{GITIGNORE_ENTRY}\n",
                encoding="utf-8",
            )
        except OSError as e:
            raise FileAccessError(f"Cannot update {gitignore}: {e}") from e
        logger.info("Added %s to .gitignore", GITIGNORE_ENTRY)
        return True

    def info(self) -> dict[str, Any]:
        return {
            "project_root": str(self.project_root),
            "db_path": str(self.store.db_path),
            "config": self.config.to_dict(),
        }
