"""
Turns file-change events into edit records.

Decides nothing about timing: the watcher calls on_file_changed once a
path has settled, and the recorder filters, diffs and batches it.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from ..core.differ import count_changes, render_diff
from ..core.history import HistoryController, new_batch_id
from ..store.db import content_hash
from .suppression import SuppressionRegistry

logger = logging.getLogger(__name__)

DEFAULT_BATCH_TIMEOUT = 10.0


class BatchWindow:
    """Hands out one batch id while edits keep arriving within timeout seconds."""

    def __init__(self, timeout: float = DEFAULT_BATCH_TIMEOUT, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._clock = clock
        self._batch_id: Optional[str] = None
        self._last_seen = 0.0
        self._lock = threading.Lock()

    def current(self) -> str:
        with self._lock:
            now = self._clock()
            if self._batch_id is None or now - self._last_seen > self.timeout:
                if self._batch_id is not None:
                    logger.debug("Batch %s ended", self._batch_id)
                self._batch_id = new_batch_id()
            self._last_seen = now
            return self._batch_id


class ChangeRecorder:
    """Record saves reported by the watcher."""

    def __init__(
        self,
        controller: HistoryController,
        suppressions: SuppressionRegistry,
        batch_window: Optional[BatchWindow] = None,
    ):
        self.controller = controller
        self.suppressions = suppressions
        self.batch_window = batch_window or BatchWindow()

    def on_file_changed(
        self,
        file_path: str,
        old_content: str,
        new_content: str,
        batch_id: Optional[str] = None,
    ) -> Optional[int]:
        """Record a save. Returns the new record id, or None if it was skipped."""
        if old_content == new_content:
            self.suppressions.release(file_path)
            return None

        if self.suppressions.consume(file_path):
            logger.debug("Skipped recording for %s (savetrail write)", file_path)
            return None

        latest = self.controller.store.get_latest_for_file(file_path)
        if latest is not None and latest.content_hash == content_hash(new_content):
            logger.debug("Skipped recording for %s (matches #%d)", file_path, latest.id)
            return None

        diff = render_diff(old_content, new_content, file_path)
        added, removed = count_changes(diff)
        return self.controller.record_edit(
            file_path, old_content, new_content, diff, added, removed,
            batch_id=batch_id or self.batch_window.current(),
        )
