"""
File watcher: content cache, ignore rules and per-path debounce.

handle_change/flush carry all the decisions and take an explicit time, so
they run without a filesystem event source. run() feeds them from
watchfiles.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

import pathspec
from watchfiles import Change, watch

from .recorder import ChangeRecorder

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_DELAY = 2.0

# Default directories to always skip
ALWAYS_SKIP = {
    "__pycache__", ".git", ".hg", ".svn", ".savetrail",
    "node_modules", ".venv", "venv", "env",
    "build", "dist", ".eggs", ".mypy_cache", ".pytest_cache",
    ".tox", ".nox", ".idea", ".vscode", "coverage", ".cache",
}

BINARY_EXTENSIONS = {
    ".png", ".jpg", ".jpeg", ".gif", ".ico", ".svg", ".webp", ".bmp",
    ".mp3", ".mp4", ".wav", ".avi", ".mov", ".webm",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".rar", ".tar", ".gz", ".7z",
    ".exe", ".dll", ".so", ".dylib", ".pyc",
    ".ttf", ".otf", ".woff", ".woff2", ".eot",
    ".db", ".sqlite", ".sqlite3", ".db-wal", ".db-shm",
}

# Noise files that change on every install
DEFAULT_IGNORE = ["*.log", "*.lock", "package-lock.json", "yarn.lock", "pnpm-lock.yaml"]


class FileWatcher:
    """Watch a project tree and hand settled saves to the recorder."""

    def __init__(
        self,
        project_root: Path,
        recorder: ChangeRecorder,
        ignore: Iterable[str] = (),
        debounce_delay: float = DEFAULT_DEBOUNCE_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.project_root = Path(project_root).resolve()
        self.recorder = recorder
        self.debounce_delay = debounce_delay
        self._clock = clock
        self._ignore_spec = self._build_ignore_spec(list(ignore))
        self._cache: dict[str, str] = {}
        self._pending: dict[str, float] = {}  # rel_path -> deadline
        self._lock = threading.Lock()

    def _build_ignore_spec(self, patterns: list[str]) -> pathspec.PathSpec:
        """Build a pathspec from defaults + .gitignore + config ignore patterns."""
        patterns = DEFAULT_IGNORE + patterns

        gitignore = self.project_root / ".gitignore"
        if gitignore.exists():
            try:
                patterns.extend(gitignore.read_text(errors="replace").splitlines())
            except OSError as e:
                logger.warning("Could not read %s: %s", gitignore, e)

        return pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    # ── Filtering ──

    def is_tracked(self, rel_path: str) -> bool:
        parts = Path(rel_path).parts
        if any(p in ALWAYS_SKIP or p.endswith(".egg-info") for p in parts[:-1]):
            return False
        if Path(rel_path).suffix.lower() in BINARY_EXTENSIONS:
            return False
        return not self._ignore_spec.match_file(rel_path)

    def discover_files(self) -> list[tuple[Path, str]]:
        """Walk project, return (abs_path, rel_path) for tracked files."""
        results = []

        for dirpath, dirnames, filenames in os.walk(self.project_root):
            rel_dir = Path(dirpath).relative_to(self.project_root).as_posix()
            prefix = "" if rel_dir == "." else f"{rel_dir}/"
            dirnames[:] = [
                d for d in dirnames
                if d not in ALWAYS_SKIP
                and not d.endswith(".egg-info")
                and not self._ignore_spec.match_file(f"{prefix}{d}/")
            ]

            for fname in filenames:
                rel_path = f"{prefix}{fname}"
                if self.is_tracked(rel_path):
                    results.append((Path(dirpath) / fname, rel_path))

        return results

    def _read(self, rel_path: str) -> Optional[str]:
        try:
            return (self.project_root / rel_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Cannot read %s: %s", rel_path, e)
            return None

    # ── Cache ──

    def prime(self) -> int:
        """Load the current content of every tracked file."""
        count = 0
        for _, rel_path in self.discover_files():
            content = self._read(rel_path)
            if content is not None:
                with self._lock:
                    self._cache[rel_path] = content
                count += 1
        logger.info("Cached %d files", count)
        return count

    def cached(self, rel_path: str) -> Optional[str]:
        with self._lock:
            return self._cache.get(rel_path)

    def resync(self, rel_path: str, content: str) -> None:
        """Adopt content written by savetrail itself as the new baseline."""
        with self._lock:
            self._cache[rel_path] = content
            self._pending.pop(rel_path, None)

    # ── Events ──

    def handle_change(self, rel_path: str, now: Optional[float] = None) -> None:
        """Schedule rel_path for recording; repeated saves push the deadline back."""
        if not self.is_tracked(rel_path):
            return
        now = self._clock() if now is None else now
        with self._lock:
            self._pending[rel_path] = now + self.debounce_delay

    def handle_create(self, rel_path: str, now: Optional[float] = None) -> None:
        if not self.is_tracked(rel_path):
            return
        with self._lock:
            known = rel_path in self._cache
        if known:
            self.handle_change(rel_path, now)
            return
        content = self._read(rel_path)
        if content is not None:
            with self._lock:
                self._cache[rel_path] = content

    def handle_delete(self, rel_path: str) -> None:
        with self._lock:
            self._cache.pop(rel_path, None)
            self._pending.pop(rel_path, None)

    def pending(self) -> list[str]:
        with self._lock:
            return sorted(self._pending)

    def flush(self, now: Optional[float] = None) -> list[int]:
        """Record every path whose debounce deadline has passed."""
        now = self._clock() if now is None else now
        with self._lock:
            due = [p for p, deadline in self._pending.items() if deadline <= now]
            for p in due:
                del self._pending[p]

        recorded = []
        for rel_path in sorted(due):
            change_id = self._record(rel_path)
            if change_id is not None:
                recorded.append(change_id)
        return recorded

    def _record(self, rel_path: str) -> Optional[int]:
        new_content = self._read(rel_path)
        if new_content is None:
            return None
        old_content = self.cached(rel_path) or ""
        change_id = self.recorder.on_file_changed(rel_path, old_content, new_content)
        with self._lock:
            self._cache[rel_path] = new_content
        return change_id

    # ── Event loop ──

    def _relative(self, path: str) -> Optional[str]:
        try:
            return Path(path).resolve().relative_to(self.project_root).as_posix()
        except ValueError:
            return None

    def run(self, stop_event: Optional[threading.Event] = None, tick_ms: int = 500) -> None:
        """Watch until stop_event is set (or KeyboardInterrupt)."""
        self.prime()
        logger.info("Watching %s", self.project_root)
        for changes in watch(
            self.project_root,
            stop_event=stop_event,
            rust_timeout=tick_ms,
            yield_on_timeout=True,
        ):
            for change, path in changes:
                rel_path = self._relative(path)
                if rel_path is None:
                    continue
                if change == Change.deleted:
                    self.handle_delete(rel_path)
                elif change == Change.added:
                    self.handle_create(rel_path)
                else:
                    self.handle_change(rel_path)
            self.flush()
        # Record anything still settling when the loop stops
        self.flush(now=float("inf"))
