"""
Unified-diff rendering and line statistics for change records.
"""

from __future__ import annotations

import difflib


def render_diff(old_content: str, new_content: str, file_path: str, context: int = 3) -> str:
    """Render a unified diff between two versions of file_path."""
    lines = difflib.unified_diff(
        old_content.splitlines(),
        new_content.splitlines(),
        fromfile=f"a/{file_path}",
        tofile=f"b/{file_path}",
        n=context,
        lineterm="",
    )
    return "\n".join(lines)


def count_changes(diff: str) -> tuple[int, int]:
    """Return (lines_added, lines_removed), ignoring the file headers."""
    added = removed = 0
    in_hunk = False
    for line in diff.splitlines():
        if line.startswith("@@"):
            in_hunk = True
            continue
        if not in_hunk:
            continue
        if line.startswith("+"):
            added += 1
        elif line.startswith("-"):
            removed += 1
    return added, removed
