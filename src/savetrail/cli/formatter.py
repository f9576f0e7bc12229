"""
Human-readable output formatting for CLI.
"""

from __future__ import annotations

from typing import Any


def _flags(status: Any) -> str:
    r = status.record
    flags = []
    if status.is_latest_for_file:
        flags.append("latest")
    if r.covered_by_rollback_id is not None:
        flags.append(f"covered by #{r.covered_by_rollback_id}")
    if r.rollback_to_id is not None:
        flags.append(f"to #{r.rollback_to_id}")
    if status.is_rollback_target:
        flags.append("target")
    if status.can_restore:
        flags.append("restorable")
    return f"[{', '.join(flags)}]" if flags else ""


def _when(created_at: str) -> str:
    return created_at[:19].replace("T", " ")


def format_records(statuses: list) -> str:
    """Format an annotated history listing."""
    if not statuses:
        return "No changes recorded."

    lines = [f"Changes ({len(statuses)}):"]
    for s in statuses:
        r = s.record
        stats = f"+{r.lines_added}/-{r.lines_removed}"
        lines.append(
            f"  #{r.id:<5d} {r.operation_type:8s} {r.file_path:40s} {stats:>9s}  {_when(r.created_at)}  {_flags(s)}".rstrip()
        )
    return "\n".join(lines)


def format_change(status: Any) -> str:
    """Format one change with its diff."""
    r = status.record
    lines = [
        f"Change #{r.id} ({r.operation_type}) {r.file_path}",
        f"  Created:  {_when(r.created_at)}",
        f"  Lines:    +{r.lines_added}/-{r.lines_removed}",
        f"  Hash:     {r.content_hash[:12]}",
    ]
    if r.batch_id:
        lines.append(f"  Batch:    {r.batch_id}")
    flags = _flags(status)
    if flags:
        lines.append(f"  Status:   {flags}")
    if status.covered_ids:
        lines.append(f"  Covers:   {', '.join(f'#{i}' for i in status.covered_ids)}")
    if r.diff:
        lines.append("")
        lines.append(r.diff)
    return "\n".join(lines)


def format_preview(preview: Any) -> str:
    """Format the records a rollback would supersede."""
    t = preview.target
    lines = [f"Rollback {t.file_path} to #{t.id} ({_when(t.created_at)})"]
    superseded = [r for r in preview.affected if r.id != t.id]
    if superseded:
        lines.append(f"\nSuperseded changes ({len(superseded)}):")
        for r in superseded:
            lines.append(f"  #{r.id:<5d} {r.operation_type:8s} +{r.lines_added}/-{r.lines_removed}  {_when(r.created_at)}")
    else:
        lines.append(f"\n#{t.id} is the latest change; the file is reset to its content.")
    if not preview.can_rollback:
        lines.append("\nThis change cannot be rolled back to (rollback record, covered, or already a target).")
    return "\n".join(lines)


def format_rollback(result: Any) -> str:
    return (
        f"Rolled back {result.file_path} to #{result.target_id} "
        f"(rollback #{result.rollback_id}, {result.covered_count} changes covered)"
    )


def format_restore(result: Any) -> str:
    return (
        f"Restored {result.file_path} to its state before rollback #{result.rollback_id} "
        f"({result.reactivated_count} changes reactivated)"
    )


def format_batch(result: Any) -> str:
    """Format per-file batch rollback outcomes."""
    lines = [
        f"Batch rollback {result.batch_id}: {len(result.succeeded)} succeeded, {len(result.failed)} failed"
    ]
    for o in result.outcomes:
        name = o.file_path or f"#{o.target_id}"
        if o.ok:
            lines.append(f"  ok    {name} -> #{o.target_id} (rollback #{o.result.rollback_id})")
        else:
            lines.append(f"  FAIL  {name} [{o.error.kind}] {o.error}")
    return "\n".join(lines)


def format_stats(stats: Any) -> str:
    """Format history stats for display."""
    lines = [
        f"Records:  {stats.total_records} ({stats.edit_records} edits, {stats.rollback_records} rollbacks)",
        f"Covered:  {stats.covered_records}",
        f"Files:    {stats.tracked_files}",
        f"Oldest:   {_when(stats.oldest_record) if stats.oldest_record else '-'}",
        f"Newest:   {_when(stats.newest_record) if stats.newest_record else '-'}",
        f"DB size:  {stats.db_size / 1024:.1f} KB",
    ]
    return "\n".join(lines)


def format_retention(result: dict) -> str:
    return "\n".join(f"{k.replace('_', ' ').capitalize()}: {v}" for k, v in result.items())


def format_range_diff(result: Any) -> str:
    header = (
        f"{result.file_path}: #{result.from_id} -> #{result.to_id} "
        f"(+{result.lines_added}/-{result.lines_removed})"
    )
    return f"{header}\n\n{result.diff}" if result.diff else f"{header}\nNo differences."
