"""
Derived record status.

Pure functions over lists of change records. Nothing here touches the
store, so every flag can be checked against a hand-built history.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..store.models import ROLLBACK, ChangeRecord


def _same_file(record: ChangeRecord, records: Iterable[ChangeRecord]) -> list[ChangeRecord]:
    return [r for r in records if r.file_path == record.file_path]


def latest_ids_by_file(records: Iterable[ChangeRecord]) -> dict[str, int]:
    latest: dict[str, int] = {}
    for r in records:
        if r.id > latest.get(r.file_path, 0):
            latest[r.file_path] = r.id
    return latest


def is_latest_for_file(record: ChangeRecord, records: Iterable[ChangeRecord]) -> bool:
    return all(r.id <= record.id for r in _same_file(record, records))


def is_rollback_target(record: ChangeRecord, records: Iterable[ChangeRecord]) -> bool:
    return any(
        r.operation_type == ROLLBACK and r.rollback_to_id == record.id
        for r in _same_file(record, records)
    )


def can_restore(record: ChangeRecord, records: Iterable[ChangeRecord]) -> bool:
    """Only the latest record of a file can be undone, and only if it is a rollback."""
    return record.operation_type == ROLLBACK and is_latest_for_file(record, records)


def can_rollback_to(record: ChangeRecord, records: Iterable[ChangeRecord]) -> bool:
    """Active edit records that no rollback already targets."""
    return (
        record.covered_by_rollback_id is None
        and record.operation_type != ROLLBACK
        and not is_rollback_target(record, records)
    )


def covered_records(rollback: ChangeRecord, records: Iterable[ChangeRecord]) -> list[ChangeRecord]:
    """Records a rollback shadowed, in the order given."""
    if rollback.operation_type != ROLLBACK:
        return []
    return [
        r for r in _same_file(rollback, records)
        if r.covered_by_rollback_id == rollback.id
    ]


@dataclass
class RecordStatus:
    """A change record annotated with its derived flags."""
    record: ChangeRecord
    is_latest_for_file: bool = False
    is_rollback_target: bool = False
    can_restore: bool = False
    can_rollback_to: bool = False
    covered_ids: list[int] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.record.id

    def to_dict(self, include_content: bool = False) -> dict[str, Any]:
        d = self.record.summary()
        if include_content:
            d["old_content"] = self.record.old_content
            d["new_content"] = self.record.new_content
            d["diff"] = self.record.diff
        d.update({
            "is_latest_for_file": self.is_latest_for_file,
            "is_rollback_target": self.is_rollback_target,
            "can_restore": self.can_restore,
            "can_rollback_to": self.can_rollback_to,
            "covered_ids": self.covered_ids,
        })
        return d


def annotate(
    records: list[ChangeRecord],
    history: Optional[list[ChangeRecord]] = None,
) -> list[RecordStatus]:
    """Annotate records, computing flags against history (defaults to records).

    Pass the full per-file history when records is a truncated listing,
    otherwise a record whose newer siblings were cut off would look latest.
    """
    history = records if history is None else history
    latest = latest_ids_by_file(history)
    targets = {
        (r.file_path, r.rollback_to_id)
        for r in history
        if r.operation_type == ROLLBACK and r.rollback_to_id is not None
    }
    covered: dict[int, list[int]] = {}
    for r in history:
        if r.covered_by_rollback_id is not None:
            covered.setdefault(r.covered_by_rollback_id, []).append(r.id)

    result = []
    for r in records:
        targeted = (r.file_path, r.id) in targets
        is_latest = latest.get(r.file_path) == r.id
        result.append(RecordStatus(
            record=r,
            is_latest_for_file=is_latest,
            is_rollback_target=targeted,
            can_restore=r.operation_type == ROLLBACK and is_latest,
            can_rollback_to=(
                r.covered_by_rollback_id is None
                and r.operation_type != ROLLBACK
                and not targeted
            ),
            covered_ids=sorted(covered.get(r.id, []), reverse=True) if r.operation_type == ROLLBACK else [],
        ))
    return result
