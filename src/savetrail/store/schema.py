"""
DDL for the change-history SQLite database.

Single file, WAL mode, one append-only ledger table.
"""

SCHEMA_VERSION = 1

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

-- One row per recorded content transition of one file.
-- AUTOINCREMENT keeps ids monotonic even after the newest row is deleted.
CREATE TABLE IF NOT EXISTS changes (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    file_path               TEXT NOT NULL,
    old_content             TEXT NOT NULL DEFAULT '',
    new_content             TEXT NOT NULL DEFAULT '',
    diff                    TEXT NOT NULL DEFAULT '',
    content_hash            TEXT NOT NULL,
    lines_added             INTEGER NOT NULL DEFAULT 0,
    lines_removed           INTEGER NOT NULL DEFAULT 0,
    batch_id                TEXT,
    operation_type          TEXT NOT NULL DEFAULT 'edit',
    rollback_to_id          INTEGER,
    covered_by_rollback_id  INTEGER,
    created_at              TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_changes_file ON changes(file_path, id);
CREATE INDEX IF NOT EXISTS idx_changes_created ON changes(created_at);
CREATE INDEX IF NOT EXISTS idx_changes_batch ON changes(batch_id);
CREATE INDEX IF NOT EXISTS idx_changes_covered ON changes(covered_by_rollback_id);

-- Schema version tracking
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

INIT_META_SQL = """
INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?);
"""
