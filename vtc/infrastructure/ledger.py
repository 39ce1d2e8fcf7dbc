"""
SQLite ledger of discovered media files and their transcode status.

Thread-safe via check_same_thread=False + explicit locking; workers share one
connection and only ever issue single-row statements.
"""

import sqlite3
import threading
import time
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Sequence

from pydantic import BaseModel, Field, ValidationError

from vtc.domain.errors import LedgerIntegrityError, LedgerUnavailable
from vtc.domain.models import FileRecord, FileStatus, ProbeInfo, STATUS_FROM_DB, STATUS_TO_DB

logger = logging.getLogger(__name__)

LEDGER_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS transcode_files (
    "path" VARCHAR NOT NULL UNIQUE,
    "status" VARCHAR NOT NULL DEFAULT 'pending',
    created_on BIGINT NOT NULL,
    updated_on BIGINT NOT NULL,
    error_message VARCHAR,
    file_size BIGINT NOT NULL,
    ffprobe_info VARCHAR
);

CREATE INDEX IF NOT EXISTS idx_transcode_files_status_size
    ON transcode_files(status, file_size DESC);
"""

_SELECT_COLUMNS = "rowid, path, status, created_on, updated_on, error_message, file_size, ffprobe_info"

UNKNOWN_ERROR = "unknown error"


class LedgerFilter(BaseModel):
    limit: Optional[int] = Field(default=None, gt=0)
    statuses: Optional[List[FileStatus]] = None
    exclude_codecs: List[str] = Field(default_factory=list)
    require_probe: bool = False


def now_ms() -> int:
    return int(time.time() * 1000)


class FileLedger:
    """SQLite store of FileRecords; the single source of truth across runs."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        try:
            if self.db_path.parent and not self.db_path.parent.exists():
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA journal_mode=WAL")
            self._migrate()
        except (sqlite3.Error, OSError) as e:
            raise LedgerUnavailable(f"Cannot open ledger {self.db_path}: {e}") from e

    def _migrate(self):
        cur = self.conn.cursor()
        cur.executescript(_CREATE_TABLES)
        row = cur.execute("SELECT MAX(version) FROM schema_version").fetchone()
        current = row[0] if row and row[0] is not None else None
        if current is not None and current > LEDGER_SCHEMA_VERSION:
            raise LedgerUnavailable(
                f"Ledger {self.db_path} has schema version {current}, "
                f"this build supports up to {LEDGER_SCHEMA_VERSION}"
            )
        cur.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (LEDGER_SCHEMA_VERSION,),
        )
        self.conn.commit()

    def close(self):
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> FileRecord:
        probe_info = None
        if row["ffprobe_info"]:
            try:
                probe_info = ProbeInfo.model_validate_json(row["ffprobe_info"])
            except ValidationError as e:
                logger.warning(f"Ignoring unreadable probe info for {row['path']}: {e}")
        return FileRecord(
            rowid=row["rowid"],
            path=Path(row["path"]),
            file_size=row["file_size"],
            probe_info=probe_info,
            status=STATUS_FROM_DB[row["status"]],
            error_message=row["error_message"],
            created_on=row["created_on"],
            updated_on=row["updated_on"],
        )

    def _execute(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise LedgerUnavailable(f"Ledger query failed: {e}") from e

    # ── Writes ────────────────────────────────────────────────────────

    def insert_batch(self, records: Iterable[FileRecord]) -> int:
        """Inserts records in one transaction; known paths are skipped.

        Returns the number of rows actually inserted.
        """
        now = now_ms()
        rows = [
            (
                str(rec.path),
                STATUS_TO_DB[FileStatus.PENDING],
                now,
                now,
                rec.file_size,
                rec.probe_info.model_dump_json() if rec.probe_info else None,
            )
            for rec in records
        ]
        if not rows:
            return 0

        with self._lock:
            before = self.conn.total_changes
            try:
                with self.conn:
                    self.conn.executemany(
                        """INSERT INTO transcode_files
                           (path, status, created_on, updated_on, file_size, ffprobe_info)
                           VALUES (?, ?, ?, ?, ?, ?)
                           ON CONFLICT(path) DO NOTHING""",
                        rows,
                    )
            except sqlite3.Error as e:
                raise LedgerUnavailable(f"Batch insert of {len(rows)} rows failed: {e}") from e
            inserted = self.conn.total_changes - before

        logger.info(f"Ledger insert: {inserted} new of {len(rows)} rows")
        return inserted

    def set_status(self, rowid: int, status: FileStatus, error_message: Optional[str] = None):
        """Writes a status transition for one row and advances updated_on."""
        if status == FileStatus.ERROR:
            error_message = (error_message or "").strip() or UNKNOWN_ERROR
        else:
            error_message = None

        with self._lock:
            try:
                with self.conn:
                    cur = self.conn.execute(
                        """UPDATE transcode_files
                           SET status = ?, error_message = ?, updated_on = MAX(?, updated_on)
                           WHERE rowid = ?""",
                        (STATUS_TO_DB[status], error_message, now_ms(), rowid),
                    )
            except sqlite3.Error as e:
                raise LedgerUnavailable(f"Status update for row {rowid} failed: {e}") from e
            if cur.rowcount != 1:
                raise LedgerIntegrityError(f"Status update matched {cur.rowcount} rows for rowid {rowid}")

    def reset_errors(self) -> int:
        """Returns Error rows to Pending. Administrative; never run implicitly."""
        with self._lock:
            try:
                with self.conn:
                    cur = self.conn.execute(
                        """UPDATE transcode_files
                           SET status = ?, error_message = NULL, updated_on = MAX(?, updated_on)
                           WHERE status = ?""",
                        (STATUS_TO_DB[FileStatus.PENDING], now_ms(), STATUS_TO_DB[FileStatus.ERROR]),
                    )
            except sqlite3.Error as e:
                raise LedgerUnavailable(f"Resetting errors failed: {e}") from e
            return cur.rowcount

    # ── Reads ─────────────────────────────────────────────────────────

    def get(self, rowid: int) -> Optional[FileRecord]:
        rows = self._execute(f"SELECT {_SELECT_COLUMNS} FROM transcode_files WHERE rowid = ?", (rowid,))
        return self._row_to_record(rows[0]) if rows else None

    def list(self, filter: Optional[LedgerFilter] = None) -> List[FileRecord]:
        """Returns records ordered by file_size descending."""
        filter = filter or LedgerFilter()
        sql = f"SELECT {_SELECT_COLUMNS} FROM transcode_files"
        clauses = []
        params: List = []
        if filter.statuses:
            placeholders = ", ".join("?" for _ in filter.statuses)
            clauses.append(f"status IN ({placeholders})")
            params.extend(STATUS_TO_DB[s] for s in filter.statuses)
        if filter.require_probe:
            clauses.append("ffprobe_info IS NOT NULL")
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY file_size DESC, rowid ASC"

        # Codec exclusion lives in the JSON column, so the limit is applied here
        excluded = {codec.lower() for codec in filter.exclude_codecs}
        records: List[FileRecord] = []
        for row in self._execute(sql, params):
            record = self._row_to_record(row)
            if excluded and record.probe_info and record.probe_info.codec.lower() in excluded:
                continue
            if filter.require_probe and record.probe_info is None:
                continue
            records.append(record)
            if filter.limit is not None and len(records) >= filter.limit:
                break
        return records

    def known_paths(self, paths: Iterable[Path]) -> Set[Path]:
        """Returns the subset of paths that already have a ledger row."""
        wanted = [str(p) for p in paths]
        known: Set[Path] = set()
        # Stay well below SQLITE_MAX_VARIABLE_NUMBER
        chunk_size = 500
        for i in range(0, len(wanted), chunk_size):
            chunk = wanted[i:i + chunk_size]
            placeholders = ", ".join("?" for _ in chunk)
            rows = self._execute(
                f"SELECT path FROM transcode_files WHERE path IN ({placeholders})", chunk
            )
            known.update(Path(row["path"]) for row in rows)
        return known

    def counts(self) -> Dict[FileStatus, int]:
        rows = self._execute("SELECT status, COUNT(*) AS n FROM transcode_files GROUP BY status")
        result = {status: 0 for status in FileStatus}
        for row in rows:
            result[STATUS_FROM_DB[row["status"]]] = row["n"]
        return result
