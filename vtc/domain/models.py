from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field

class FileStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"  # Encoded output was not smaller (only with record_rejects)

# Stored representation of FileStatus in the ledger. Bump LEDGER_SCHEMA_VERSION
# whenever this mapping changes.
STATUS_TO_DB = {
    FileStatus.PENDING: "pending",
    FileStatus.SUCCESS: "success",
    FileStatus.ERROR: "error",
    FileStatus.SKIPPED: "skipped",
}
STATUS_FROM_DB = {value: key for key, value in STATUS_TO_DB.items()}

class JobOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"  # Sidecar output already present
    REJECTED = "REJECTED"  # Output not smaller than the source
    DRY_RUN = "DRY_RUN"
    INTERRUPTED = "INTERRUPTED"

class HwMode(str, Enum):
    SOFTWARE = "software"
    NVENC = "nvenc"
    QSV = "qsv"

class ProbeInfo(BaseModel):
    duration: float = 0.0  # seconds
    width: int = 0
    height: int = 0
    bitrate: int = 0  # bits per second
    frame_rate: float = 0.0
    codec: str = ""

class FileRecord(BaseModel):
    rowid: Optional[int] = None
    path: Path
    file_size: int
    probe_info: Optional[ProbeInfo] = None
    status: FileStatus = FileStatus.PENDING
    error_message: Optional[str] = None
    created_on: Optional[int] = None  # ms since epoch
    updated_on: Optional[int] = None  # ms since epoch

class WorkItem(BaseModel):
    """A ledger row scheduled for transcoding, plus derived ordering fields."""
    record: FileRecord
    expected_duration_ms: int = 0
    difficulty: float = 0.0
    progress_us: int = 0
    last_position_us: int = 0

    @classmethod
    def from_record(cls, record: FileRecord) -> "WorkItem":
        info = record.probe_info or ProbeInfo()
        return cls(
            record=record,
            expected_duration_ms=int(round(info.duration * 1000)),
            difficulty=info.width * info.height * info.duration * info.bitrate * info.frame_rate,
        )

    @property
    def path(self) -> Path:
        return self.record.path

    @property
    def progress_percent(self) -> float:
        if self.expected_duration_ms <= 0:
            return 0.0
        return min(100.0, self.progress_us / 1000 / self.expected_duration_ms * 100.0)

class ScanSummary(BaseModel):
    found: int = 0
    already_known: int = 0
    probed: int = 0
    probe_failed: int = 0
    inserted: int = 0

class TranscodeSummary(BaseModel):
    selected: int = 0
    attempted: int = 0
    succeeded: int = 0
    errored: int = 0
    skipped: int = 0
    rejected: int = 0
    interrupted: int = 0
    dry_run: int = 0
    progress_ms: int = 0
    expected_ms: int = 0
    errors: list = Field(default_factory=list)  # (path, message) pairs
