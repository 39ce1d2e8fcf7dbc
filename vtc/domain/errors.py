"""Exception taxonomy for the catalog and transcode pipeline.

Errors scoped to a single file (probe, encode, finalize) are caught at the
worker boundary and recorded; ledger and pool errors abort the run.
"""

from pathlib import Path
from typing import Optional


class VtcError(Exception):
    """Base class for all VTC errors."""


class DiscoveryError(VtcError):
    """Filesystem walk failure for one entry (logged, entry skipped)."""

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"Cannot read {path}: {message}")


class ProbeFailed(VtcError):
    """ffprobe exited non-zero or produced output that cannot be parsed."""

    def __init__(
        self,
        path: Path,
        message: str,
        returncode: Optional[int] = None,
        stderr: str = "",
        stdout: str = "",
    ):
        self.path = path
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(f"ffprobe failed for {path}: {message}")


class LedgerError(VtcError):
    """Base class for ledger failures. Always fatal to the run."""


class LedgerUnavailable(LedgerError):
    """The ledger cannot be opened, migrated, read or written."""


class LedgerIntegrityError(LedgerError):
    """A status update targeted a row that does not exist."""


class EncodeFailed(VtcError):
    """ffmpeg exited non-zero for one file."""

    def __init__(self, path: Path, returncode: Optional[int], diagnostics: str = ""):
        self.path = path
        self.returncode = returncode
        self.diagnostics = diagnostics
        detail = diagnostics.strip() or "no diagnostic output"
        super().__init__(f"ffmpeg exited with code {returncode}: {detail}")


class SpawnFailed(EncodeFailed):
    """ffmpeg could not be started at all."""

    def __init__(self, path: Path, message: str):
        super().__init__(path, None, message)
        self.args = (f"Failed to start ffmpeg: {message}",)


class FinalizeFailed(VtcError):
    """Rename/delete failure after a successful encode."""

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"Failed to finalize {path}: {message}")


class PoolConstructionFailed(VtcError):
    """The worker pool could not be allocated."""
