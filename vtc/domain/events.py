"""Domain events for the catalog and transcode pipeline.

Events represent state changes and notifications that flow through the EventBus,
decoupling the collector and orchestrator from the UI layer.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from .models import JobOutcome, ScanSummary, TranscodeSummary, WorkItem


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class ScanStarted(Event):
    """Emitted when the collector begins walking a root path."""

    root: Path


class FilesDiscovered(Event):
    """Emitted after the walk; `to_probe` excludes paths already in the ledger."""

    found: int
    to_probe: int


class FileProbed(Event):
    """Emitted once per probed file, successful or not."""

    path: Path
    ok: bool
    error_message: Optional[str] = None


class ScanFinished(Event):
    summary: ScanSummary


class JobEvent(Event):
    """Base class for events related to a specific work item."""

    item: WorkItem


class TranscodeStarted(Event):
    """Emitted once selection is done, before any worker starts."""

    selected: int
    expected_ms: int
    parallelism: int


class JobStarted(JobEvent):
    """Emitted when a worker spawns ffmpeg for an item."""

    pass


class JobProgressUpdated(JobEvent):
    """Emitted for every progress block ffmpeg reports."""

    delta_us: int
    aggregate_ms: int


class JobFinished(JobEvent):
    """Emitted when an item reaches a terminal state other than failure."""

    outcome: JobOutcome
    output_size: Optional[int] = None


class JobFailed(JobEvent):
    """Emitted when an item ends in Error; the ledger row carries the message."""

    error_message: str


class InterruptRequested(Event):
    """Emitted when the operator aborts the run (Ctrl+C)."""

    pass


class TranscodeFinished(Event):
    summary: TranscodeSummary
