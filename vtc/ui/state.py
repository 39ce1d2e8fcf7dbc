import threading
from datetime import datetime
from collections import deque
from typing import List, Optional, Dict, Tuple
from vtc.domain.models import JobOutcome, WorkItem

class UIState:
    """Thread-safe state manager for the transcode dashboard."""

    def __init__(self, activity_feed_max_items: int = 5):
        self._lock = threading.RLock()

        # Counters
        self.completed_count = 0
        self.failed_count = 0
        self.skipped_count = 0  # Sidecar output already present
        self.rejected_count = 0  # Output not smaller than source
        self.dry_run_count = 0
        self.interrupted_count = 0

        # Bytes tracking (completed jobs only)
        self.total_input_bytes = 0
        self.total_output_bytes = 0

        # Progress in media time
        self.selected_count = 0
        self.expected_ms = 0
        self.aggregate_ms = 0
        self.parallelism = 1

        # Job lists
        self.active_jobs: List[WorkItem] = []
        # (item, outcome, detail) with newest first
        self.recent_jobs = deque(maxlen=activity_feed_max_items)

        self.job_start_times: Dict[int, datetime] = {}  # rowid -> start time

        self.processing_start_time: Optional[datetime] = None
        self.interrupt_requested = False
        self.finished = False

    @property
    def space_saved_bytes(self) -> int:
        with self._lock:
            return max(0, self.total_input_bytes - self.total_output_bytes)

    @property
    def compression_ratio(self) -> float:
        with self._lock:
            if self.total_input_bytes == 0:
                return 0.0
            return self.total_output_bytes / self.total_input_bytes

    @property
    def done_count(self) -> int:
        with self._lock:
            return (
                self.completed_count + self.failed_count + self.skipped_count
                + self.rejected_count + self.dry_run_count
            )

    @property
    def progress_percent(self) -> float:
        with self._lock:
            if self.expected_ms <= 0:
                return 0.0
            return min(100.0, self.aggregate_ms / self.expected_ms * 100.0)

    def start_processing(self, selected: int, expected_ms: int, parallelism: int):
        with self._lock:
            self.selected_count = selected
            self.expected_ms = expected_ms
            self.parallelism = parallelism
            self.processing_start_time = datetime.now()
            self.finished = False

    def add_active_job(self, item: WorkItem):
        with self._lock:
            if item not in self.active_jobs:
                self.active_jobs.append(item)
                self.job_start_times[item.record.rowid] = datetime.now()

    def remove_active_job(self, item: WorkItem):
        with self._lock:
            self.active_jobs = [job for job in self.active_jobs if job.record.rowid != item.record.rowid]
            self.job_start_times.pop(item.record.rowid, None)

    def update_progress(self, aggregate_ms: int):
        with self._lock:
            self.aggregate_ms = max(self.aggregate_ms, aggregate_ms)

    def _push_recent(self, item: WorkItem, outcome: JobOutcome, detail: str = ""):
        self.recent_jobs.appendleft((item, outcome, detail))

    def add_finished_job(self, item: WorkItem, outcome: JobOutcome, output_size: Optional[int] = None):
        with self._lock:
            if outcome == JobOutcome.SUCCESS:
                self.completed_count += 1
                self.total_input_bytes += item.record.file_size
                self.total_output_bytes += output_size or 0
            elif outcome == JobOutcome.SKIPPED:
                self.skipped_count += 1
            elif outcome == JobOutcome.REJECTED:
                self.rejected_count += 1
            elif outcome == JobOutcome.DRY_RUN:
                self.dry_run_count += 1
            elif outcome == JobOutcome.INTERRUPTED:
                self.interrupted_count += 1
            self._push_recent(item, outcome)
            self.remove_active_job(item)

    def add_failed_job(self, item: WorkItem, error_message: str):
        with self._lock:
            self.failed_count += 1
            self._push_recent(item, JobOutcome.ERROR, error_message)
            self.remove_active_job(item)

    def recent_snapshot(self) -> List[Tuple[WorkItem, JobOutcome, str]]:
        with self._lock:
            return list(self.recent_jobs)
