import logging
from vtc.infrastructure.event_bus import EventBus
from vtc.ui.state import UIState
from vtc.domain.events import (
    TranscodeStarted, TranscodeFinished,
    JobStarted, JobFinished, JobFailed,
    JobProgressUpdated, InterruptRequested,
)

logger = logging.getLogger(__name__)

class UIManager:
    """Subscribes to EventBus and updates UIState."""

    def __init__(self, bus: EventBus, state: UIState):
        self.bus = bus
        self.state = state
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(TranscodeStarted, self.on_transcode_started)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobProgressUpdated, self.on_job_progress)
        self.bus.subscribe(JobFinished, self.on_job_finished)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(InterruptRequested, self.on_interrupt_request)
        self.bus.subscribe(TranscodeFinished, self.on_transcode_finished)

    def on_transcode_started(self, event: TranscodeStarted):
        logger.debug(
            f"UI: transcode started selected={event.selected} expected_ms={event.expected_ms}"
        )
        self.state.start_processing(event.selected, event.expected_ms, event.parallelism)

    def on_job_started(self, event: JobStarted):
        self.state.add_active_job(event.item)

    def on_job_progress(self, event: JobProgressUpdated):
        self.state.update_progress(event.aggregate_ms)

    def on_job_finished(self, event: JobFinished):
        self.state.add_finished_job(event.item, event.outcome, event.output_size)

    def on_job_failed(self, event: JobFailed):
        self.state.add_failed_job(event.item, event.error_message)

    def on_interrupt_request(self, event: InterruptRequested):
        with self.state._lock:
            self.state.interrupt_requested = True

    def on_transcode_finished(self, event: TranscodeFinished):
        with self.state._lock:
            self.state.update_progress(event.summary.progress_ms)
            self.state.finished = True
