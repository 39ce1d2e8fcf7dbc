"""Transcode orchestrator: drives Pending ledger rows through ffmpeg.

Selects Pending rows, runs a fixed pool of workers that each own one ffmpeg
child at a time, and records every terminal outcome in the ledger. Progress
and lifecycle changes are published on the EventBus for the UI layer.

Per-file lifecycle:
- sidecar output already present → skipped, ledger untouched
- temp and sidecar outputs use `output_container` (.mp4 by default)
- encode ok, output smaller → finalized (replace or sidecar) → Success
- encode ok, output not smaller → temp removed, row left Pending
  (or Skipped with `record_rejects`)
- ffmpeg failed to start or exited non-zero → Error with diagnostics
- interrupted → child killed, temp left in place, ledger untouched
"""

import threading
import concurrent.futures
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from vtc.config.models import AppConfig
from vtc.domain.errors import (
    EncodeFailed,
    FinalizeFailed,
    LedgerError,
    PoolConstructionFailed,
    VtcError,
)
from vtc.domain.events import (
    InterruptRequested,
    JobFailed,
    JobFinished,
    JobProgressUpdated,
    JobStarted,
    TranscodeFinished,
    TranscodeStarted,
)
from vtc.domain.models import FileStatus, JobOutcome, TranscodeSummary, WorkItem
from vtc.infrastructure.event_bus import EventBus
from vtc.infrastructure.ffmpeg import EncodeOptions, EncodeProcess, FFmpegAdapter
from vtc.infrastructure.ledger import FileLedger, LedgerFilter
from vtc.pipeline.progress import ProgressCounter
from vtc.pipeline.selection import build_work_items, order_items


def temp_path_for(source: Path, tmp_marker: str = "_tmp", container: Optional[str] = ".mp4") -> Path:
    return source.with_name(f"{source.stem}{tmp_marker}{container or source.suffix}")


def sidecar_path_for(source: Path, output_marker: str = "_av1", container: Optional[str] = ".mp4") -> Path:
    return source.with_name(f"{source.stem}{output_marker}{container or source.suffix}")


class Orchestrator:
    """Runs the transcode stage over the ledger's Pending rows.

    Args:
        config: AppConfig; the `transcode` and `general` sections are used.
        ledger: FileLedger shared by all workers.
        ffmpeg_adapter: FFmpegAdapter used to spawn encodes.
        event_bus: EventBus for job lifecycle and progress events.
    """

    def __init__(
        self,
        config: AppConfig,
        ledger: FileLedger,
        ffmpeg_adapter: FFmpegAdapter,
        event_bus: EventBus,
    ):
        self.config = config
        self.ledger = ledger
        self.ffmpeg_adapter = ffmpeg_adapter
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

        self.progress = ProgressCounter()
        self._shutdown_event = threading.Event()  # Signal workers to stop

        # Live ffmpeg children, keyed by ledger rowid
        self._live: Dict[int, EncodeProcess] = {}
        self._live_lock = threading.Lock()

        self._errors: List[Tuple[str, str]] = []
        self._stats_lock = threading.Lock()

        self.event_bus.subscribe(InterruptRequested, self._on_interrupt_requested)

    @property
    def encode_options(self) -> EncodeOptions:
        t = self.config.transcode
        return EncodeOptions(quality=t.quality, effort=t.effort, hw_mode=t.hw_mode)

    @property
    def live_count(self) -> int:
        with self._live_lock:
            return len(self._live)

    def _on_interrupt_requested(self, event: InterruptRequested):
        self.logger.info("Interrupt requested (Ctrl+C) - stopping orchestrator...")
        self.interrupt()

    def interrupt(self):
        """Stops scheduling and kills every live ffmpeg child."""
        self._shutdown_event.set()
        with self._live_lock:
            live = list(self._live.values())
        for process in live:
            self.logger.info(f"Killing ffmpeg pid={process.pid}")
            process.kill()

    # ── Selection ─────────────────────────────────────────────────────

    def select(self) -> List[WorkItem]:
        """Pending, probed rows (largest first, up to `limit`), minus skip codecs."""
        t = self.config.transcode
        records = self.ledger.list(LedgerFilter(
            statuses=[FileStatus.PENDING],
            exclude_codecs=t.skip_codecs,
            require_probe=True,
            limit=t.limit,
        ))
        return order_items(build_work_items(records), t.order)

    # ── Per-file processing ───────────────────────────────────────────

    def _advance(self, item: WorkItem, position_us: int):
        # Positions can step backwards (e.g. timestamp resets); never count negative time
        delta = max(0, position_us - item.last_position_us)
        item.progress_us += delta
        item.last_position_us = max(item.last_position_us, position_us)
        aggregate_ms = self.progress.add_us(delta)
        self.event_bus.publish(JobProgressUpdated(item=item, delta_us=delta, aggregate_ms=aggregate_ms))

    def _register(self, item: WorkItem, process: EncodeProcess):
        with self._live_lock:
            self._live[item.record.rowid] = process
        # Interrupt may have fired between spawn and registration
        if self._shutdown_event.is_set():
            process.kill()

    def _unregister(self, item: WorkItem):
        with self._live_lock:
            self._live.pop(item.record.rowid, None)

    def _finalize(self, source: Path, temp: Path, sidecar: Path) -> Path:
        try:
            if self.config.transcode.replace:
                temp.replace(source)
                return source
            temp.rename(sidecar)
            return sidecar
        except OSError as e:
            raise FinalizeFailed(source, str(e)) from e

    def _reject(self, item: WorkItem, temp: Path, output_size: int) -> JobOutcome:
        self.logger.info(
            f"Output not smaller for {item.path.name}: "
            f"{output_size} >= {item.record.file_size} bytes, discarding"
        )
        try:
            temp.unlink()
        except OSError as e:
            self.logger.warning(f"Could not remove {temp}: {e}")
        if self.config.transcode.record_rejects:
            self.ledger.set_status(item.record.rowid, FileStatus.SKIPPED)
        self.event_bus.publish(JobFinished(item=item, outcome=JobOutcome.REJECTED, output_size=output_size))
        return JobOutcome.REJECTED

    def _fail(self, item: WorkItem, error: Exception) -> JobOutcome:
        message = str(error)
        self.logger.warning(f"Transcode failed for {item.path}: {message}")
        self.ledger.set_status(item.record.rowid, FileStatus.ERROR, message)
        with self._stats_lock:
            self._errors.append((str(item.path), message))
        self.event_bus.publish(JobFailed(item=item, error_message=message))
        return JobOutcome.ERROR

    def _encode(self, item: WorkItem, temp: Path, sidecar: Path) -> JobOutcome:
        source = item.path
        self.event_bus.publish(JobStarted(item=item))
        process = self.ffmpeg_adapter.spawn(source, temp, self.encode_options)
        self._register(item, process)
        try:
            for event in process.progress():
                self._advance(item, event.position_us)
            result = process.wait()
        except BaseException:
            process.kill()
            raise
        finally:
            self._unregister(item)

        if not result.ok:
            if self._shutdown_event.is_set():
                self.logger.info(f"Encode of {source.name} interrupted, leaving {temp.name}")
                self.event_bus.publish(JobFinished(item=item, outcome=JobOutcome.INTERRUPTED))
                return JobOutcome.INTERRUPTED
            raise EncodeFailed(source, result.returncode, result.diagnostics)

        try:
            output_size = temp.stat().st_size
        except OSError as e:
            raise FinalizeFailed(source, f"encoded output missing: {e}") from e

        if output_size >= item.record.file_size:
            return self._reject(item, temp, output_size)

        final_path = self._finalize(source, temp, sidecar)
        self.ledger.set_status(item.record.rowid, FileStatus.SUCCESS)
        self.logger.info(
            f"Encoded {source.name}: {item.record.file_size} -> {output_size} bytes ({final_path.name})"
        )
        self.event_bus.publish(JobFinished(item=item, outcome=JobOutcome.SUCCESS, output_size=output_size))
        return JobOutcome.SUCCESS

    def _process_item(self, item: WorkItem) -> JobOutcome:
        """Processes one work item. Only ledger errors escape."""
        filename = item.path.name
        debug = self.config.general.debug
        start_time = time.monotonic() if debug else None
        outcome = JobOutcome.ERROR

        if self._shutdown_event.is_set():
            if debug:
                self.logger.info(f"PROCESS_SKIP: {filename} (shutdown)")
            return JobOutcome.INTERRUPTED

        if debug:
            self.logger.info(f"PROCESS_START: {filename} (thread {threading.get_ident()})")

        general = self.config.general
        temp = temp_path_for(item.path, general.tmp_marker, general.output_container)
        sidecar = sidecar_path_for(item.path, general.output_marker, general.output_container)

        try:
            if sidecar.exists():
                self.logger.info(f"Skipping {filename}: {sidecar.name} already exists")
                outcome = JobOutcome.SKIPPED
                self.event_bus.publish(JobFinished(item=item, outcome=outcome))
            elif self.config.transcode.dry_run:
                cmd = self.ffmpeg_adapter.build_command(item.path, temp, self.encode_options)
                self.logger.info(f"DRY_RUN: {self.ffmpeg_adapter.format_command(cmd)}")
                self._advance(item, item.expected_duration_ms * 1000)
                outcome = JobOutcome.DRY_RUN
                self.event_bus.publish(JobFinished(item=item, outcome=outcome))
            else:
                outcome = self._encode(item, temp, sidecar)
        except LedgerError:
            raise
        except (EncodeFailed, FinalizeFailed) as e:
            outcome = self._fail(item, e)
        except Exception as e:
            self.logger.error(f"Exception processing {filename}: {e}")
            outcome = self._fail(item, VtcError(f"Exception: {e}"))
        finally:
            if debug and start_time is not None:
                elapsed = time.monotonic() - start_time
                self.logger.info(f"PROCESS_END: {filename} status={outcome.value.lower()} elapsed={elapsed:.2f}s")
        return outcome

    # ── Run loop ──────────────────────────────────────────────────────

    @staticmethod
    def _tally(summary: TranscodeSummary, outcome: JobOutcome):
        if outcome == JobOutcome.SUCCESS:
            summary.succeeded += 1
        elif outcome == JobOutcome.ERROR:
            summary.errored += 1
        elif outcome == JobOutcome.SKIPPED:
            summary.skipped += 1
        elif outcome == JobOutcome.REJECTED:
            summary.rejected += 1
        elif outcome == JobOutcome.DRY_RUN:
            summary.dry_run += 1
        elif outcome == JobOutcome.INTERRUPTED:
            summary.interrupted += 1
            return
        summary.attempted += 1

    def run(self) -> TranscodeSummary:
        items = self.select()
        t = self.config.transcode
        summary = TranscodeSummary(
            selected=len(items),
            expected_ms=sum(item.expected_duration_ms for item in items),
        )
        self.logger.info(
            f"Transcode started: selected={summary.selected}, expected_ms={summary.expected_ms}, "
            f"parallelism={t.parallelism}, hw={t.hw_mode.value}, dry_run={t.dry_run}"
        )
        self.event_bus.publish(TranscodeStarted(
            selected=summary.selected,
            expected_ms=summary.expected_ms,
            parallelism=t.parallelism,
        ))

        if not items:
            self.logger.info("No files to process, exiting")
            self.event_bus.publish(TranscodeFinished(summary=summary))
            return summary

        try:
            executor = concurrent.futures.ThreadPoolExecutor(max_workers=t.parallelism)
        except (RuntimeError, ValueError, OSError) as e:
            raise PoolConstructionFailed(f"Cannot create worker pool of size {t.parallelism}: {e}") from e

        futures: Dict[concurrent.futures.Future, WorkItem] = {}
        with executor:
            try:
                for item in items:
                    try:
                        futures[executor.submit(self._process_item, item)] = item
                    except RuntimeError as e:
                        raise PoolConstructionFailed(f"Cannot start worker: {e}") from e

                for future in concurrent.futures.as_completed(futures):
                    self._tally(summary, future.result())

            except KeyboardInterrupt:
                self.logger.info("Ctrl+C detected - stopping new tasks and interrupting active jobs...")
                self.event_bus.publish(InterruptRequested())
                for future in futures:
                    future.cancel()
                executor.shutdown(wait=False, cancel_futures=True)
                raise
            except (LedgerError, PoolConstructionFailed) as e:
                self.logger.error(f"CRITICAL SHUTDOWN: {e}")
                self.interrupt()
                for future in futures:
                    future.cancel()
                raise

        summary.progress_ms = self.progress.value_ms
        with self._stats_lock:
            summary.errors = list(self._errors)
        self.logger.info(
            f"Transcode finished: succeeded={summary.succeeded}, errored={summary.errored}, "
            f"skipped={summary.skipped}, rejected={summary.rejected}, dry_run={summary.dry_run}, "
            f"interrupted={summary.interrupted}, progress_ms={summary.progress_ms}/{summary.expected_ms}"
        )
        self.event_bus.publish(TranscodeFinished(summary=summary))
        return summary
