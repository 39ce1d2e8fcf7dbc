"""Catalog step: walk a root, probe new files and record them as Pending."""

import concurrent.futures
import logging
import time
from pathlib import Path
from typing import List, Optional, Tuple

from vtc.domain.errors import ProbeFailed
from vtc.domain.events import FileProbed, FilesDiscovered, ScanFinished, ScanStarted
from vtc.domain.models import FileRecord, ProbeInfo, ScanSummary
from vtc.infrastructure.event_bus import EventBus
from vtc.infrastructure.ffprobe import FFprobeAdapter
from vtc.infrastructure.file_scanner import FileScanner
from vtc.infrastructure.ledger import FileLedger


class Collector:
    """Discovers candidate files and inserts the probed ones into the ledger.

    Paths already in the ledger are not probed again. Probe failures are logged
    and the file is left out; they never abort the scan.
    """

    def __init__(
        self,
        ledger: FileLedger,
        file_scanner: FileScanner,
        ffprobe_adapter: FFprobeAdapter,
        event_bus: EventBus,
        probe_workers: int = 4,
        debug: bool = False,
    ):
        self.ledger = ledger
        self.file_scanner = file_scanner
        self.ffprobe_adapter = ffprobe_adapter
        self.event_bus = event_bus
        self.probe_workers = max(1, probe_workers)
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _probe_one(self, path: Path) -> Tuple[Path, Optional[FileRecord], Optional[str]]:
        try:
            file_size = path.stat().st_size
            info: ProbeInfo = self.ffprobe_adapter.probe(path)
        except ProbeFailed as e:
            return path, None, str(e)
        except OSError as e:
            return path, None, f"Cannot stat {path}: {e}"
        except Exception as e:
            # Any per-file failure only drops that file from the scan
            self.logger.exception(f"Unexpected error probing {path}")
            return path, None, f"Exception: {e}"
        return path, FileRecord(path=path, file_size=file_size, probe_info=info), None

    def run(self, root: Path) -> ScanSummary:
        root = Path(root)
        start_time = time.monotonic()
        self.logger.info(f"DISCOVERY_START: scanning {root}")
        self.event_bus.publish(ScanStarted(root=root))

        candidates = self.file_scanner.scan(root)
        known = self.ledger.known_paths(candidates)
        to_probe = [p for p in candidates if p not in known]
        summary = ScanSummary(found=len(candidates), already_known=len(known))
        self.event_bus.publish(FilesDiscovered(found=len(candidates), to_probe=len(to_probe)))
        self.logger.info(
            f"Discovery finished: found={summary.found}, already_known={summary.already_known}, "
            f"to_probe={len(to_probe)}"
        )

        records: List[FileRecord] = []
        if to_probe:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self.probe_workers) as executor:
                futures = [executor.submit(self._probe_one, path) for path in to_probe]
                for future in concurrent.futures.as_completed(futures):
                    path, record, error = future.result()
                    if record is None:
                        summary.probe_failed += 1
                        self.logger.warning(f"Skipping {path}: {error}")
                        self.event_bus.publish(FileProbed(path=path, ok=False, error_message=error))
                        continue
                    summary.probed += 1
                    records.append(record)
                    self.event_bus.publish(FileProbed(path=path, ok=True))

        # Deterministic insertion order so rowids follow path order
        records.sort(key=lambda rec: str(rec.path))
        summary.inserted = self.ledger.insert_batch(records)

        if self.debug:
            elapsed = time.monotonic() - start_time
            self.logger.info(f"DISCOVERY_END: {root} elapsed={elapsed:.2f}s")
        self.logger.info(
            f"Scan complete: probed={summary.probed}, probe_failed={summary.probe_failed}, "
            f"inserted={summary.inserted}"
        )
        self.event_bus.publish(ScanFinished(summary=summary))
        return summary
