import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

class HousekeepingService:
    """Service for cleaning up temp outputs left behind by interrupted runs."""

    def __init__(self, tmp_marker: str = "_tmp"):
        self.tmp_marker = tmp_marker

    def is_temp_file(self, path: Path) -> bool:
        return path.stem.endswith(self.tmp_marker) and bool(path.suffix)

    def cleanup_temp_files(self, directory: Path) -> int:
        """Recursively removes `<stem><tmp_marker><ext>` files. Returns the count removed."""
        removed = 0
        for root, dirs, files in os.walk(directory):
            for file in files:
                path = Path(root) / file
                if not self.is_temp_file(path):
                    continue
                try:
                    path.unlink()
                    removed += 1
                    logger.info(f"Removed stale temp file {path}")
                except OSError as e:
                    logger.warning(f"Could not remove {path}: {e}")
        return removed
