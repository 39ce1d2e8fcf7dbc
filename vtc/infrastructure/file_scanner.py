import os
import logging
from pathlib import Path
from typing import List, Optional
from vtc.domain.errors import DiscoveryError

logger = logging.getLogger(__name__)

class FileScanner:
    """Recursively scans for video files under a file or directory root."""

    def __init__(
        self,
        extensions: List[str],
        min_size_bytes: int = 0,
        exclude: Optional[List[str]] = None,
        tmp_marker: str = "_tmp",
        output_marker: str = "_av1",
    ):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.min_size_bytes = min_size_bytes
        self.exclude = list(exclude or [])
        self.tmp_marker = tmp_marker
        self.output_marker = output_marker

    def _is_excluded(self, relative: str) -> bool:
        """Exclusion patterns are substrings of the path below the scan root."""
        return any(pattern in relative for pattern in self.exclude)

    def _is_own_artifact(self, path: Path) -> bool:
        """Temp and sidecar files written by a transcode run."""
        stem = path.stem
        return stem.endswith(self.tmp_marker) or stem.endswith(self.output_marker)

    def _accept(self, file_path: Path, relative: str) -> bool:
        if file_path.suffix.lower() not in self.extensions:
            return False
        if self._is_own_artifact(file_path) or self._is_excluded(relative):
            return False
        try:
            if not file_path.is_file():
                return False
            return file_path.stat().st_size >= self.min_size_bytes
        except OSError as e:
            logger.warning(str(DiscoveryError(file_path, str(e))))
            return False

    def scan(self, root: Path) -> List[Path]:
        """Returns sorted, absolute, de-duplicated candidate paths.

        Unreadable directories are logged and skipped; the walk continues.
        """
        root = Path(root).resolve()
        if root.is_file():
            return [root] if self._accept(root, root.name) else []

        def on_error(err: OSError):
            logger.warning(str(DiscoveryError(Path(err.filename or root), err.strerror or str(err))))

        found = set()
        for dirpath, dirs, files in os.walk(str(root), onerror=on_error):
            dir_path = Path(dirpath)
            rel_dir = os.path.relpath(dirpath, str(root))
            rel_dir = "" if rel_dir == "." else rel_dir + os.sep
            # Ensure deterministic traversal and prune excluded branches
            dirs[:] = sorted(d for d in dirs if not self._is_excluded(rel_dir + d))
            for file_name in sorted(files):
                file_path = dir_path / file_name
                if self._accept(file_path, rel_dir + file_name):
                    found.add(file_path.resolve())
        return sorted(found)
