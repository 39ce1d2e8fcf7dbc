import subprocess
import json
import logging
import math
from pathlib import Path
from typing import Dict, Any, Optional
from vtc.domain.errors import ProbeFailed
from vtc.domain.models import ProbeInfo

class FFprobeAdapter:
    """Wrapper around ffprobe to extract container and stream information."""

    def __init__(self, binary: str = "ffprobe"):
        self.binary = binary
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        # "nan" and "inf" parse as floats but are not usable measurements
        return number if math.isfinite(number) else 0.0

    @classmethod
    def _to_int(cls, value: Any) -> int:
        return int(cls._to_float(value))

    @classmethod
    def _parse_fraction(cls, value: Any) -> float:
        """Parse ffprobe rates like '30000/1001'; bad input or 0 denominator gives 0."""
        if value is None:
            return 0.0
        text = str(value).strip()
        if "/" not in text:
            return cls._to_float(text)
        num_text, den_text = text.split("/", 1)
        den = cls._to_float(den_text)
        if den == 0:
            return 0.0
        return cls._to_float(num_text) / den

    def build_command(self, file_path: Path) -> list:
        return [
            self.binary,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(file_path),
        ]

    def run(self, file_path: Path) -> Dict[str, Any]:
        """Executes ffprobe and returns the decoded JSON document."""
        try:
            result = subprocess.run(
                self.build_command(file_path),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",  # Non-UTF-8 file names and tags must not abort the probe
            )
        except OSError as e:
            raise ProbeFailed(file_path, str(e)) from e
        if result.returncode != 0:
            raise ProbeFailed(
                file_path,
                (result.stderr or "").strip() or f"exit code {result.returncode}",
                returncode=result.returncode,
                stderr=result.stderr or "",
                stdout=result.stdout or "",
            )
        try:
            data = json.loads(result.stdout)
        except (TypeError, ValueError) as e:
            raise ProbeFailed(
                file_path,
                f"unparsable output: {e}",
                returncode=result.returncode,
                stderr=result.stderr or "",
                stdout=result.stdout or "",
            ) from e
        if not isinstance(data, dict):
            raise ProbeFailed(file_path, "unexpected JSON document", returncode=result.returncode)
        return data

    def parse(self, data: Dict[str, Any]) -> ProbeInfo:
        """Builds ProbeInfo from ffprobe JSON. Missing fields degrade to zero."""
        streams = data.get("streams") or []
        video_stream: Optional[Dict[str, Any]] = next(
            (s for s in streams if s.get("codec_type") == "video"), None
        )
        fmt = data.get("format") or {}

        duration = self._to_float(fmt.get("duration"))
        bitrate = self._to_int(fmt.get("bit_rate"))

        if video_stream is None:
            return ProbeInfo(duration=duration, bitrate=bitrate)

        if duration <= 0:
            duration = self._to_float(video_stream.get("duration"))
        if bitrate <= 0:
            bitrate = self._to_int(video_stream.get("bit_rate"))

        frame_rate = self._parse_fraction(video_stream.get("r_frame_rate"))
        if frame_rate <= 0:
            frame_rate = self._parse_fraction(video_stream.get("avg_frame_rate"))

        return ProbeInfo(
            duration=duration,
            width=self._to_int(video_stream.get("width")),
            height=self._to_int(video_stream.get("height")),
            bitrate=bitrate,
            frame_rate=frame_rate,
            codec=str(video_stream.get("codec_name") or ""),
        )

    def probe(self, file_path: Path) -> ProbeInfo:
        self.logger.debug(f"FFPROBE: {file_path}")
        data = self.run(file_path)
        try:
            return self.parse(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise ProbeFailed(file_path, f"unexpected ffprobe output: {e}") from e
