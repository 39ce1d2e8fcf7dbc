import subprocess
import re
import shlex
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Dict, Iterator, List, Optional, Tuple
from pydantic import BaseModel
from vtc.domain.errors import SpawnFailed
from vtc.domain.models import HwMode

logger = logging.getLogger(__name__)

# Lines of ffmpeg stderr kept for diagnostics when the encode fails
DIAGNOSTIC_LINES = 50

QSV_PRESETS = ["veryslow", "slower", "slow", "medium", "fast", "faster", "veryfast"]
MAX_EFFORT = 13

_TIME_REGEX = re.compile(r"^(\d+):(\d+):(\d+(?:\.\d+)?)$")


class EncodeOptions(BaseModel):
    quality: int
    effort: int
    hw_mode: HwMode = HwMode.SOFTWARE


class ProgressEvent(BaseModel):
    """One `-progress` block: elapsed output position plus a few extras."""
    position_us: int
    frame: Optional[int] = None
    speed: Optional[str] = None
    finished: bool = False


class EncodeResult(BaseModel):
    returncode: int
    diagnostics: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _scaled_effort(effort: int, steps: int) -> int:
    """Map effort 0..MAX_EFFORT (0 = slowest) onto 0..steps-1."""
    effort = max(0, min(MAX_EFFORT, effort))
    return int(round(effort * (steps - 1) / MAX_EFFORT))


def _software_template(options: EncodeOptions) -> Tuple[List[str], List[str]]:
    return [], [
        "-c:v", "libsvtav1",
        "-preset", str(options.effort),
        "-crf", str(options.quality),
    ]


def _nvenc_template(options: EncodeOptions) -> Tuple[List[str], List[str]]:
    preset = 7 - _scaled_effort(options.effort, 7)
    return ["-hwaccel", "cuda"], [
        "-c:v", "av1_nvenc",
        "-preset", f"p{preset}",
        "-cq", str(options.quality),
        "-b:v", "0",
    ]


def _qsv_template(options: EncodeOptions) -> Tuple[List[str], List[str]]:
    preset = QSV_PRESETS[_scaled_effort(options.effort, len(QSV_PRESETS))]
    return ["-hwaccel", "qsv"], [
        "-c:v", "av1_qsv",
        "-preset", preset,
        "-global_quality", str(options.quality),
    ]


ENCODER_TEMPLATES: Dict[HwMode, Callable[[EncodeOptions], Tuple[List[str], List[str]]]] = {
    HwMode.SOFTWARE: _software_template,
    HwMode.NVENC: _nvenc_template,
    HwMode.QSV: _qsv_template,
}


def parse_position_us(values: Dict[str, str]) -> Optional[int]:
    """Elapsed output position from a progress block, in microseconds."""
    # out_time_ms is reported in microseconds as well (long-standing ffmpeg quirk)
    for key in ("out_time_us", "out_time_ms"):
        raw = values.get(key)
        if raw is None:
            continue
        try:
            return int(raw)
        except ValueError:
            continue
    raw = values.get("out_time")
    if raw:
        match = _TIME_REGEX.match(raw.strip())
        if match:
            h, m, s = match.groups()
            return int(round((int(h) * 3600 + int(m) * 60 + float(s)) * 1_000_000))
    return None


class ProgressParser:
    """Incremental parser for ffmpeg `-progress` key=value output."""

    def __init__(self):
        self._values: Dict[str, str] = {}

    def feed(self, line: str) -> Optional[ProgressEvent]:
        line = line.strip()
        if not line or "=" not in line:
            return None
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if key != "progress":
            self._values[key] = value
            return None

        values, self._values = self._values, {}
        position = parse_position_us(values)
        if position is None:
            return None
        frame = values.get("frame")
        return ProgressEvent(
            position_us=position,
            frame=int(frame) if frame and frame.isdigit() else None,
            speed=values.get("speed"),
            finished=(value == "end"),
        )


class EncodeProcess:
    """A running ffmpeg child: iterate progress(), then wait().

    Stderr is drained on a background thread so a chatty encoder never blocks
    on a full pipe while we are reading progress from stdout.
    """

    def __init__(self, process: subprocess.Popen, command: List[str]):
        self.command = command
        self._process = process
        self._stdout_drained = False
        self._stderr_tail: Deque[str] = deque(maxlen=DIAGNOSTIC_LINES)
        self._stderr_thread = threading.Thread(target=self._drain_stderr, daemon=True)
        self._stderr_thread.start()

    @property
    def pid(self) -> Optional[int]:
        return getattr(self._process, "pid", None)

    def _drain_stderr(self):
        stream = self._process.stderr
        if stream is None:
            return
        try:
            for line in stream:
                line = line.rstrip()
                if line:
                    self._stderr_tail.append(line)
        except (OSError, ValueError) as e:
            # Pipe closed under us after kill()
            logger.debug(f"stderr drain stopped: {e}")

    def progress(self) -> Iterator[ProgressEvent]:
        """Yields progress events until ffmpeg closes stdout."""
        parser = ProgressParser()
        stream = self._process.stdout
        if stream is not None:
            for line in stream:
                event = parser.feed(line)
                if event is not None:
                    yield event
        self._stdout_drained = True

    def wait(self) -> EncodeResult:
        """Drains remaining output, reaps the child and returns its result."""
        if not self._stdout_drained and self._process.stdout is not None:
            for _ in self._process.stdout:
                pass
            self._stdout_drained = True
        returncode = self._process.wait()
        if returncode is None:
            returncode = self._process.returncode
        self._stderr_thread.join(timeout=5)
        return EncodeResult(returncode=returncode, diagnostics="\n".join(self._stderr_tail))

    def kill(self):
        try:
            self._process.kill()
        except OSError:
            pass


class FFmpegAdapter:
    """Wrapper around ffmpeg for AV1 re-encoding."""

    def __init__(self, binary: str = "ffmpeg"):
        self.binary = binary
        self.logger = logging.getLogger(__name__)

    def build_command(self, source: Path, output: Path, options: EncodeOptions) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        input_args, video_args = ENCODER_TEMPLATES[options.hw_mode](options)
        cmd = [
            self.binary,
            "-hide_banner",
            "-nostdin",
            "-y",  # Overwrite stale temp output from an interrupted run
        ]
        cmd.extend(input_args)
        cmd.extend(["-i", str(source)])
        cmd.extend(video_args)
        cmd.extend([
            "-c:a", "copy",
            "-progress", "pipe:1",
            "-nostats",
            "-loglevel", "error",
            str(output),
        ])
        return cmd

    @staticmethod
    def format_command(cmd: List[str]) -> str:
        return " ".join(shlex.quote(part) for part in cmd)

    def spawn(self, source: Path, output: Path, options: EncodeOptions) -> EncodeProcess:
        """Starts ffmpeg; raises SpawnFailed if the binary cannot be executed."""
        cmd = self.build_command(source, output, options)
        self.logger.debug(f"FFMPEG_CMD: {self.format_command(cmd)}")
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",  # Diagnostics may carry non-UTF-8 file names or tags
                bufsize=1,
            )
        except OSError as e:
            raise SpawnFailed(source, str(e)) from e
        return EncodeProcess(process, cmd)
