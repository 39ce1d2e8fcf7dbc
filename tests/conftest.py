import stat
import sys
import pytest
import yaml
from pathlib import Path
from typing import List, Optional
from vtc.config.models import AppConfig
from vtc.domain.models import FileRecord, ProbeInfo
from vtc.infrastructure.event_bus import EventBus
from vtc.infrastructure.ffmpeg import EncodeResult, ProgressEvent
from vtc.infrastructure.ledger import FileLedger

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={"debug": False},
        scan={"extensions": [".mp4", ".mkv"], "min_size_bytes": 0},
        transcode={"quality": 30, "effort": 6, "parallelism": 1},
        ui={"enabled": False},
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vtc.yaml"

    content = {
        'general': {'database': str(tmp_path / "ledger.sqlite3"), 'debug': False},
        'scan': {'extensions': ['mp4', 'MOV'], 'exclude': ['@eaDir'], 'min_size_bytes': 10},
        'transcode': {'quality': 28, 'effort': 4, 'hw_mode': 'nvenc', 'parallelism': 2},
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus / Ledger Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def ledger(tmp_path):
    """Returns an open FileLedger on a temporary database."""
    with FileLedger(tmp_path / "ledger.sqlite3") as led:
        yield led

def make_probe(duration: float = 10.0, codec: str = "h264", **kwargs) -> ProbeInfo:
    params = dict(width=1920, height=1080, bitrate=8_000_000, frame_rate=30.0)
    params.update(kwargs)
    return ProbeInfo(duration=duration, codec=codec, **params)

def make_source(directory: Path, name: str, size: int) -> Path:
    path = directory / name
    path.write_bytes(b"\0" * size)
    return path

def add_records(ledger: FileLedger, entries) -> List[FileRecord]:
    """Inserts (path, size, probe) entries and returns the stored records."""
    ledger.insert_batch(
        FileRecord(path=path, file_size=size, probe_info=probe) for path, size, probe in entries
    )
    return ledger.list()

def make_fake_binary(directory: Path, name: str, body: str) -> Path:
    """Writes an executable Python script that stands in for ffmpeg or ffprobe."""
    path = directory / name
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path

# ============================================================================
# Fake ffmpeg
# ============================================================================

class FakeEncodeProcess:
    """Stand-in for EncodeProcess: replays positions, writes output on success."""

    def __init__(
        self,
        output: Path,
        positions: List[int],
        returncode: int = 0,
        output_size: int = 10,
        diagnostics: str = "",
        on_progress=None,
    ):
        self.output = output
        self.positions = positions
        self.returncode = returncode
        self.output_size = output_size
        self.diagnostics = diagnostics
        self.on_progress = on_progress
        self.killed = False
        self.pid = 4242

    def progress(self):
        for position in self.positions:
            if self.killed:
                break
            if self.on_progress:
                self.on_progress(self)
            yield ProgressEvent(position_us=position)

    def wait(self) -> EncodeResult:
        if self.killed:
            return EncodeResult(returncode=-9, diagnostics="killed")
        if self.returncode == 0 and self.output_size is not None:
            self.output.write_bytes(b"\1" * self.output_size)
        return EncodeResult(returncode=self.returncode, diagnostics=self.diagnostics)

    def kill(self):
        self.killed = True


class FakeFFmpeg:
    """Records spawns; `script(source)` returns kwargs for FakeEncodeProcess."""

    def __init__(self, script=None):
        self.script = script or (lambda source: {"positions": []})
        self.spawned: List[Path] = []
        self.processes: List[FakeEncodeProcess] = []

    def build_command(self, source, output, options):
        return ["ffmpeg", "-i", str(source), str(output)]

    @staticmethod
    def format_command(cmd):
        return " ".join(cmd)

    def spawn(self, source, output, options):
        self.spawned.append(source)
        process = FakeEncodeProcess(output, **self.script(source))
        self.processes.append(process)
        return process

@pytest.fixture
def fake_ffmpeg():
    return FakeFFmpeg()
