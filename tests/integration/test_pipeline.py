"""Scan then transcode through the real adapters, with ffprobe/ffmpeg processes faked."""
import json
import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch
from vtc.config.models import AppConfig
from vtc.domain.models import FileStatus
from vtc.infrastructure.event_bus import EventBus
from vtc.infrastructure.ffmpeg import FFmpegAdapter
from vtc.infrastructure.ffprobe import FFprobeAdapter
from vtc.infrastructure.file_scanner import FileScanner
from vtc.pipeline.collector import Collector
from vtc.pipeline.orchestrator import Orchestrator
from conftest import make_source

pytestmark = pytest.mark.integration

PROBES = {
    "movie.mkv": {"codec_name": "h264", "duration": "3.0"},
    "already.mp4": {"codec_name": "av1", "duration": "2.0"},
    "broken.mp4": None,
}


def fake_ffprobe_run(cmd, **kwargs):
    name = Path(cmd[-1]).name
    stream = PROBES.get(name)
    if stream is None:
        return MagicMock(returncode=1, stdout="", stderr="Invalid data found when processing input")
    doc = {
        "streams": [{"codec_type": "video", "width": 1280, "height": 720, "r_frame_rate": "25/1", **stream}],
        "format": {"duration": stream["duration"], "bit_rate": "4000000"},
    }
    return MagicMock(returncode=0, stdout=json.dumps(doc), stderr="")


def fake_ffmpeg_popen(commands):
    def popen(cmd, **kwargs):
        commands.append(cmd)
        Path(cmd[-1]).write_bytes(b"\1" * 16)
        process = MagicMock()
        process.pid = 999
        process.stdout = iter([
            "frame=25\n", "out_time_us=1000000\n", "progress=continue\n",
            "frame=75\n", "out_time_us=3000000\n", "progress=end\n",
        ])
        process.stderr = iter([])
        process.wait.return_value = 0
        return process
    return popen


def test_scan_then_transcode(tmp_path, ledger):
    make_source(tmp_path, "movie.mkv", 4096)
    make_source(tmp_path, "already.mp4", 2048)
    make_source(tmp_path, "broken.mp4", 1024)
    config = AppConfig(transcode={"hw_mode": "nvenc", "quality": 32}, ui={"enabled": False})
    bus = EventBus()

    with patch("vtc.infrastructure.ffprobe.subprocess.run", side_effect=fake_ffprobe_run):
        scan = Collector(
            ledger=ledger,
            file_scanner=FileScanner(extensions=config.scan.extensions),
            ffprobe_adapter=FFprobeAdapter(),
            event_bus=bus,
        ).run(tmp_path)

    assert (scan.found, scan.probed, scan.probe_failed, scan.inserted) == (3, 2, 1, 2)

    commands = []
    with patch("vtc.infrastructure.ffmpeg.subprocess.Popen", side_effect=fake_ffmpeg_popen(commands)):
        summary = Orchestrator(config=config, ledger=ledger, ffmpeg_adapter=FFmpegAdapter(), event_bus=bus).run()

    # av1 source is never selected
    assert summary.selected == 1
    assert summary.succeeded == 1
    assert summary.progress_ms == 3000 == summary.expected_ms

    (cmd,) = commands
    assert cmd[cmd.index("-c:v") + 1] == "av1_nvenc"
    assert cmd[cmd.index("-cq") + 1] == "32"
    assert cmd[-1].endswith("movie_tmp.mp4")

    statuses = {r.path.name: r.status for r in ledger.list()}
    assert statuses == {"movie.mkv": FileStatus.SUCCESS, "already.mp4": FileStatus.PENDING}
    assert (tmp_path / "movie_av1.mp4").stat().st_size == 16
    assert not (tmp_path / "movie_tmp.mp4").exists()

    # A second scan must not pick up the sidecar output
    with patch("vtc.infrastructure.ffprobe.subprocess.run", side_effect=fake_ffprobe_run):
        rescan = Collector(
            ledger=ledger,
            file_scanner=FileScanner(extensions=config.scan.extensions),
            ffprobe_adapter=FFprobeAdapter(),
            event_bus=bus,
        ).run(tmp_path)
    assert rescan.found == 3
    assert rescan.inserted == 0
