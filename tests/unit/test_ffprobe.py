import json
import sys
import pytest
from pathlib import Path
from unittest.mock import patch, MagicMock
from vtc.domain.errors import ProbeFailed
from vtc.infrastructure.ffprobe import FFprobeAdapter
from conftest import make_fake_binary


@pytest.fixture
def ffprobe():
    return FFprobeAdapter()


def _completed(stdout="", stderr="", returncode=0):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


SAMPLE = {
    "streams": [
        {"codec_type": "audio", "codec_name": "aac"},
        {
            "codec_type": "video",
            "codec_name": "h264",
            "width": 1920,
            "height": 1080,
            "r_frame_rate": "30000/1001",
            "avg_frame_rate": "30000/1001",
            "duration": "12.000",
        },
    ],
    "format": {"duration": "12.345", "bit_rate": "8000000"},
}


def test_build_command(ffprobe):
    cmd = ffprobe.build_command(Path("/v/a.mp4"))
    assert cmd == [
        "ffprobe", "-v", "error", "-print_format", "json",
        "-show_format", "-show_streams", "/v/a.mp4",
    ]


def test_probe_parses_video_stream(ffprobe):
    with patch("subprocess.run", return_value=_completed(json.dumps(SAMPLE))) as mock_run:
        info = ffprobe.probe(Path("/v/a.mp4"))

    assert mock_run.call_args[0][0][-1] == "/v/a.mp4"
    assert info.codec == "h264"
    assert info.width == 1920
    assert info.height == 1080
    assert info.duration == pytest.approx(12.345)
    assert info.bitrate == 8_000_000
    assert info.frame_rate == pytest.approx(29.97, rel=1e-3)


def test_parse_falls_back_to_stream_duration_and_avg_rate(ffprobe):
    data = {
        "streams": [{
            "codec_type": "video",
            "codec_name": "mpeg4",
            "duration": "5.5",
            "bit_rate": "1000",
            "r_frame_rate": "0/0",
            "avg_frame_rate": "25/1",
        }],
        "format": {},
    }

    info = ffprobe.parse(data)

    assert info.duration == pytest.approx(5.5)
    assert info.bitrate == 1000
    assert info.frame_rate == pytest.approx(25.0)


def test_parse_degrades_missing_and_non_numeric_fields(ffprobe):
    data = {
        "streams": [{"codec_type": "video", "width": "n/a", "r_frame_rate": "abc"}],
        "format": {"duration": "N/A", "bit_rate": None},
    }

    info = ffprobe.parse(data)

    assert info.duration == 0
    assert info.bitrate == 0
    assert info.width == 0
    assert info.height == 0
    assert info.frame_rate == 0
    assert info.codec == ""


def test_parse_zero_denominator_frame_rate(ffprobe):
    info = ffprobe.parse({"streams": [{"codec_type": "video", "r_frame_rate": "30/0"}], "format": {}})
    assert info.frame_rate == 0


def test_parse_without_video_stream_keeps_container_fields(ffprobe):
    info = ffprobe.parse({"streams": [{"codec_type": "audio"}], "format": {"duration": "3", "bit_rate": "64000"}})

    assert info.duration == 3.0
    assert info.bitrate == 64000
    assert info.codec == ""


def test_nonzero_exit_raises_probe_failed(ffprobe):
    with patch("subprocess.run", return_value=_completed(stderr="moov atom not found", returncode=1)):
        with pytest.raises(ProbeFailed, match="moov atom not found") as exc_info:
            ffprobe.probe(Path("/v/broken.mp4"))

    assert exc_info.value.returncode == 1
    assert exc_info.value.stderr == "moov atom not found"
    assert exc_info.value.path == Path("/v/broken.mp4")


def test_invalid_json_raises_probe_failed(ffprobe):
    with patch("subprocess.run", return_value=_completed(stdout="{ invalid json }")):
        with pytest.raises(ProbeFailed, match="unparsable output"):
            ffprobe.probe(Path("/v/a.mp4"))


def test_non_object_json_raises_probe_failed(ffprobe):
    with patch("subprocess.run", return_value=_completed(stdout="[1, 2]")):
        with pytest.raises(ProbeFailed):
            ffprobe.probe(Path("/v/a.mp4"))


def test_missing_binary_raises_probe_failed(ffprobe):
    with patch("subprocess.run", side_effect=FileNotFoundError("ffprobe")):
        with pytest.raises(ProbeFailed, match="ffprobe failed for"):
            ffprobe.probe(Path("/v/a.mp4"))


def test_parse_non_finite_numbers_degrade_to_zero(ffprobe):
    info = ffprobe.parse({
        "streams": [{"codec_type": "video", "codec_name": "h264", "width": "nan", "r_frame_rate": "inf/1"}],
        "format": {"duration": "inf", "bit_rate": "nan"},
    })

    assert info.duration == 0.0
    assert info.bitrate == 0
    assert info.width == 0
    assert info.frame_rate == 0.0


def test_unexpected_document_shape_raises_probe_failed(ffprobe):
    doc = {"streams": ["not-a-stream"], "format": {}}
    with patch("subprocess.run", return_value=_completed(json.dumps(doc))):
        with pytest.raises(ProbeFailed, match="unexpected ffprobe output"):
            ffprobe.probe(Path("/v/a.mp4"))


def test_run_decodes_output_leniently(ffprobe):
    with patch("subprocess.run", return_value=_completed(json.dumps(SAMPLE))) as mock_run:
        ffprobe.probe(Path("/v/a.mp4"))

    assert mock_run.call_args.kwargs["errors"] == "replace"


# Non-UTF-8 bytes in stderr for a broken file and in JSON tags for a good one
NON_UTF8_FFPROBE = r'''
import sys
if sys.argv[-1].endswith("bad.mp4"):
    sys.stderr.buffer.write(b"/media/caf\xe9/bad.mp4: Invalid data found when processing input\n")
    sys.exit(1)
sys.stdout.buffer.write(
    b'{"streams": [{"codec_type": "video", "codec_name": "h264", "width": 640, "height": 360,'
    b' "r_frame_rate": "25/1", "tags": {"title": "caf\xe9"}}],'
    b' "format": {"filename": "caf\xe9.mp4", "duration": "2.0", "bit_rate": "1000"}}'
)
'''


@pytest.mark.skipif(sys.platform == "win32", reason="needs an executable script")
def test_real_child_with_non_utf8_output(tmp_path):
    adapter = FFprobeAdapter(binary=str(make_fake_binary(tmp_path, "ffprobe", NON_UTF8_FFPROBE)))

    info = adapter.probe(tmp_path / "good.mp4")
    assert info.codec == "h264"
    assert info.duration == 2.0
    assert (info.width, info.height) == (640, 360)

    with pytest.raises(ProbeFailed, match="Invalid data found") as exc_info:
        adapter.probe(tmp_path / "bad.mp4")
    assert exc_info.value.returncode == 1
    assert "caf\ufffd" in exc_info.value.stderr
