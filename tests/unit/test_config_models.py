import pytest
from pathlib import Path
from pydantic import ValidationError
from vtc.config.loader import load_config
from vtc.config.models import AppConfig, GeneralConfig, ScanConfig, TranscodeConfig, UiConfig, validate_order
from vtc.domain.models import HwMode

def test_defaults():
    config = AppConfig()

    assert config.general.database == "transcoder.sqlite3"
    assert config.general.tmp_marker == "_tmp"
    assert config.general.output_marker == "_av1"
    assert config.general.output_container == ".mp4"
    assert config.scan.extensions == [".mp4", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".webm", ".m4v"]
    assert config.transcode.hw_mode == HwMode.SOFTWARE
    assert config.transcode.parallelism == 1
    assert config.transcode.order == "size-desc"
    assert config.transcode.skip_codecs == ["av1", "hevc", "vp9"]
    assert config.ui.enabled is True

def test_extensions_are_normalized():
    scan = ScanConfig(extensions=["MP4", ".Mkv"])
    assert scan.extensions == [".mp4", ".mkv"]

def test_empty_extensions_rejected():
    with pytest.raises(ValidationError):
        ScanConfig(extensions=[])

@pytest.mark.parametrize("field,value", [
    ("quality", 64),
    ("quality", -1),
    ("effort", 14),
    ("parallelism", 0),
    ("limit", 0),
])
def test_transcode_bounds(field, value):
    with pytest.raises(ValidationError):
        TranscodeConfig(**{field: value})

def test_hw_mode_from_string():
    assert TranscodeConfig(hw_mode="qsv").hw_mode == HwMode.QSV
    with pytest.raises(ValidationError):
        TranscodeConfig(hw_mode="vaapi")

def test_skip_codecs_lowercased():
    assert TranscodeConfig(skip_codecs=["AV1", " HEVC ", ""]).skip_codecs == ["av1", "hevc"]

def test_markers_must_differ():
    with pytest.raises(ValidationError):
        GeneralConfig(tmp_marker="_x", output_marker="_x")

def test_output_container_normalized():
    assert GeneralConfig(output_container="MKV").output_container == ".mkv"
    assert GeneralConfig(output_container=".webm").output_container == ".webm"
    assert GeneralConfig(output_container="").output_container is None
    assert GeneralConfig(output_container=None).output_container is None

def test_validate_order():
    assert validate_order("size") == "size-desc"
    assert validate_order("Difficulty") == "difficulty"
    with pytest.raises(ValueError, match="Unsupported order"):
        validate_order("random")

def test_ui_bounds():
    with pytest.raises(ValidationError):
        UiConfig(active_jobs_max_display=0)

def test_load_config_none_returns_defaults():
    assert load_config(None) == AppConfig()

def test_load_config_from_yaml(config_yaml_path):
    config = load_config(config_yaml_path)

    assert config.scan.extensions == [".mp4", ".mov"]
    assert config.scan.exclude == ["@eaDir"]
    assert config.scan.min_size_bytes == 10
    assert config.transcode.quality == 28
    assert config.transcode.hw_mode == HwMode.NVENC
    assert config.transcode.parallelism == 2
    # Untouched sections keep their defaults
    assert config.ui.recent_max_items == 5

def test_load_config_empty_file(tmp_path):
    conf = tmp_path / "empty.yaml"
    conf.write_text("")
    assert load_config(conf) == AppConfig()

def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")

def test_load_config_invalid_values(tmp_path):
    conf = tmp_path / "bad.yaml"
    conf.write_text("transcode:\n  quality: 99\n")
    with pytest.raises(ValidationError):
        load_config(conf)

def test_example_config_loads():
    example = Path(__file__).resolve().parents[2] / "conf" / "vtc.yaml"
    config = load_config(example)
    assert config == AppConfig()
