from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
from vtc.domain.models import HwMode

ORDER_CHOICES = ("size-desc", "difficulty", "name")

def _normalize_extensions(values: List[str]) -> List[str]:
    return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in values]

def validate_order(value: str) -> str:
    mode = (value or "").strip().lower()
    if mode == "size":
        mode = "size-desc"
    if mode not in ORDER_CHOICES:
        allowed = ", ".join(ORDER_CHOICES)
        raise ValueError(f"Unsupported order '{value}'. Use one of: {allowed}.")
    return mode

class GeneralConfig(BaseModel):
    database: str = "transcoder.sqlite3"
    log_path: Optional[str] = None
    debug: bool = False
    tmp_marker: str = Field(default="_tmp", min_length=1)
    output_marker: str = Field(default="_av1", min_length=1)
    # Container for temp and sidecar outputs; null keeps the source container
    output_container: Optional[str] = ".mp4"

    @field_validator("output_marker")
    @classmethod
    def validate_markers_differ(cls, v: str, info) -> str:
        if v == info.data.get("tmp_marker"):
            raise ValueError("output_marker must differ from tmp_marker")
        return v

    @field_validator("output_container")
    @classmethod
    def normalize_container(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip().lower()
        return v if v.startswith(".") else f".{v}"

class ScanConfig(BaseModel):
    extensions: List[str] = Field(
        default_factory=lambda: [".mp4", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".webm", ".m4v"]
    )
    exclude: List[str] = Field(default_factory=list)
    min_size_bytes: int = Field(default=0, ge=0)
    probe_workers: int = Field(default=4, gt=0)

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("extensions must not be empty")
        return _normalize_extensions(v)

class TranscodeConfig(BaseModel):
    quality: int = Field(default=30, ge=0, le=63)
    effort: int = Field(default=6, ge=0, le=13)
    hw_mode: HwMode = HwMode.SOFTWARE
    parallelism: int = Field(default=1, gt=0)
    limit: Optional[int] = Field(default=None, gt=0)
    dry_run: bool = False
    replace: bool = False
    record_rejects: bool = False
    order: str = "size-desc"
    skip_codecs: List[str] = Field(default_factory=lambda: ["av1", "hevc", "vp9"])

    @field_validator("order")
    @classmethod
    def validate_order_mode(cls, v: str) -> str:
        return validate_order(v)

    @field_validator("skip_codecs")
    @classmethod
    def normalize_codecs(cls, v: List[str]) -> List[str]:
        return [codec.strip().lower() for codec in v if codec.strip()]

class UiConfig(BaseModel):
    """UI display configuration."""
    enabled: bool = True
    active_jobs_max_display: int = Field(default=8, ge=1, le=16)
    recent_max_items: int = Field(default=5, ge=1, le=20)

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    transcode: TranscodeConfig = Field(default_factory=TranscodeConfig)
    ui: UiConfig = Field(default_factory=UiConfig)
