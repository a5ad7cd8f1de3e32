from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MIB = 1024 * 1024


class ThumbnailAspectRatio(str, Enum):
    WIDE = "16:9"
    SQUARE = "1:1"
    PORTRAIT = "9:16"
    ORIGINAL = "original"


class GeneralConfig(BaseModel):
    extensions: List[str] = Field(default_factory=lambda: [".mp4", ".mov", ".avi", ".m4v"])
    output_suffix: str = "_opt"
    log_path: Optional[str] = None
    debug: bool = False

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v]


class OptimizationConfig(BaseModel):
    """Per-job encode and thumbnail settings. Frozen once a job is submitted."""

    model_config = ConfigDict(frozen=True)

    target_size_bytes: int = Field(default=int(1.5 * MIB), gt=0)
    max_limit_bytes: int = Field(default=2 * MIB, gt=0)
    audio_bitrate_bps: int = Field(default=128_000, gt=0)
    min_video_bitrate_bps: int = Field(default=300_000, gt=0)
    target_width_px: int = Field(default=720, gt=0)
    thumbnail_width_px: int = Field(default=1000, gt=0)
    thumbnail_offset_seconds: float = Field(default=1.0, gt=0)
    thumbnail_target_size_bytes: int = Field(default=100 * 1024, gt=0)  # advisory only
    thumbnail_aspect_ratio: ThumbnailAspectRatio = ThumbnailAspectRatio.ORIGINAL
    thumbnail_face_detection: bool = False

    @model_validator(mode="after")
    def validate_budget(self):
        if self.target_size_bytes > self.max_limit_bytes:
            raise ValueError("target_size_bytes must be <= max_limit_bytes")
        return self


class EngineConfig(BaseModel):
    """Engine binaries, timeouts and reset policy."""

    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    scratch_dir: Optional[str] = None
    preset: str = "ultrafast"
    load_timeout_seconds: float = Field(default=30.0, gt=0)
    base_timeout_seconds: float = Field(default=60.0, gt=0)
    per_minute_timeout_seconds: float = Field(default=120.0, gt=0)
    max_read_timeout_seconds: float = Field(default=15.0, gt=0)
    wave_size: int = Field(default=5, ge=1)
    max_engine_attempts: int = Field(default=2, ge=1)
    reset_every_jobs: Optional[int] = Field(default=None, ge=1)
    teardown_delay_seconds: float = Field(default=0.2, ge=0.0)
    settle_seconds: float = Field(default=1.0, ge=0.0)

    def encode_timeout(self, duration_seconds: float) -> float:
        return self.base_timeout_seconds + (duration_seconds / 60.0) * self.per_minute_timeout_seconds

    def write_timeout(self, size_bytes: int) -> float:
        # 10s per MiB, clamped to [20s, 120s]
        return max(20.0, min(120.0, (size_bytes / MIB) * 10.0))

    def probe_timeout(self, size_bytes: int) -> float:
        return max(30.0, min(120.0, 30.0 + (size_bytes / MIB) * 2.0))


class ThumbnailConfig(BaseModel):
    brightness_threshold: float = Field(default=30.0, ge=0.0, le=255.0)
    search_step_seconds: float = Field(default=0.5, gt=0)
    search_window_seconds: float = Field(default=5.0, gt=0)
    max_search_seconds: float = Field(default=10.0, gt=0)
    selection_timeout_seconds: float = Field(default=15.0, gt=0)
    face_model_timeout_seconds: float = Field(default=15.0, gt=0)
    analysis_max_width_px: int = Field(default=320, ge=16)
    sample_step: int = Field(default=16, ge=1)
    jpeg_quality: int = Field(default=90, ge=1, le=100)

    @model_validator(mode="after")
    def validate_window(self):
        if self.search_window_seconds > self.max_search_seconds:
            raise ValueError("search_window_seconds must be <= max_search_seconds")
        return self


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    optimization: OptimizationConfig = Field(default_factory=OptimizationConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    thumbnails: ThumbnailConfig = Field(default_factory=ThumbnailConfig)
