from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field
from vbudget.config.models import OptimizationConfig


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class EngineState(str, Enum):
    UNLOADED = "UNLOADED"
    LOADING = "LOADING"
    READY = "READY"
    RESETTING = "RESETTING"
    TERMINATED = "TERMINATED"


class FaceBox(BaseModel):
    x: float
    y: float
    width: float
    height: float


class CropRect(BaseModel):
    x: int
    y: int
    width: int
    height: int


class ThumbnailCandidate(BaseModel):
    timestamp_seconds: float
    brightness_score: float
    is_acceptable: bool


class EncodeAttempt(BaseModel):
    attempt_index: int
    candidate_target_size_bytes: float
    candidate_video_bitrate_bps: int
    produced_size_bytes: Optional[int] = None


class EncodeResult(BaseModel):
    data: bytes
    size_bytes: int
    video_bitrate_bps: int
    bitrate_kbps: int
    attempts: List[EncodeAttempt] = Field(default_factory=list)
    size_budget_exceeded: bool = False


class Thumbnail(BaseModel):
    timestamp_seconds: float
    image_bytes: bytes
    width: int
    height: int
    faces_detected: int = 0


class JobResult(BaseModel):
    encoded_bytes: bytes
    encoded_size_bytes: int
    achieved_bitrate_kbps: int
    duration_seconds: float
    thumbnails: List[Thumbnail] = Field(default_factory=list)
    size_budget_exceeded: bool = False
    encode_attempts: int = 1


class JobError(BaseModel):
    kind: str
    message: str


class Job(BaseModel):
    id: str
    source_path: Path
    size_bytes: int = 0
    config: OptimizationConfig
    duration_seconds: Optional[float] = None
    status: JobStatus = JobStatus.PENDING
    progress_percent: float = 0.0
    result: Optional[JobResult] = None
    error: Optional[JobError] = None

    @property
    def name(self) -> str:
        return self.source_path.name

    def mark_failed(self, kind: str, message: str) -> None:
        self.status = JobStatus.FAILED
        self.result = None
        self.error = JobError(kind=kind, message=message)

    def reset_for_retry(self) -> None:
        """FAILED -> PENDING. Only ever called on an explicit retry request."""
        if self.status != JobStatus.FAILED:
            raise ValueError(f"Job {self.id} is {self.status.value}, only FAILED jobs can be retried")
        self.status = JobStatus.PENDING
        self.progress_percent = 0.0
        self.error = None
