"""Domain events for the encode-to-budget pipeline.

Events represent state changes and notifications that flow through the EventBus,
decoupling the scheduler and pipeline from the UI layer.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from typing import Optional
from pydantic import BaseModel
from .models import Job, EngineState


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class JobEvent(Event):
    """Base class for events related to a specific job."""

    job: Job


class JobQueued(JobEvent):
    """Emitted when a job is submitted to the orchestrator."""

    pass


class JobStarted(JobEvent):
    """Emitted when the pipeline begins working on a job."""

    pass


class JobProgressUpdated(JobEvent):
    """Emitted as the engine reports encode progress (0-100)."""

    progress_percent: float


class JobCompleted(JobEvent):
    """Emitted when a job finishes with a result (possibly over budget)."""

    pass


class JobFailed(JobEvent):
    """Emitted when a job reaches the FAILED state."""

    error_kind: str
    error_message: str


class JobRetried(JobEvent):
    """Emitted when a failed job is put back to PENDING by an explicit request."""

    pass


class WaveStarted(Event):
    wave_index: int  # 1-based
    wave_count: int
    jobs_in_wave: int


class WaveFinished(Event):
    wave_index: int
    wave_count: int
    completed: int = 0
    failed: int = 0


class EngineStateChanged(Event):
    """Emitted on every engine lifecycle transition."""

    state: EngineState
    generation: int
    reason: Optional[str] = None


class QueueCancelled(Event):
    """Emitted when not-yet-started jobs are dropped from the queue."""

    dropped: int


class ProcessingFinished(Event):
    """Emitted when a scheduling pass is over."""

    completed: int = 0
    failed: int = 0
