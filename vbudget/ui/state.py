import threading
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional
from vbudget.domain.models import EngineState, Job


class UIState:
    """Thread-safe state for the console progress display."""

    def __init__(self, activity_feed_max_items: int = 5):
        self._lock = threading.RLock()

        # Counters
        self.queued_count = 0
        self.completed_count = 0
        self.failed_count = 0
        self.over_budget_count = 0
        self.thumbnails_count = 0

        # Bytes tracking
        self.total_input_bytes = 0
        self.total_output_bytes = 0

        # Job lists
        self.active_job: Optional[Job] = None
        self.active_progress = 0
        self.recent_jobs = deque(maxlen=activity_feed_max_items)
        self.job_start_times: Dict[str, datetime] = {}  # job id -> start time

        # Waves / engine
        self.current_wave = 0
        self.wave_count = 0
        self.engine_state: EngineState = EngineState.UNLOADED
        self.engine_generation = 0
        self.engine_resets = 0

        self.processing_start_time: Optional[datetime] = None
        self.finished = False
        self.last_action: str = ""

    @property
    def space_saved_bytes(self) -> int:
        with self._lock:
            return max(0, self.total_input_bytes - self.total_output_bytes)

    @property
    def compression_ratio(self) -> float:
        with self._lock:
            if self.total_input_bytes == 0:
                return 0.0
            return self.total_output_bytes / self.total_input_bytes

    def set_active_job(self, job: Job):
        with self._lock:
            self.active_job = job
            self.active_progress = 0
            self.job_start_times[job.id] = datetime.now()
            if self.processing_start_time is None:
                self.processing_start_time = datetime.now()

    def _clear_active(self, job: Job):
        if self.active_job is not None and self.active_job.id == job.id:
            self.active_job = None
            self.active_progress = 0
        self.job_start_times.pop(job.id, None)

    def add_completed_job(self, job: Job):
        with self._lock:
            self.completed_count += 1
            self.total_input_bytes += job.size_bytes
            if job.result is not None:
                self.total_output_bytes += job.result.encoded_size_bytes
                self.thumbnails_count += len(job.result.thumbnails)
                if job.result.size_budget_exceeded:
                    self.over_budget_count += 1
            self.recent_jobs.appendleft(job)
            self._clear_active(job)

    def add_failed_job(self, job: Job):
        with self._lock:
            self.failed_count += 1
            self.recent_jobs.appendleft(job)
            self._clear_active(job)

    def mark_retried(self, job: Job):
        with self._lock:
            self.failed_count = max(0, self.failed_count - 1)

    def set_last_action(self, message: str):
        with self._lock:
            self.last_action = message

    def snapshot_recent(self) -> List[Job]:
        with self._lock:
            return list(self.recent_jobs)
