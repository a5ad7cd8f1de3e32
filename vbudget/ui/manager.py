import logging
from vbudget.infrastructure.event_bus import EventBus
from vbudget.ui.state import UIState
from vbudget.domain.models import EngineState
from vbudget.domain.events import (
    JobQueued, JobStarted, JobCompleted, JobFailed, JobRetried,
    JobProgressUpdated, WaveStarted, WaveFinished,
    EngineStateChanged, QueueCancelled, ProcessingFinished,
)


class UIManager:
    """Subscribes to EventBus and updates UIState."""

    def __init__(self, bus: EventBus, state: UIState):
        self.bus = bus
        self.state = state
        self.logger = logging.getLogger(__name__)
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(JobQueued, self.on_job_queued)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(JobRetried, self.on_job_retried)
        self.bus.subscribe(JobProgressUpdated, self.on_job_progress)
        self.bus.subscribe(WaveStarted, self.on_wave_started)
        self.bus.subscribe(WaveFinished, self.on_wave_finished)
        self.bus.subscribe(EngineStateChanged, self.on_engine_state)
        self.bus.subscribe(QueueCancelled, self.on_queue_cancelled)
        self.bus.subscribe(ProcessingFinished, self.on_processing_finished)

    def on_job_queued(self, event: JobQueued):
        with self.state._lock:
            self.state.queued_count += 1

    def on_job_started(self, event: JobStarted):
        self.state.set_active_job(event.job)
        self.state.set_last_action(f"Encoding {event.job.name}")

    def on_job_progress(self, event: JobProgressUpdated):
        with self.state._lock:
            if self.state.active_job is not None and self.state.active_job.id == event.job.id:
                self.state.active_progress = int(event.progress_percent)

    def on_job_completed(self, event: JobCompleted):
        self.state.add_completed_job(event.job)
        self.state.set_last_action(f"Done: {event.job.name}")

    def on_job_failed(self, event: JobFailed):
        self.state.add_failed_job(event.job)
        self.state.set_last_action(f"Failed: {event.job.name} ({event.error_kind})")

    def on_job_retried(self, event: JobRetried):
        self.state.mark_retried(event.job)

    def on_wave_started(self, event: WaveStarted):
        with self.state._lock:
            self.state.current_wave = event.wave_index
            self.state.wave_count = event.wave_count

    def on_wave_finished(self, event: WaveFinished):
        self.logger.debug(
            f"UI: wave {event.wave_index}/{event.wave_count} finished "
            f"completed={event.completed} failed={event.failed}"
        )

    def on_engine_state(self, event: EngineStateChanged):
        with self.state._lock:
            if event.state == EngineState.RESETTING:
                self.state.engine_resets += 1
            self.state.engine_state = event.state
            self.state.engine_generation = event.generation

    def on_queue_cancelled(self, event: QueueCancelled):
        with self.state._lock:
            self.state.queued_count = max(0, self.state.queued_count - event.dropped)
        self.state.set_last_action(f"Cancelled {event.dropped} pending jobs")

    def on_processing_finished(self, event: ProcessingFinished):
        with self.state._lock:
            self.state.finished = True
            self.state.current_wave = 0
