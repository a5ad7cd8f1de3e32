import logging
import math
import threading
from typing import Callable, List, Optional, Sequence
from vbudget.domain.errors import VBudgetError, error_kind
from vbudget.domain.events import JobFailed, WaveFinished, WaveStarted
from vbudget.domain.models import Job, JobStatus
from vbudget.infrastructure.event_bus import EventBus
from vbudget.pipeline.lifecycle import EngineLifecycleManager

JobRunner = Callable[[Job], object]


class WaveScheduler:
    """Runs jobs strictly one at a time in fixed-size waves.

    After every wave except the last the engine is reset (non-forced) so
    memory held by the engine stays flat across a large batch.
    """

    def __init__(self, lifecycle: EngineLifecycleManager, event_bus: EventBus, wave_size: int = 5):
        if wave_size < 1:
            raise ValueError("wave_size must be >= 1")
        self.lifecycle = lifecycle
        self.event_bus = event_bus
        self.wave_size = wave_size
        self.current_wave = 0  # 1-based while running, 0 when idle
        self.wave_count = 0
        self._cancel_event = threading.Event()
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def partition(jobs: Sequence[Job], wave_size: int) -> List[List[Job]]:
        return [list(jobs[i:i + wave_size]) for i in range(0, len(jobs), wave_size)]

    def cancel(self) -> None:
        """Stops before the next not-yet-started job; remaining jobs stay PENDING."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def run_waves(self, jobs: Sequence[Job], runner: JobRunner, wave_size: Optional[int] = None) -> List[Job]:
        """Runs ``jobs`` through ``runner``; returns the jobs that were attempted."""
        size = wave_size or self.wave_size
        waves = self.partition(list(jobs), size)
        self.wave_count = len(waves)
        self._cancel_event.clear()
        attempted: List[Job] = []
        self.logger.info(
            f"SCHEDULE: {len(jobs)} jobs in {self.wave_count} waves (wave_size={size}, "
            f"expected={math.ceil(len(jobs) / size) if jobs else 0})"
        )

        try:
            for wave_index, wave in enumerate(waves, start=1):
                if self.cancelled:
                    break
                self.current_wave = wave_index
                self.logger.info(f"WAVE_START: {wave_index}/{self.wave_count} jobs={len(wave)}")
                self.event_bus.publish(
                    WaveStarted(wave_index=wave_index, wave_count=self.wave_count, jobs_in_wave=len(wave))
                )

                completed = failed = 0
                for job in wave:
                    if self.cancelled:
                        self.logger.info(f"WAVE_CANCELLED: stopping before {job.name}")
                        break
                    self._run_job(job, runner)
                    attempted.append(job)
                    if job.status == JobStatus.COMPLETED:
                        completed += 1
                    elif job.status == JobStatus.FAILED:
                        failed += 1

                self.logger.info(
                    f"WAVE_END: {wave_index}/{self.wave_count} completed={completed} failed={failed}"
                )
                self.event_bus.publish(
                    WaveFinished(
                        wave_index=wave_index, wave_count=self.wave_count, completed=completed, failed=failed
                    )
                )

                if wave_index < self.wave_count and not self.cancelled:
                    self._reset_between_waves(wave_index)
        finally:
            self.current_wave = 0
        return attempted

    def _run_job(self, job: Job, runner: JobRunner) -> None:
        try:
            runner(job)
        except Exception as e:
            # One job's failure never stops its siblings
            if job.status != JobStatus.FAILED:
                job.mark_failed(error_kind(e), str(e))
                self.event_bus.publish(JobFailed(job=job, error_kind=job.error.kind, error_message=job.error.message))
            self.logger.error(f"JOB_FAILED: {job.name} kind={job.error.kind} {job.error.message}")

    def _reset_between_waves(self, wave_index: int) -> None:
        self.logger.info(f"ENGINE_RESET_BETWEEN_WAVES: after wave {wave_index}")
        try:
            self.lifecycle.reset(force=False)
        except VBudgetError as e:
            self.logger.error(f"Engine reset after wave {wave_index} failed, continuing: {e}")

    def retry_failed(self, jobs: Sequence[Job], runner: JobRunner) -> List[Job]:
        """Puts FAILED jobs back to PENDING, resets the engine once and re-runs only those."""
        failed = [job for job in jobs if job.status == JobStatus.FAILED]
        if not failed:
            return []
        for job in failed:
            job.reset_for_retry()
        self.logger.info(f"RETRY_FAILED: {len(failed)} jobs")
        try:
            self.lifecycle.reset(force=False)
        except VBudgetError as e:
            self.logger.error(f"Engine reset before retry failed, continuing: {e}")
        return self.run_waves(failed, runner)
