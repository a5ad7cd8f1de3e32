"""Inbound surface of the encode-to-budget core.

Owns the job registry and the pending queue, and drives queued jobs through
the WaveScheduler and JobPipeline. While a run or retry is in progress,
``JobProgressUpdated`` events are forwarded to an optional
``on_progress(job_id, percent)`` callback.

Key responsibilities:
- Capture ``(file, config)`` pairs as PENDING jobs (config is frozen at submit)
- Run the pending queue in waves; retry failed jobs on explicit request
- Drop not-yet-started jobs on ``cancel_pending_queue()``
"""

import contextlib
import logging
import threading
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional
from vbudget.config.models import AppConfig, OptimizationConfig
from vbudget.domain.events import JobProgressUpdated, JobQueued, JobRetried, ProcessingFinished, QueueCancelled
from vbudget.domain.models import Job, JobStatus
from vbudget.infrastructure.engine import FFmpegEngine
from vbudget.infrastructure.event_bus import EventBus
from vbudget.infrastructure.face_detector import FaceDetector
from vbudget.infrastructure.ffprobe import FFprobeAdapter
from vbudget.pipeline.budget import EncodeBudgetController
from vbudget.pipeline.job_pipeline import JobPipeline
from vbudget.pipeline.lifecycle import EngineLifecycleManager
from vbudget.pipeline.scheduler import WaveScheduler
from vbudget.pipeline.thumbnails import ThumbnailService

ProgressCallback = Callable[[str, int], None]


class Orchestrator:
    """Job registry + queue in front of the wave scheduler.

    Args:
        config: AppConfig; ``config.optimization`` is the default per-job config.
        event_bus: EventBus shared with the pipeline and the UI.
        lifecycle: EngineLifecycleManager owning the engine.
        pipeline: JobPipeline running one job.
        scheduler: WaveScheduler running the queue.
        on_progress: Optional ``(job_id, percent)`` callback, percent in 0-100.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        lifecycle: EngineLifecycleManager,
        pipeline: JobPipeline,
        scheduler: WaveScheduler,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.lifecycle = lifecycle
        self.pipeline = pipeline
        self.scheduler = scheduler
        self.on_progress = on_progress
        self.logger = logging.getLogger(__name__)

        self._jobs: Dict[str, Job] = {}
        self._queue: List[str] = []
        self._lock = threading.Lock()

    def _on_job_progress(self, event: JobProgressUpdated):
        self.on_progress(event.job.id, int(event.progress_percent))

    def _forwarding_progress(self):
        if self.on_progress is None:
            return contextlib.nullcontext()
        return self.event_bus.subscription(JobProgressUpdated, self._on_job_progress)

    @property
    def jobs(self) -> List[Job]:
        with self._lock:
            return list(self._jobs.values())

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            if job_id not in self._jobs:
                raise KeyError(f"Unknown job id: {job_id}")
            return self._jobs[job_id]

    def pending_count(self) -> int:
        with self._lock:
            return len(self._queue)

    def submit_job(self, path: Path, config: Optional[OptimizationConfig] = None) -> str:
        path = Path(path)
        try:
            size_bytes = path.stat().st_size
        except OSError:
            # Unreadable sources fail inside the pipeline as input errors
            size_bytes = 0
        job = Job(
            id=uuid.uuid4().hex[:12],
            source_path=path,
            size_bytes=size_bytes,
            config=config or self.config.optimization,
        )
        with self._lock:
            self._jobs[job.id] = job
            self._queue.append(job.id)
        self.logger.info(f"JOB_QUEUED: {job.name} id={job.id} size={size_bytes}B")
        self.event_bus.publish(JobQueued(job=job))
        return job.id

    def _run_queued(self, job: Job):
        with self._lock:
            if job.id not in self._queue:
                self.logger.info(f"JOB_SKIPPED: {job.name} was removed from the queue")
                return None
            self._queue.remove(job.id)
        return self.pipeline.run(job)

    def run(self) -> List[Job]:
        """Processes every queued job in waves; returns the jobs that ran."""
        with self._lock:
            pending = [self._jobs[job_id] for job_id in self._queue if self._jobs[job_id].status == JobStatus.PENDING]
        if not pending:
            self.logger.info("Nothing to process: queue is empty")
            return []

        with self._forwarding_progress():
            attempted = self.scheduler.run_waves(pending, self._run_queued, wave_size=self.config.engine.wave_size)
        self._publish_finished(attempted)
        return attempted

    def retry_job(self, job_id: str) -> Job:
        """Puts a FAILED job back to PENDING and runs it right away."""
        job = self.get_job(job_id)
        job.reset_for_retry()
        self.logger.info(f"JOB_RETRY: {job.name} id={job.id}")
        self.event_bus.publish(JobRetried(job=job))
        with self._forwarding_progress():
            self.scheduler.run_waves([job], self.pipeline.run, wave_size=1)
        return job

    def retry_failed(self) -> List[Job]:
        failed = [job for job in self.jobs if job.status == JobStatus.FAILED]
        for job in failed:
            self.event_bus.publish(JobRetried(job=job))
        with self._forwarding_progress():
            attempted = self.scheduler.retry_failed(failed, self.pipeline.run)
        if attempted:
            self._publish_finished(attempted)
        return attempted

    def cancel_pending_queue(self) -> int:
        """Drops jobs that have not started; running and finished jobs are untouched."""
        with self._lock:
            dropped = [self._jobs.pop(job_id) for job_id in self._queue]
            self._queue.clear()
        self.scheduler.cancel()
        self.logger.info(f"QUEUE_CANCELLED: dropped {len(dropped)} pending jobs")
        self.event_bus.publish(QueueCancelled(dropped=len(dropped)))
        return len(dropped)

    def _publish_finished(self, attempted: List[Job]) -> None:
        completed = sum(1 for job in attempted if job.status == JobStatus.COMPLETED)
        failed = sum(1 for job in attempted if job.status == JobStatus.FAILED)
        self.logger.info(f"PROCESSING_END: completed={completed} failed={failed}")
        self.event_bus.publish(ProcessingFinished(completed=completed, failed=failed))

    def shutdown(self) -> None:
        self.lifecycle.shutdown()


def build_orchestrator(
    config: AppConfig,
    event_bus: EventBus,
    on_progress: Optional[ProgressCallback] = None,
) -> Orchestrator:
    """Wires the production collaborators (ffmpeg engine, ffprobe, OpenCV thumbnails)."""
    engine_config = config.engine
    scratch = Path(engine_config.scratch_dir) if engine_config.scratch_dir else None

    lifecycle = EngineLifecycleManager(
        lambda: FFmpegEngine(binary=engine_config.ffmpeg_binary, scratch_root=scratch),
        engine_config,
        event_bus=event_bus,
    )
    thumbnail_service = ThumbnailService(
        config.thumbnails,
        face_detector=FaceDetector(load_timeout=config.thumbnails.face_model_timeout_seconds),
    )
    pipeline = JobPipeline(
        lifecycle=lifecycle,
        prober=FFprobeAdapter(binary=engine_config.ffprobe_binary),
        budget_controller=EncodeBudgetController(engine_config),
        thumbnail_service=thumbnail_service,
        event_bus=event_bus,
        engine_config=engine_config,
    )
    scheduler = WaveScheduler(lifecycle, event_bus, wave_size=engine_config.wave_size)
    return Orchestrator(config, event_bus, lifecycle, pipeline, scheduler, on_progress=on_progress)
