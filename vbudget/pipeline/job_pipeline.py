import logging
import time
import uuid
from typing import Optional, Tuple
from vbudget.config.models import EngineConfig
from vbudget.domain.errors import (
    CleanupError,
    EngineMemoryFault,
    InputError,
    VBudgetError,
    error_kind,
    is_memory_fault,
)
from vbudget.domain.events import JobCompleted, JobFailed, JobProgressUpdated, JobStarted
from vbudget.domain.models import EncodeResult, Job, JobResult, JobStatus
from vbudget.infrastructure.event_bus import EventBus
from vbudget.infrastructure.ffprobe import FFprobeAdapter
from vbudget.pipeline.budget import EncodeBudgetController
from vbudget.pipeline.lifecycle import EngineLifecycleManager
from vbudget.pipeline.thumbnails import ThumbnailService


def engine_file_names(job: Job) -> Tuple[str, str]:
    """Per-job names inside the engine namespace.

    Unique per attempt so residue from a crashed job can never be read back
    as the output of a later one.
    """
    stamp = f"{job.id}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"
    ext = job.source_path.suffix.lower() or ".mp4"
    return f"input_{stamp}{ext}", f"output_{stamp}.mp4"


class JobPipeline:
    """Per-file pipeline: write input, probe, encode to budget, thumbnails.

    Failures are recorded on the job (status FAILED + JobError) and re-raised
    so the scheduler can log them; they never leave the engine owned.
    """

    def __init__(
        self,
        lifecycle: EngineLifecycleManager,
        prober: FFprobeAdapter,
        budget_controller: EncodeBudgetController,
        thumbnail_service: Optional[ThumbnailService],
        event_bus: EventBus,
        engine_config: EngineConfig,
    ):
        self.lifecycle = lifecycle
        self.prober = prober
        self.budget_controller = budget_controller
        self.thumbnail_service = thumbnail_service
        self.event_bus = event_bus
        self.engine_config = engine_config
        self.logger = logging.getLogger(__name__)

    def run(self, job: Job) -> JobResult:
        job.status = JobStatus.PROCESSING
        job.progress_percent = 0.0
        job.error = None
        self.event_bus.publish(JobStarted(job=job))
        self.logger.info(f"JOB_START: {job.name} id={job.id} size={job.size_bytes}B")
        start_time = time.monotonic()

        try:
            result = self._run_with_fault_recovery(job)
        except Exception as e:
            job.mark_failed(error_kind(e), str(e))
            self.logger.error(f"JOB_END: {job.name} status=FAILED kind={job.error.kind} {e}")
            self.event_bus.publish(JobFailed(job=job, error_kind=job.error.kind, error_message=job.error.message))
            raise

        job.result = result
        job.status = JobStatus.COMPLETED
        job.progress_percent = 100.0
        elapsed = time.monotonic() - start_time
        self.logger.info(
            f"JOB_END: {job.name} status=COMPLETED size={result.encoded_size_bytes}B "
            f"bitrate={result.achieved_bitrate_kbps}kbps thumbs={len(result.thumbnails)} "
            f"over_budget={result.size_budget_exceeded} elapsed={elapsed:.1f}s"
        )
        self.event_bus.publish(JobCompleted(job=job))
        return result

    def _run_with_fault_recovery(self, job: Job) -> JobResult:
        max_attempts = self.engine_config.max_engine_attempts
        attempt = 1
        while True:
            try:
                return self._run_once(job)
            except Exception as e:
                if not is_memory_fault(e):
                    raise
                if attempt >= max_attempts:
                    if isinstance(e, EngineMemoryFault):
                        raise
                    raise EngineMemoryFault(f"Engine memory fault persisted after reset: {e}") from e
                self.logger.warning(
                    f"ENGINE_MEMORY_FAULT: {job.name} attempt {attempt}/{max_attempts}, "
                    f"forcing engine reset and retrying: {e}"
                )
            try:
                self.lifecycle.reset(force=True)
            except VBudgetError as reset_error:
                self.logger.error(f"Forced engine reset failed: {reset_error}")
            job.progress_percent = 0.0
            attempt += 1

    def _run_once(self, job: Job) -> JobResult:
        input_name, output_name = engine_file_names(job)
        with self.lifecycle.session(job.id) as engine:
            try:
                try:
                    engine.write_file(
                        input_name, job.source_path, timeout=self.engine_config.write_timeout(job.size_bytes)
                    )
                except VBudgetError:
                    raise
                except OSError as e:
                    raise InputError(f"Cannot read {job.name}: {e}") from e
                duration = self.prober.probe_duration(
                    job.source_path, timeout=self.engine_config.probe_timeout(job.size_bytes)
                )
                job.duration_seconds = duration
                self.logger.debug(f"PROBE: {job.name} duration={duration:.2f}s")

                encoded = self.budget_controller.encode(
                    duration,
                    job.config,
                    engine,
                    input_name,
                    output_name,
                    on_progress=lambda fraction: self._report_progress(job, fraction),
                )
            finally:
                self._cleanup(engine, job, input_name, output_name)

        if encoded.size_budget_exceeded:
            self.logger.warning(
                f"{job.name}: output {encoded.size_bytes}B exceeds the {job.config.max_limit_bytes}B ceiling "
                f"after {len(encoded.attempts)} attempts; returning best-effort result"
            )

        # Thumbnails decode the source independently and never hold the engine
        thumbnails = []
        if self.thumbnail_service is not None:
            try:
                thumbnails = self.thumbnail_service.generate(job.source_path, duration, job.config)
            except VBudgetError as e:
                self.logger.warning(f"Thumbnail generation failed for {job.name}: {e}")

        return self._build_result(encoded, duration, thumbnails)

    def _report_progress(self, job: Job, fraction: float) -> None:
        percent = int(max(0.0, min(1.0, fraction)) * 100)
        if percent == int(job.progress_percent):
            return
        job.progress_percent = float(percent)
        self.event_bus.publish(JobProgressUpdated(job=job, progress_percent=percent))

    def _cleanup(self, engine, job: Job, *names: str) -> None:
        for name in names:
            try:
                engine.delete_file(name)
            except FileNotFoundError:
                continue
            except Exception as e:
                # Best-effort: a leftover file cannot collide with the next job's unique names
                error = CleanupError(f"Could not delete {name} for {job.name}: {e}")
                self.logger.warning(str(error))

    @staticmethod
    def _build_result(encoded: EncodeResult, duration: float, thumbnails) -> JobResult:
        return JobResult(
            encoded_bytes=encoded.data,
            encoded_size_bytes=encoded.size_bytes,
            achieved_bitrate_kbps=encoded.bitrate_kbps,
            duration_seconds=duration,
            thumbnails=thumbnails,
            size_budget_exceeded=encoded.size_budget_exceeded,
            encode_attempts=len(encoded.attempts),
        )
