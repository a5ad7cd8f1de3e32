"""Encode-to-budget control loop.

Computes a video bitrate from the byte budget, encodes, measures the output and
shrinks the budget by 30% while the hard ceiling is exceeded. After the last
attempt the result is returned even when still over the ceiling (flagged).
"""

import logging
import math
from typing import Callable, List, Optional
from vbudget.config.models import EngineConfig, OptimizationConfig
from vbudget.domain.errors import InputError
from vbudget.domain.models import EncodeAttempt, EncodeResult


def compute_video_bitrate(
    target_size_bytes: float,
    duration_seconds: float,
    audio_bitrate_bps: int,
    min_video_bitrate_bps: int,
) -> int:
    """Video bitrate (bps) that fills ``target_size_bytes`` next to the audio track."""
    total_bitrate_bps = target_size_bytes * 8 / duration_seconds
    video_bitrate_bps = int(math.floor(total_bitrate_bps - audio_bitrate_bps))
    return max(video_bitrate_bps, min_video_bitrate_bps)


def validate_duration(duration_seconds: Optional[float]) -> float:
    if duration_seconds is None or not math.isfinite(duration_seconds) or duration_seconds <= 0:
        raise InputError(
            f"Invalid source duration {duration_seconds!r}; the file may be corrupted"
        )
    return float(duration_seconds)


class EncodeBudgetController:
    """Drives the encode -> measure -> shrink loop against one engine instance."""

    def __init__(self, engine_config: EngineConfig, max_attempts: int = 2, shrink_factor: float = 0.7):
        self.engine_config = engine_config
        self.max_attempts = max_attempts
        self.shrink_factor = shrink_factor
        self.logger = logging.getLogger(__name__)

    def build_args(self, input_name: str, output_name: str, video_bitrate_bps: int, config: OptimizationConfig) -> List[str]:
        return [
            "-y",
            "-i", input_name,
            "-vf", f"scale={config.target_width_px}:-2",
            "-b:v", str(video_bitrate_bps),
            "-b:a", str(config.audio_bitrate_bps),
            "-preset", self.engine_config.preset,
            "-movflags", "+faststart",
            output_name,
        ]

    def encode(
        self,
        source_duration: float,
        config: OptimizationConfig,
        engine,
        input_name: str,
        output_name: str,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> EncodeResult:
        duration = validate_duration(source_duration)
        encode_timeout = self.engine_config.encode_timeout(duration)
        read_timeout = min(self.engine_config.max_read_timeout_seconds, encode_timeout)

        current_target_bytes: float = config.target_size_bytes
        attempts: List[EncodeAttempt] = []
        data = b""
        video_bitrate_bps = 0

        for attempt_index in range(self.max_attempts):
            # Stale output from the previous attempt must not be mistaken for this one
            try:
                engine.delete_file(output_name)
            except FileNotFoundError:
                pass

            video_bitrate_bps = compute_video_bitrate(
                current_target_bytes,
                duration,
                config.audio_bitrate_bps,
                config.min_video_bitrate_bps,
            )
            attempt = EncodeAttempt(
                attempt_index=attempt_index,
                candidate_target_size_bytes=current_target_bytes,
                candidate_video_bitrate_bps=video_bitrate_bps,
            )
            attempts.append(attempt)
            self.logger.info(
                f"ENCODE_ATTEMPT: {input_name} attempt={attempt_index + 1}/{self.max_attempts} "
                f"target={current_target_bytes:.0f}B video={video_bitrate_bps}bps "
                f"audio={config.audio_bitrate_bps}bps timeout={encode_timeout:.0f}s"
            )

            engine.exec(
                self.build_args(input_name, output_name, video_bitrate_bps, config),
                timeout=encode_timeout,
                on_progress=on_progress,
                total_duration=duration,
            )
            data = engine.read_file(output_name, timeout=read_timeout)
            attempt.produced_size_bytes = len(data)

            if len(data) <= config.max_limit_bytes:
                self.logger.info(
                    f"ENCODE_OK: {input_name} size={len(data)}B limit={config.max_limit_bytes}B "
                    f"attempt={attempt_index + 1}"
                )
                return self._result(data, video_bitrate_bps, attempts, exceeded=False)

            if attempt_index < self.max_attempts - 1:
                self.logger.info(
                    f"ENCODE_OVER_LIMIT: {input_name} size={len(data)}B > {config.max_limit_bytes}B, "
                    f"retrying with {self.shrink_factor:.0%} of the budget"
                )
                current_target_bytes *= self.shrink_factor

        self.logger.warning(
            f"SIZE_BUDGET_EXCEEDED: {input_name} size={len(data)}B limit={config.max_limit_bytes}B "
            f"after {self.max_attempts} attempts; keeping best-effort result"
        )
        return self._result(data, video_bitrate_bps, attempts, exceeded=True)

    @staticmethod
    def _result(data: bytes, video_bitrate_bps: int, attempts: List[EncodeAttempt], exceeded: bool) -> EncodeResult:
        return EncodeResult(
            data=data,
            size_bytes=len(data),
            video_bitrate_bps=video_bitrate_bps,
            bitrate_kbps=video_bitrate_bps // 1024,
            attempts=attempts,
            size_budget_exceeded=exceeded,
        )
