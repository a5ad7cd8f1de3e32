"""Thumbnail timestamp selection and capture.

Timestamps start from three naive anchors (start, middle, end) and are nudged
forward past black frames by sampling brightness. Selection and capture only
degrade (fewer or naively placed thumbnails), they never fail a job.
"""

import logging
import math
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import cv2
import numpy as np

from vbudget.config.models import OptimizationConfig, ThumbnailAspectRatio, ThumbnailConfig
from vbudget.domain.errors import FaceDetectorError, FrameDecodeError
from vbudget.domain.models import FaceBox, Thumbnail, ThumbnailCandidate
from vbudget.infrastructure.face_detector import FaceDetector
from vbudget.infrastructure.frames import BrightnessSampler, VideoFrameSource, resize_to_width
from vbudget.pipeline.crop import aspect_ratio_value, plan_crop

logger = logging.getLogger(__name__)


def base_timestamps(duration: float, offset_seconds: float) -> List[float]:
    return [min(offset_seconds, duration * 0.1), duration * 0.5, duration * 0.85]


class ThumbnailTimestampSelector:
    """Picks 3 timestamps whose frames are brighter than a threshold."""

    def __init__(
        self,
        sampler: BrightnessSampler,
        step_seconds: float = 0.5,
        search_window_seconds: float = 5.0,
        max_search_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sampler = sampler
        self.step_seconds = step_seconds
        self.search_window_seconds = search_window_seconds
        self.max_search_seconds = max_search_seconds
        self.clock = clock

    def select_timestamps(
        self,
        duration: float,
        offset_seconds: float,
        brightness_threshold: float = 30.0,
        timeout: Optional[float] = None,
    ) -> List[float]:
        deadline = self.clock() + timeout if timeout is not None else None
        return [
            self._search(base, duration, brightness_threshold, deadline)
            for base in base_timestamps(duration, offset_seconds)
        ]

    def _search(self, base: float, duration: float, threshold: float, deadline: Optional[float]) -> float:
        end = min(base + self.search_window_seconds, duration, base + self.max_search_seconds)
        step = 0
        t = base
        while t < end:
            if deadline is not None and self.clock() > deadline:
                logger.debug(f"THUMB_SEARCH_TIMEOUT: base={base:.2f}s")
                return base
            try:
                brightness = self.sampler.sample(t)
            except (FrameDecodeError, cv2.error) as e:
                logger.debug(f"THUMB_SEARCH_DECODE_ERROR: base={base:.2f}s t={t:.2f}s {e}")
                return base
            candidate = ThumbnailCandidate(
                timestamp_seconds=t,
                brightness_score=brightness,
                is_acceptable=brightness > threshold,
            )
            if candidate.is_acceptable:
                return candidate.timestamp_seconds
            step += 1
            t = base + step * self.step_seconds
        return base


def render_thumbnail(
    frame: np.ndarray,
    output_width: int,
    aspect_ratio: ThumbnailAspectRatio,
    faces: Sequence[FaceBox] = (),
) -> np.ndarray:
    """Crops ``frame`` to ``aspect_ratio`` (centered on ``faces``) and scales it to ``output_width``."""
    target_ratio = aspect_ratio_value(aspect_ratio)
    if target_ratio == 0.0:
        return resize_to_width(frame, output_width)

    h, w = frame.shape[:2]
    crop = plan_crop(w, h, aspect_ratio, faces)
    region = frame[crop.y:crop.y + crop.height, crop.x:crop.x + crop.width]
    output_height = max(1, int(math.floor(output_width / target_ratio + 0.5)))
    interpolation = cv2.INTER_AREA if output_width < crop.width else cv2.INTER_LINEAR
    return cv2.resize(region, (output_width, output_height), interpolation=interpolation)


class ThumbnailService:
    """Selects timestamps, captures frames and encodes up to 3 JPEG thumbnails."""

    def __init__(
        self,
        settings: ThumbnailConfig,
        face_detector: Optional[FaceDetector] = None,
        frame_source_factory: Callable[[Path], VideoFrameSource] = VideoFrameSource,
    ):
        self.settings = settings
        self.face_detector = face_detector
        self.frame_source_factory = frame_source_factory

    def select_timestamps(self, source_path: Path, duration: float, config: OptimizationConfig) -> List[float]:
        try:
            with self.frame_source_factory(source_path) as source:
                selector = ThumbnailTimestampSelector(
                    BrightnessSampler(source, self.settings.analysis_max_width_px, self.settings.sample_step),
                    step_seconds=self.settings.search_step_seconds,
                    search_window_seconds=self.settings.search_window_seconds,
                    max_search_seconds=self.settings.max_search_seconds,
                )
                return selector.select_timestamps(
                    duration,
                    config.thumbnail_offset_seconds,
                    self.settings.brightness_threshold,
                    timeout=self.settings.selection_timeout_seconds,
                )
        except (FrameDecodeError, cv2.error) as e:
            logger.warning(f"Smart frame detection failed for {source_path.name}, using fallback: {e}")
            return base_timestamps(duration, config.thumbnail_offset_seconds)

    def _face_detection_ready(self, config: OptimizationConfig) -> bool:
        if not config.thumbnail_face_detection or config.thumbnail_aspect_ratio == ThumbnailAspectRatio.ORIGINAL:
            return False
        if self.face_detector is None:
            return False
        try:
            self.face_detector.ensure_loaded()
        except FaceDetectorError as e:
            logger.warning(f"Face detection model load failed, will use center crop: {e}")
            return False
        return True

    def generate(self, source_path: Path, duration: float, config: OptimizationConfig) -> List[Thumbnail]:
        timestamps = self.select_timestamps(source_path, duration, config)
        logger.info(f"THUMB_TIMESTAMPS: {source_path.name} {[round(t, 2) for t in timestamps]}")
        use_faces = self._face_detection_ready(config)

        thumbnails: List[Thumbnail] = []
        try:
            with self.frame_source_factory(source_path) as source:
                for index, t in enumerate(timestamps, start=1):
                    thumbnail = self._capture(source, t, duration, config, use_faces, index)
                    if thumbnail is not None:
                        thumbnails.append(thumbnail)
        except (FrameDecodeError, cv2.error) as e:
            logger.warning(f"Thumbnail capture failed for {source_path.name}: {e}")

        if not thumbnails:
            logger.warning(f"No thumbnails generated for {source_path.name}; timestamps were {timestamps}")
        else:
            logger.info(f"Generated {len(thumbnails)} thumbnails for {source_path.name}")
        return thumbnails

    def _capture(
        self,
        source: VideoFrameSource,
        timestamp: float,
        duration: float,
        config: OptimizationConfig,
        use_faces: bool,
        index: int,
    ) -> Optional[Thumbnail]:
        safe_time = min(max(timestamp, 0.0), max(0.0, duration - 0.1))
        try:
            frame = source.read_at(safe_time)
        except FrameDecodeError as e:
            logger.warning(f"Thumbnail {index} skipped: {e}")
            return None

        faces: List[FaceBox] = []
        if use_faces:
            # Detect on a 2x-width working copy, then crop that copy
            working_width = config.thumbnail_width_px * 2
            if frame.shape[1] > working_width:
                frame = resize_to_width(frame, working_width)
            try:
                faces = self.face_detector.detect(frame)
                if faces:
                    logger.debug(f"Detected {len(faces)} face(s) in thumbnail {index}")
            except (FaceDetectorError, cv2.error) as e:
                logger.warning(f"Face detection failed for thumbnail {index}, using center crop: {e}")

        image = render_thumbnail(frame, config.thumbnail_width_px, config.thumbnail_aspect_ratio, faces)
        ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), self.settings.jpeg_quality])
        if not ok:
            logger.warning(f"Thumbnail {index} skipped: JPEG encoding failed")
            return None

        return Thumbnail(
            timestamp_seconds=timestamp,
            image_bytes=buffer.tobytes(),
            width=int(image.shape[1]),
            height=int(image.shape[0]),
            faces_detected=len(faces),
        )
