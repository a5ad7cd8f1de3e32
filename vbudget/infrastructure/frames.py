"""Frame decoding and brightness sampling with OpenCV.

Frames are decoded through a private ``cv2.VideoCapture`` per source, never
through the shared encoding engine, so sampling is safe to run alongside it.
"""

import logging
import math
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from vbudget.domain.errors import FrameDecodeError

logger = logging.getLogger(__name__)


def resize_to_width(frame: np.ndarray, width: int) -> np.ndarray:
    """Scales ``frame`` to ``width`` pixels wide, preserving aspect ratio."""
    h, w = frame.shape[:2]
    if w == width:
        return frame
    height = max(1, int(math.floor(width * h / w + 0.5)))
    interpolation = cv2.INTER_AREA if width < w else cv2.INTER_LINEAR
    return cv2.resize(frame, (width, height), interpolation=interpolation)


def frame_brightness(frame: np.ndarray, max_width: int = 320, sample_step: int = 16) -> float:
    """Average luma (0-255) of a BGR frame.

    The frame is first downscaled to at most ``max_width`` pixels wide, then
    every ``sample_step``-th pixel in row-major order contributes
    ``0.299R + 0.587G + 0.114B``.
    """
    if frame is None or frame.size == 0:
        raise FrameDecodeError("Empty frame")
    h, w = frame.shape[:2]
    if w > max_width:
        frame = cv2.resize(frame, (max_width, max(1, (max_width * h) // w)), interpolation=cv2.INTER_AREA)

    if frame.ndim == 2:
        return float(frame.reshape(-1)[::sample_step].astype(np.float64).mean())

    pixels = frame.reshape(-1, frame.shape[2])[::sample_step].astype(np.float64)
    b, g, r = pixels[:, 0], pixels[:, 1], pixels[:, 2]
    return float((0.299 * r + 0.587 * g + 0.114 * b).mean())


class VideoFrameSource:
    """Seekable frame reader over a video file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._capture: Optional[cv2.VideoCapture] = None

    def open(self) -> "VideoFrameSource":
        capture = cv2.VideoCapture(str(self.path))
        if not capture.isOpened():
            capture.release()
            raise FrameDecodeError(f"Cannot open {self.path.name} for frame decoding")
        self._capture = capture
        return self

    def read_at(self, timestamp: float) -> np.ndarray:
        if self._capture is None:
            raise FrameDecodeError("Frame source is not open")
        self._capture.set(cv2.CAP_PROP_POS_MSEC, max(0.0, timestamp) * 1000.0)
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise FrameDecodeError(f"No frame at {timestamp:.2f}s in {self.path.name}")
        return frame

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def __enter__(self) -> "VideoFrameSource":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class BrightnessSampler:
    """Scores frames of one source by average luma."""

    def __init__(self, source: VideoFrameSource, max_width: int = 320, sample_step: int = 16):
        self.source = source
        self.max_width = max_width
        self.sample_step = sample_step

    def sample(self, timestamp: float) -> float:
        brightness = frame_brightness(self.source.read_at(timestamp), self.max_width, self.sample_step)
        logger.debug(f"BRIGHTNESS_SAMPLE: {self.source.path.name} t={timestamp:.2f}s luma={brightness:.1f}")
        return brightness
