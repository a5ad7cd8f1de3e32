import logging
import threading
from typing import List, Optional

import cv2
import numpy as np

from vbudget.domain.errors import FaceDetectorError
from vbudget.domain.models import FaceBox


class FaceDetector:
    """Haar-cascade frontal face detector.

    The cascade is loaded lazily by ``ensure_loaded()``, which is idempotent,
    thread-safe and bounded by ``load_timeout``. Callers treat any
    ``FaceDetectorError`` as "fall back to a center crop".
    """

    def __init__(
        self,
        cascade_path: Optional[str] = None,
        load_timeout: float = 15.0,
        scale_factor: float = 1.1,
        min_neighbors: int = 4,
        min_size: int = 30,
    ):
        self.cascade_path = cascade_path or (cv2.data.haarcascades + "haarcascade_frontalface_default.xml")
        self.load_timeout = load_timeout
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = min_size
        self._cascade: Optional[cv2.CascadeClassifier] = None
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def loaded(self) -> bool:
        return self._cascade is not None

    def ensure_loaded(self) -> None:
        if self._cascade is not None:
            return
        # Holding the lock makes concurrent callers wait for the in-flight load
        with self._lock:
            if self._cascade is not None:
                return

            holder = {}

            def _load():
                try:
                    holder["cascade"] = cv2.CascadeClassifier(self.cascade_path)
                except cv2.error as e:
                    holder["error"] = e

            loader = threading.Thread(target=_load, daemon=True)
            loader.start()
            loader.join(self.load_timeout)
            if loader.is_alive():
                raise FaceDetectorError(f"Face detection model load timed out after {self.load_timeout:.0f}s")
            if "error" in holder:
                raise FaceDetectorError(f"Face detection model failed to load: {holder['error']}")

            cascade = holder.get("cascade")
            if cascade is None or cascade.empty():
                raise FaceDetectorError(f"Face detection model not found: {self.cascade_path}")
            self._cascade = cascade
            self.logger.info("Face detection model loaded")

    def detect(self, image: np.ndarray) -> List[FaceBox]:
        self.ensure_loaded()
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image
        faces = self._cascade.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=(self.min_size, self.min_size),
        )
        return [FaceBox(x=float(x), y=float(y), width=float(w), height=float(h)) for (x, y, w, h) in faces]
