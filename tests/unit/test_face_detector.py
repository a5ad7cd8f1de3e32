import threading
import numpy as np
import pytest
from unittest.mock import MagicMock, patch
from vbudget.domain.errors import FaceDetectorError
from vbudget.infrastructure.face_detector import FaceDetector


def _cascade(faces=()):
    cascade = MagicMock()
    cascade.empty.return_value = False
    cascade.detectMultiScale.return_value = list(faces)
    return cascade


def test_ensure_loaded_is_idempotent():
    with patch("cv2.CascadeClassifier", return_value=_cascade()) as mock_cls:
        detector = FaceDetector(cascade_path="faces.xml")
        detector.ensure_loaded()
        detector.ensure_loaded()
        assert detector.loaded
        mock_cls.assert_called_once_with("faces.xml")


def test_empty_cascade_is_load_error():
    cascade = _cascade()
    cascade.empty.return_value = True
    with patch("cv2.CascadeClassifier", return_value=cascade):
        detector = FaceDetector(cascade_path="missing.xml")
        with pytest.raises(FaceDetectorError):
            detector.ensure_loaded()
        assert not detector.loaded


def test_load_timeout():
    release = threading.Event()

    def slow_load(path):
        release.wait(5)
        return _cascade()

    with patch("cv2.CascadeClassifier", side_effect=slow_load):
        detector = FaceDetector(cascade_path="faces.xml", load_timeout=0.05)
        try:
            with pytest.raises(FaceDetectorError, match="timed out"):
                detector.ensure_loaded()
        finally:
            release.set()


def test_detect_returns_face_boxes():
    with patch("cv2.CascadeClassifier", return_value=_cascade([(10, 20, 30, 40)])):
        detector = FaceDetector(cascade_path="faces.xml", min_size=24)
        boxes = detector.detect(np.zeros((100, 100, 3), dtype=np.uint8))

    assert len(boxes) == 1
    assert (boxes[0].x, boxes[0].y, boxes[0].width, boxes[0].height) == (10, 20, 30, 40)
    kwargs = detector._cascade.detectMultiScale.call_args[1]
    assert kwargs["scaleFactor"] == 1.1
    assert kwargs["minNeighbors"] == 4
    assert kwargs["minSize"] == (24, 24)


def test_default_cascade_path_points_to_opencv_data():
    detector = FaceDetector()
    assert detector.cascade_path.endswith("haarcascade_frontalface_default.xml")
