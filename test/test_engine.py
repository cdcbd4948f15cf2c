import numpy as np
import pytest

pytest.importorskip("mediapipe")

from detection.engine import (  # noqa: E402
    EmotionEngine,
    InferenceError,
    ModelLoadError,
    results_to_detections,
)

FACE = {
    "region": {"x": 10, "y": 20, "w": 30, "h": 40, "left_eye": None, "right_eye": None},
    "face_confidence": 0.93,
    "emotion": {"angry": 1.0, "disgust": 0.5, "fear": 3.5, "happy": 80.0,
                "sad": 5.0, "surprise": 2.0, "neutral": 8.0},
    "dominant_emotion": "happy",
}

NO_FACE = {
    "region": {"x": 0, "y": 0, "w": 640, "h": 480},
    "face_confidence": 0,
    "emotion": {"neutral": 100.0},
}


class FakeDeepFace:
    def __init__(self, results=None, error=None):
        self.results = results
        self.error = error
        self.calls = []

    def analyze(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.results


def test_results_to_detections_maps_region_and_scores():
    detections = results_to_detections([FACE], (640, 480))

    assert len(detections) == 1
    det = detections[0]
    assert det.box == (10, 20, 30, 40)
    assert det.score == pytest.approx(0.93)
    assert det.frame_size == (640, 480)
    assert det.expressions["happy"] == pytest.approx(0.8)
    assert det.expressions["fearful"] == pytest.approx(0.035)
    assert "fear" not in det.expressions


def test_whole_frame_placeholder_is_dropped():
    assert results_to_detections([NO_FACE], (640, 480)) == []


def test_confidence_threshold():
    assert results_to_detections(FACE, (640, 480), min_confidence=0.95) == []
    assert len(results_to_detections(FACE, (640, 480), min_confidence=0.7)) == 1


def test_detect_before_load_raises():
    engine = EmotionEngine(with_landmarks=False)

    with pytest.raises(InferenceError):
        engine.detect(np.zeros((10, 10, 3), dtype=np.uint8))


def test_detect_uses_deepface_without_enforcing_detection():
    engine = EmotionEngine(with_landmarks=False)
    fake = FakeDeepFace(results=[FACE, NO_FACE])
    engine._deepface = fake
    frame = np.zeros((480, 640, 3), dtype=np.uint8)

    detections = engine.detect(frame, min_confidence=0.5)

    assert [d.box for d in detections] == [(10, 20, 30, 40)]
    assert detections[0].landmarks == []
    call = fake.calls[0]
    assert call["actions"] == ["emotion"]
    assert call["enforce_detection"] is False
    assert call["detector_backend"] == "mediapipe"


def test_detect_wraps_backend_errors():
    engine = EmotionEngine(with_landmarks=False)
    engine._deepface = FakeDeepFace(error=ValueError("bad tensor"))

    with pytest.raises(InferenceError, match="bad tensor"):
        engine.detect(np.zeros((10, 10, 3), dtype=np.uint8))


def test_load_models_is_idempotent_once_loaded(tmp_path):
    engine = EmotionEngine(with_landmarks=False)
    engine._deepface = FakeDeepFace()

    engine.load_models(tmp_path / "never-created")

    assert not (tmp_path / "never-created").exists()


def test_load_failure_raises_model_load_error(tmp_path):
    blocker = tmp_path / "models"
    blocker.write_text("a file where the model folder should be", encoding="utf-8")
    engine = EmotionEngine(with_landmarks=False)

    with pytest.raises(ModelLoadError):
        engine.load_models(blocker)
    assert not engine.loaded
