"""DeepFace + MediaPipe wrapper: face boxes, landmarks and expression scores."""

from __future__ import annotations

import os
import threading
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import cv2
import mediapipe as mp
import numpy as np

from detection.detection_types import Detection, Point
from detection.expressions import normalize_scores
from utils.mediapipe_fix import apply_fix
from utils.settings import DETECTION_CONFIDENCE, MODELS_DIR

apply_fix()

__all__ = ["EmotionEngine", "ModelLoadError", "InferenceError", "results_to_detections"]

DETECTOR_BACKEND = "mediapipe"
LANDMARK_PAD_RATIO = 0.20  # FaceMesh needs some context around the detector box


class ModelLoadError(RuntimeError):
    """Raised when the expression model or the landmarker cannot be loaded."""


class InferenceError(RuntimeError):
    """Raised when a detection call fails."""


@lru_cache(maxsize=1)
def _contour_indices() -> Sequence[int]:
    """Landmark indices on the FaceMesh contours (eyes, brows, lips, face oval)."""
    pairs = mp.solutions.face_mesh.FACEMESH_CONTOURS
    return sorted({idx for pair in pairs for idx in pair})


def results_to_detections(
    results: Union[Dict[str, Any], List[Dict[str, Any]]],
    frame_size,
    min_confidence: float = DETECTION_CONFIDENCE,
) -> List[Detection]:
    """
    Convert DeepFace.analyze output into Detection objects.

    With enforce_detection=False DeepFace returns the whole frame with
    face_confidence 0 when it finds nothing, so the confidence filter also
    removes that placeholder.
    """
    if isinstance(results, dict):
        results = [results]
    detections: List[Detection] = []
    for item in results or []:
        score = float(item.get("face_confidence", 0.0) or 0.0)
        if score < min_confidence:
            continue
        region = item.get("region") or {}
        box = tuple(int(region.get(key, 0) or 0) for key in ("x", "y", "w", "h"))
        if box[2] <= 0 or box[3] <= 0:
            continue
        detections.append(
            Detection(
                box=box,
                expressions=normalize_scores(item.get("emotion") or {}),
                score=score,
                frame_size=tuple(frame_size),
            )
        )
    return detections


class EmotionEngine:
    """
    Loads the models once and answers detect() calls for BGR frames.

    load_models() is idempotent; detect() refuses to run before it.
    """

    def __init__(self, detector_backend: str = DETECTOR_BACKEND, with_landmarks: bool = True):
        self.detector_backend = detector_backend
        self.with_landmarks = with_landmarks
        self.models_dir: Optional[Path] = None
        self._deepface = None
        self._face_mesh = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._deepface is not None

    def load_models(self, path: Union[str, Path] = MODELS_DIR) -> None:
        with self._lock:
            if self.loaded:
                return
            target = Path(path)
            try:
                target.mkdir(parents=True, exist_ok=True)
                # DeepFace keeps its weights under $DEEPFACE_HOME/.deepface/weights
                os.environ["DEEPFACE_HOME"] = str(target)
                from deepface import DeepFace

                DeepFace.build_model(model_name="Emotion", task="facial_attribute")
                face_mesh = None
                if self.with_landmarks:
                    face_mesh = mp.solutions.face_mesh.FaceMesh(
                        static_image_mode=True,
                        max_num_faces=1,
                        refine_landmarks=False,
                        min_detection_confidence=0.5,
                    )
            except Exception as exc:
                raise ModelLoadError(f"Loading models from {target} failed: {exc}") from exc

            self._face_mesh = face_mesh
            self._deepface = DeepFace
            self.models_dir = target
            print(f"✅ Models ready ({target}).")

    def detect(self, frame: np.ndarray, min_confidence: float = DETECTION_CONFIDENCE) -> List[Detection]:
        if not self.loaded:
            raise InferenceError("detect() called before load_models().")
        if frame is None or frame.size == 0:
            return []
        height, width = frame.shape[:2]
        try:
            results = self._deepface.analyze(
                img_path=frame,
                actions=["emotion"],
                enforce_detection=False,
                detector_backend=self.detector_backend,
                silent=True,
            )
        except Exception as exc:
            raise InferenceError(f"Expression analysis failed: {exc}") from exc

        detections = results_to_detections(results, (width, height), min_confidence)
        if self._face_mesh is not None:
            for det in detections:
                det.landmarks = self._landmarks_for(frame, det.box)
        return detections

    def close(self) -> None:
        with self._lock:
            if self._face_mesh is not None:
                self._face_mesh.close()
                self._face_mesh = None
            self._deepface = None

    def _landmarks_for(self, frame: np.ndarray, box) -> List[Point]:
        H, W = frame.shape[:2]
        x, y, w, h = box
        pad_w = int(w * LANDMARK_PAD_RATIO)
        pad_h = int(h * LANDMARK_PAD_RATIO)
        x1, y1 = max(0, x - pad_w), max(0, y - pad_h)
        x2, y2 = min(W, x + w + pad_w), min(H, y + h + pad_h)
        if x2 <= x1 or y2 <= y1:
            return []

        crop = cv2.cvtColor(frame[y1:y2, x1:x2], cv2.COLOR_BGR2RGB)
        result = self._face_mesh.process(crop)
        if not result.multi_face_landmarks:
            return []

        points = result.multi_face_landmarks[0].landmark
        crop_w, crop_h = x2 - x1, y2 - y1
        return [
            (x1 + points[idx].x * crop_w, y1 + points[idx].y * crop_h)
            for idx in _contour_indices()
            if idx < len(points)
        ]
