"""Centralized project paths, constants, and user-overridable configuration."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Tuple

from utils.json_manager import load_json

# Canonical base folders
BASE_DIR = Path(__file__).resolve().parents[1]
MODELS_DIR = BASE_DIR / "models"
SNAPSHOT_DIR = BASE_DIR / "snapshots"
APP_CONFIG_PATH = BASE_DIR / "app_config.json"

# Detection loop
POLL_INTERVAL_MS = 200  # pause between two ticks; 100-200 ms keeps the UI responsive
DETECTION_CONFIDENCE = 0.5  # minimum face confidence reported by the detector
FACE_SELECTION_POLICY = "first"  # "first", "largest" or "most_confident"
FACE_SELECTION_POLICIES = ("first", "largest", "most_confident")

# Capture
CAMERA_INDEX = 0
CAMERA_RESOLUTION: Tuple[int, int] = (640, 480)  # hint only, the driver may pick another size
CAMERA_SCAN_MAX_INDEX = 4
CAMERA_READ_FAILURES = 30  # consecutive empty reads before the camera counts as lost

# Presentation / export
SNAPSHOT_FILENAME = "emotion-snapshot.png"
NO_FACE_LABEL = "No face detected"
OVERLAY_BOX_COLOR = (0, 200, 255)  # BGR
OVERLAY_LANDMARK_COLOR = (255, 255, 0)  # BGR
OVERLAY_LANDMARK_RADIUS = 1


@dataclass
class AppConfig:
    poll_interval_ms: int = POLL_INTERVAL_MS
    min_confidence: float = DETECTION_CONFIDENCE
    face_selection: str = FACE_SELECTION_POLICY
    camera_index: int = CAMERA_INDEX
    camera_resolution: Tuple[int, int] = CAMERA_RESOLUTION
    camera_read_failures: int = CAMERA_READ_FAILURES
    models_dir: Path = MODELS_DIR
    snapshot_dir: Path = SNAPSHOT_DIR
    snapshot_filename: str = SNAPSHOT_FILENAME

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000.0


def _as_int(value: Any, default: int, minimum: int = 0) -> int:
    try:
        return max(minimum, int(value))
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float, low: float, high: float) -> float:
    try:
        return max(low, min(high, float(value)))
    except (TypeError, ValueError):
        return default


def _as_resolution(value: Any) -> Tuple[int, int]:
    if isinstance(value, (list, tuple)) and len(value) == 2:
        width = _as_int(value[0], 0, minimum=0)
        height = _as_int(value[1], 0, minimum=0)
        if width and height:
            return width, height
    return CAMERA_RESOLUTION


def _as_filename(value: Any) -> str:
    """Keep only the final path component so snapshots stay inside snapshot_dir."""
    name = Path(str(value)).name if value else ""
    return name if name not in ("", "..") else SNAPSHOT_FILENAME


def _resolve_dir(value: Any, default: Path) -> Path:
    if not value:
        return default
    path = Path(str(value))
    return path if path.is_absolute() else BASE_DIR / path


def load_app_config(path=APP_CONFIG_PATH) -> AppConfig:
    """
    Read optional overrides from app_config.json on top of the defaults above.

    Unknown keys are ignored, broken values fall back to the default.
    Example file:

    {
      "poll_interval_ms": 150,
      "min_confidence": 0.7,
      "face_selection": "largest",
      "camera_index": 1
    }
    """
    raw: Dict[str, Any] = load_json(path)
    if not isinstance(raw, dict):
        raw = {}

    policy = str(raw.get("face_selection", FACE_SELECTION_POLICY)).lower()
    if policy not in FACE_SELECTION_POLICIES:
        print(f"⚠️ Unknown face_selection '{policy}', using '{FACE_SELECTION_POLICY}'.")
        policy = FACE_SELECTION_POLICY

    return AppConfig(
        poll_interval_ms=_as_int(raw.get("poll_interval_ms"), POLL_INTERVAL_MS, minimum=10),
        min_confidence=_as_float(raw.get("min_confidence"), DETECTION_CONFIDENCE, 0.0, 1.0),
        face_selection=policy,
        camera_index=_as_int(raw.get("camera_index"), CAMERA_INDEX),
        camera_resolution=_as_resolution(raw.get("camera_resolution")),
        camera_read_failures=_as_int(raw.get("camera_read_failures"), CAMERA_READ_FAILURES, minimum=1),
        models_dir=_resolve_dir(raw.get("models_dir"), MODELS_DIR),
        snapshot_dir=_resolve_dir(raw.get("snapshot_dir"), SNAPSHOT_DIR),
        snapshot_filename=_as_filename(raw.get("snapshot_filename")),
    )
