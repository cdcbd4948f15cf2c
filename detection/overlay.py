"""Transparent drawing surface kept aligned with the active frame source."""

from __future__ import annotations

from typing import Sequence, Tuple

import cv2
import numpy as np

from detection.detection_types import Detection
from utils.settings import (
    OVERLAY_BOX_COLOR,
    OVERLAY_LANDMARK_COLOR,
    OVERLAY_LANDMARK_RADIUS,
)


class OverlayRenderer:
    """Draws boxes and landmarks onto an RGBA surface (alpha 0 = untouched)."""

    def __init__(
        self,
        box_color: Tuple[int, int, int] = OVERLAY_BOX_COLOR,
        landmark_color: Tuple[int, int, int] = OVERLAY_LANDMARK_COLOR,
        landmark_radius: int = OVERLAY_LANDMARK_RADIUS,
    ):
        self.box_color = tuple(box_color) + (255,)
        self.landmark_color = tuple(landmark_color) + (255,)
        self.landmark_radius = landmark_radius
        self.surface = np.zeros((0, 0, 4), dtype=np.uint8)

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height) of the surface."""
        return self.surface.shape[1], self.surface.shape[0]

    def sync_size(self, width: int, height: int) -> bool:
        """Resize the surface to the source's intrinsic size. Returns True if it changed."""
        width, height = int(width), int(height)
        if (width, height) == self.size:
            return False
        self.surface = np.zeros((max(0, height), max(0, width), 4), dtype=np.uint8)
        return True

    def clear(self) -> None:
        self.surface[...] = 0

    def reset(self) -> None:
        self.surface = np.zeros((0, 0, 4), dtype=np.uint8)

    def is_clear(self) -> bool:
        return not self.surface.any()

    def copy(self) -> "OverlayRenderer":
        clone = OverlayRenderer.__new__(OverlayRenderer)
        clone.box_color = self.box_color
        clone.landmark_color = self.landmark_color
        clone.landmark_radius = self.landmark_radius
        clone.surface = self.surface.copy()
        return clone

    def draw(self, detections: Sequence[Detection]) -> None:
        """Clear the previous drawing, then draw every detection (no-op when empty)."""
        self.clear()
        if not detections or self.surface.size == 0:
            return
        for det in detections:
            sx, sy = self._scale_for(det)
            self._draw_box(det, sx, sy)
            self._draw_landmarks(det, sx, sy)

    def composite(self, frame: np.ndarray) -> np.ndarray:
        """Alpha-blend the surface over a BGR frame and return a new image."""
        out = frame.copy()
        if self.surface.size == 0:
            return out
        overlay = self.surface
        if overlay.shape[:2] != frame.shape[:2]:
            overlay = cv2.resize(
                overlay, (frame.shape[1], frame.shape[0]), interpolation=cv2.INTER_NEAREST
            )
        alpha = overlay[:, :, 3:4].astype(np.float32) / 255.0
        if not alpha.any():
            return out
        blended = out.astype(np.float32) * (1.0 - alpha) + overlay[:, :, :3].astype(np.float32) * alpha
        return blended.astype(np.uint8)

    def _scale_for(self, det: Detection) -> Tuple[float, float]:
        width, height = self.size
        if not det.frame_size:
            return 1.0, 1.0
        src_w, src_h = det.frame_size
        if src_w <= 0 or src_h <= 0:
            return 1.0, 1.0
        return width / float(src_w), height / float(src_h)

    def _draw_box(self, det: Detection, sx: float, sy: float) -> None:
        x, y, w, h = det.box
        x1, y1 = int(round(x * sx)), int(round(y * sy))
        x2, y2 = int(round((x + w) * sx)), int(round((y + h) * sy))
        cv2.rectangle(self.surface, (x1, y1), (x2, y2), self.box_color, 2)
        cv2.putText(
            self.surface,
            f"{det.score:.2f}",
            (x1, max(15, y1 - 6)),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.5,
            self.box_color,
            1,
        )

    def _draw_landmarks(self, det: Detection, sx: float, sy: float) -> None:
        for px, py in det.landmarks:
            center = (int(round(px * sx)), int(round(py * sy)))
            cv2.circle(self.surface, center, self.landmark_radius, self.landmark_color, -1)
