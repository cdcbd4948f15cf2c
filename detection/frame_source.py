"""Camera and still-image frame sources."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple, Union

import cv2
import numpy as np

from utils.settings import CAMERA_RESOLUTION, CAMERA_SCAN_MAX_INDEX

__all__ = [
    "CameraUnavailableError",
    "ImageLoadError",
    "CameraSource",
    "ImageSource",
    "scan_cameras",
]


class CameraUnavailableError(RuntimeError):
    """Raised when the camera cannot be opened (missing device or access denied)."""


class ImageLoadError(RuntimeError):
    """Raised when an uploaded image cannot be read or decoded."""


class CameraSource:
    """Live webcam stream backed by cv2.VideoCapture."""

    is_live = True

    def __init__(self, camera_index: int = 0, resolution: Optional[Tuple[int, int]] = CAMERA_RESOLUTION):
        self.camera_index = camera_index
        self._cap = cv2.VideoCapture(camera_index)
        if not self._cap.isOpened():
            self._cap.release()
            self._cap = None
            raise CameraUnavailableError(
                f"Camera {camera_index} could not be opened (not connected or access denied)."
            )

        if resolution:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, resolution[0])
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, resolution[1])

        # The driver decides the real size, so read one frame before reporting "ready".
        ok, frame = self._cap.read()
        if not ok or frame is None:
            self.release()
            raise CameraUnavailableError(f"Camera {camera_index} did not deliver a frame.")
        self._last_frame = frame
        self.height, self.width = frame.shape[:2]
        print(f"📷 Camera {camera_index} opened ({self.width}x{self.height}).")

    def is_ready(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def read(self) -> Optional[np.ndarray]:
        if not self.is_ready():
            return None
        ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        self._last_frame = frame
        self.height, self.width = frame.shape[:2]
        return frame

    @property
    def last_frame(self) -> Optional[np.ndarray]:
        return self._last_frame

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            print(f"🛑 Camera {self.camera_index} released.")


class ImageSource:
    """A static uploaded image; ready as soon as it is decoded."""

    is_live = False

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        if not self.path.is_file():
            raise ImageLoadError(f"Image not found: {self.path}")
        # cv2.imread cannot open non-ascii paths on Windows
        data = np.fromfile(str(self.path), dtype=np.uint8)
        frame = cv2.imdecode(data, cv2.IMREAD_COLOR) if data.size else None
        if frame is None:
            raise ImageLoadError(f"Could not decode image: {self.path.name}")
        self._frame: Optional[np.ndarray] = frame
        self.height, self.width = frame.shape[:2]
        print(f"🖼️ Image loaded: {self.path.name} ({self.width}x{self.height}).")

    def is_ready(self) -> bool:
        return self._frame is not None

    def read(self) -> Optional[np.ndarray]:
        return None if self._frame is None else self._frame.copy()

    @property
    def last_frame(self) -> Optional[np.ndarray]:
        return self._frame

    def release(self) -> None:
        self._frame = None


def scan_cameras(max_index: int = CAMERA_SCAN_MAX_INDEX) -> List[int]:
    """Try each camera index once, return the ones that open."""
    found = []
    for idx in range(max_index + 1):
        cap = cv2.VideoCapture(idx)
        if cap.isOpened():
            found.append(idx)
        cap.release()
    return found
