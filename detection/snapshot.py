"""Point-in-time PNG export of the current frame with its overlay."""

from __future__ import annotations

from pathlib import Path
from typing import Union

import cv2
import numpy as np

from detection.overlay import OverlayRenderer
from utils.settings import SNAPSHOT_FILENAME


def compose_snapshot(frame: np.ndarray, overlay: OverlayRenderer) -> np.ndarray:
    """New buffer at the frame's intrinsic size: raw frame first, overlay on top."""
    canvas = np.zeros_like(frame)
    canvas[...] = frame
    return overlay.composite(canvas)


def export_snapshot(
    frame: np.ndarray,
    overlay: OverlayRenderer,
    directory: Union[str, Path],
    filename: str = SNAPSHOT_FILENAME,
) -> Path:
    """Write the composite as a lossless PNG and return its path."""
    if frame is None or frame.size == 0:
        raise ValueError("No frame available for a snapshot.")
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / filename

    ok, encoded = cv2.imencode(".png", compose_snapshot(frame, overlay))
    if not ok:
        raise RuntimeError("PNG encoding failed.")
    target.write_bytes(encoded.tobytes())
    print(f"📸 Snapshot saved: {target}")
    return target
