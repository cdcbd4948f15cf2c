"""Turn the detections of one tick into the text + icon shown under the video."""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

from detection.detection_types import (
    Detection,
    DisplayState,
    EmotionIcon,
    ExpressionScores,
    SourceMode,
)
from utils.settings import FACE_SELECTION_POLICY, NO_FACE_LABEL

EMOTION_ICONS: Dict[str, EmotionIcon] = {
    "happy": EmotionIcon("😄", "#FFA726"),
    "sad": EmotionIcon("😞", "#42A5F5"),
    "angry": EmotionIcon("😠", "#EF5350"),
    "neutral": EmotionIcon("😐", "#9E9E9E"),
    "surprised": EmotionIcon("😮", "#AB47BC"),
    "fearful": EmotionIcon("😨", "#29B6F6"),
    "disgusted": EmotionIcon("🤢", "#66BB6A"),
}


def select_detection(
    detections: Sequence[Detection], policy: str = FACE_SELECTION_POLICY
) -> Optional[Detection]:
    """
    Pick the face whose expression is presented.

    - "first": index 0 in whatever order the engine returned (no ranking)
    - "largest": biggest bounding box
    - "most_confident": highest detector score
    Ties keep the engine order.
    """
    if not detections:
        return None
    if policy == "first":
        return detections[0]
    if policy == "largest":
        return max(detections, key=lambda det: det.area)
    if policy == "most_confident":
        return max(detections, key=lambda det: det.score)
    raise ValueError(f"Unsupported face selection policy: {policy}")


def top_expression(scores: ExpressionScores) -> Optional[Tuple[str, float]]:
    """Return (label, score) with the highest score; ties resolved by mapping order."""
    if not scores:
        return None
    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return ranked[0]


def format_label(label: str, score: float) -> str:
    """'happy', 0.82 -> 'Happy (82.0%)'"""
    name = label[:1].upper() + label[1:]
    return f"{name} ({score * 100:.1f}%)"


def icon_for(label: str, icons: Optional[Dict[str, EmotionIcon]] = None) -> Optional[EmotionIcon]:
    table = EMOTION_ICONS if icons is None else icons
    return table.get(label)


def present(
    detections: Sequence[Detection],
    mode: SourceMode = SourceMode.CAMERA,
    policy: str = FACE_SELECTION_POLICY,
    icons: Optional[Dict[str, EmotionIcon]] = None,
) -> DisplayState:
    """Derive the display state for one tick."""
    chosen = select_detection(detections, policy)
    top = top_expression(chosen.expressions) if chosen is not None else None

    if top is None:
        if mode is SourceMode.IMAGE:
            return DisplayState(text=NO_FACE_LABEL)
        return DisplayState.empty()

    label, score = top
    return DisplayState(
        text=format_label(label, score),
        label=label,
        confidence=score,
        icon=icon_for(label, icons),
    )
