"""Normalize raw expression scores into the fixed label set used by the UI."""

from __future__ import annotations

from typing import Dict, Mapping

from detection.detection_types import ExpressionScores

# DeepFace names -> display labels
LABEL_ALIASES: Dict[str, str] = {
    "angry": "angry",
    "disgust": "disgusted",
    "fear": "fearful",
    "happy": "happy",
    "sad": "sad",
    "surprise": "surprised",
    "neutral": "neutral",
}


def normalize_label(label: str) -> str:
    key = str(label).strip().lower()
    return LABEL_ALIASES.get(key, key)


def normalize_scores(raw: Mapping[str, float]) -> ExpressionScores:
    """
    Map engine labels onto EXPRESSION_LABELS and scale scores into [0, 1].

    DeepFace reports percentages, so anything above 1 is treated as a
    percentage. Labels outside the known set are kept (the presenter just
    has no icon for them). Iteration order follows the engine's order.
    """
    if not raw:
        return {}
    values = {normalize_label(k): float(v) for k, v in raw.items()}
    scale = 100.0 if max(values.values()) > 1.0 else 1.0
    return {label: max(0.0, min(1.0, value / scale)) for label, value in values.items()}
