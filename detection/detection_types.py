"""Shared data structures for the detection loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

Box = Tuple[int, int, int, int]  # x, y, w, h
Point = Tuple[float, float]
ExpressionScores = Dict[str, float]

EXPRESSION_LABELS: Tuple[str, ...] = (
    "happy",
    "sad",
    "angry",
    "neutral",
    "surprised",
    "fearful",
    "disgusted",
)


class SourceMode(Enum):
    CAMERA = "camera"
    IMAGE = "image"


class ModelState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass
class Detection:
    box: Box
    expressions: ExpressionScores
    landmarks: List[Point] = field(default_factory=list)
    score: float = 1.0
    frame_size: Optional[Tuple[int, int]] = None  # (width, height) the engine analysed

    @property
    def area(self) -> int:
        return max(0, self.box[2]) * max(0, self.box[3])


@dataclass(frozen=True)
class EmotionIcon:
    glyph: str
    color: str


@dataclass(frozen=True)
class DisplayState:
    text: str = ""
    label: Optional[str] = None
    confidence: Optional[float] = None
    icon: Optional[EmotionIcon] = None

    @classmethod
    def empty(cls) -> "DisplayState":
        return cls()
