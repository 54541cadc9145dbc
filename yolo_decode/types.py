from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class Keypoint:
    x: float
    y: float
    score: float

    def is_visible(self, threshold: float = 0.5) -> bool:
        return self.score > threshold


@dataclass(frozen=True)
class CandidateDetection:
    """
    Anchor that survived confidence gating, in source pixel units.

    Transient: only lives between decoding and NMS.
    """

    cx: float
    cy: float
    w: float
    h: float
    score: float
    class_id: int = 0
    mask_coeffs: Optional[np.ndarray] = field(default=None, compare=False)
    keypoints: Optional[Tuple[Keypoint, ...]] = None

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return (
            self.cx - self.w / 2,
            self.cy - self.h / 2,
            self.cx + self.w / 2,
            self.cy + self.h / 2,
        )


@dataclass(frozen=True)
class Detection:
    """
    Generic detection representation handed to rendering/UI code.

    Coordinates are in source image pixels with x1 < x2 and y1 < y2.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: int = 0
    label: str = ""
    mask_coeffs: Optional[np.ndarray] = field(default=None, compare=False)
    keypoints: Optional[Tuple[Keypoint, ...]] = None

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x1 + self.x2) / 2, (self.y1 + self.y2) / 2

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    def with_box(self, x1: float, y1: float, x2: float, y2: float, score: float) -> "Detection":
        return replace(self, x1=x1, y1=y1, x2=x2, y2=y2, score=score)
