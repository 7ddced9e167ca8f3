"""
Core data contracts for box tracking.

All components exchange these records:
- Rect: axis-aligned box in pixel or normalized space
- Detection: one detector output (also the shape of every tracked box)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple


# ============================================================
# GEOMETRY
# ============================================================

@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle given by its edges."""
    left: float
    top: float
    right: float
    bottom: float

    @classmethod
    def from_center(cls, cx: float, cy: float, w: float, h: float) -> Rect:
        return cls(
            left=cx - w / 2,
            top=cy - h / 2,
            right=cx + w / 2,
            bottom=cy + h / 2,
        )

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.left + self.right) / 2, (self.top + self.bottom) / 2)

    @property
    def area(self) -> float:
        return self.width * self.height

    def normalized(self, frame_width: float, frame_height: float) -> Rect:
        """Project a pixel-space rect into 0..1 frame space."""
        return Rect(
            left=self.left / frame_width,
            top=self.top / frame_height,
            right=self.right / frame_width,
            bottom=self.bottom / frame_height,
        )

    def iou(self, other: Rect) -> float:
        """Calculate Intersection over Union with another rect."""
        x_left = max(self.left, other.left)
        y_top = max(self.top, other.top)
        x_right = min(self.right, other.right)
        y_bottom = min(self.bottom, other.bottom)

        intersection = max(0.0, x_right - x_left) * max(0.0, y_bottom - y_top)
        union = self.area + other.area - intersection

        return intersection / union if union > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "left": self.left,
            "top": self.top,
            "right": self.right,
            "bottom": self.bottom,
        }


# ============================================================
# DETECTIONS
# ============================================================

@dataclass(frozen=True)
class Detection:
    """
    A single detected (or tracked) object.

    Produced by the external detector and consumed by the tracker; trackers
    emit the same shape back to the renderer.
    """
    class_index: int
    class_name: str
    confidence: float
    box: Rect              # pixel space
    box_normalized: Rect   # 0..1 frame space

    @property
    def is_degenerate(self) -> bool:
        w, h = self.box.width, self.box.height
        if not (math.isfinite(w) and math.isfinite(h)):
            return True
        return w <= 0 or h <= 0

    def to_dict(self) -> dict:
        return {
            "classIndex": self.class_index,
            "className": self.class_name,
            "confidence": self.confidence,
            "box": self.box.to_dict(),
            "boxNormalized": self.box_normalized.to_dict(),
        }
