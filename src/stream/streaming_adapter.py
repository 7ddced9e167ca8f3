"""
Streaming Adapter.

Turns the detector plugin's per-frame streaming payloads into Detection
records and drives the tracker pool once per payload.

Payload layout (all keys optional):
    {
        "frameWidth": 1080, "frameHeight": 1920,
        "detections": [
            {"classIndex": 0, "className": "ball", "confidence": 0.91,
             "boundingBox": {"left": .., "top": .., "right": .., "bottom": ..},
             "normalizedBox": {...}},
        ],
        "fps": 14.8, "processingTimeMs": 41.2,
    }

A payload without a "detections" key means the detector was skipped for
that frame; the pool is only predicted forward.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from src.core.contracts import Detection, Rect
from src.tracking.tracker_manager import KalmanTrackerManager, TrackerConfig


DEFAULT_CLASS_NAME = "ball"
_RECT_KEYS = ("left", "top", "right", "bottom")


@dataclass
class StreamingResult:
    """Tracker output for one streaming payload."""
    boxes: List[Detection] = field(default_factory=list)
    frame_width: int = 0
    frame_height: int = 0
    detection_count: int = 0
    ran_detection: bool = False
    fps: Optional[float] = None
    processing_time_ms: Optional[float] = None


def _optional_float(value: Any) -> Optional[float]:
    """Finite float, or None for missing, non-numeric, NaN or infinite values."""
    try:
        number = float(value) if value is not None else None
    except (TypeError, ValueError):
        return None
    if number is None or not math.isfinite(number):
        return None
    return number


def _parse_rect(raw: Any) -> Optional[Rect]:
    if not isinstance(raw, Mapping):
        return None
    edges = [_optional_float(raw.get(key)) for key in _RECT_KEYS]
    if any(edge is None for edge in edges):
        return None
    return Rect(*edges)


def parse_streaming_detections(
    data: Mapping[str, Any],
    frame_width: float,
    frame_height: float,
) -> List[Detection]:
    """
    Extract usable detections from a streaming payload.

    Entries without a readable bounding box and degenerate boxes
    (non-positive width or height) are dropped.

    Args:
        data: Streaming payload
        frame_width: Frame width used when an entry has no normalized box
        frame_height: Frame height used when an entry has no normalized box

    Returns:
        Detections in payload order
    """
    detections = []

    for entry in data.get("detections") or []:
        if not isinstance(entry, Mapping):
            continue

        box = _parse_rect(entry.get("boundingBox"))
        if box is None:
            logger.debug("Skipping detection without a usable boundingBox")
            continue

        box_normalized = _parse_rect(entry.get("normalizedBox"))
        if box_normalized is None:
            box_normalized = box.normalized(frame_width, frame_height)

        detection = Detection(
            class_index=int(_optional_float(entry.get("classIndex")) or 0),
            class_name=str(entry.get("className") or DEFAULT_CLASS_NAME),
            confidence=_optional_float(entry.get("confidence")) or 0.0,
            box=box,
            box_normalized=box_normalized,
        )

        if detection.is_degenerate:
            logger.debug(f"Rejecting degenerate detection {box.width:.1f}x{box.height:.1f}")
            continue

        detections.append(detection)

    return detections


class StreamingTracker:
    """
    Feeds streaming payloads into a KalmanTrackerManager.

    One instance per detection session; call reset() at session
    boundaries such as a camera restart.
    """

    def __init__(self, config: Optional[TrackerConfig] = None):
        self._manager = KalmanTrackerManager(config)

    def process_streaming_data(self, data: Mapping[str, Any]) -> StreamingResult:
        """
        Process one payload.

        Args:
            data: Streaming payload for a single camera frame

        Returns:
            StreamingResult with the confirmed boxes for this frame
        """
        width = _optional_float(data.get("frameWidth"))
        height = _optional_float(data.get("frameHeight"))
        if width is not None and height is not None:
            size = (int(width), int(height))
            if size[0] <= 0 or size[1] <= 0:
                logger.debug(f"Ignoring payload frame size {width}x{height}")
            elif size != (self._manager.frame_width, self._manager.frame_height):
                self._manager.set_frame_size(*size)

        ran_detection = "detections" in data
        detections: List[Detection] = []
        if ran_detection:
            detections = parse_streaming_detections(
                data, self._manager.frame_width, self._manager.frame_height
            )
            boxes = self._manager.update(detections)
        else:
            boxes = self._manager.predict()

        return StreamingResult(
            boxes=boxes,
            frame_width=self._manager.frame_width,
            frame_height=self._manager.frame_height,
            detection_count=len(detections),
            ran_detection=ran_detection,
            fps=_optional_float(data.get("fps")),
            processing_time_ms=_optional_float(data.get("processingTimeMs")),
        )

    def reset(self):
        """Drop all tracks."""
        self._manager.clear()

    @property
    def manager(self) -> KalmanTrackerManager:
        return self._manager

    @property
    def track_count(self) -> int:
        return self._manager.track_count


def result_to_dict(frame_index: int, result: StreamingResult) -> Dict[str, Any]:
    """JSON-ready record for one processed frame."""
    return {
        "frame": frame_index,
        "boxes": [box.to_dict() for box in result.boxes],
    }
