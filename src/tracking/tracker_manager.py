"""
Multi-Object Tracker Manager.

Owns every live KalmanBoxTracker and runs one association cycle per
processed frame.

Guarantees:
- Each track and each detection takes part in at most one match per cycle
- Track IDs increase monotonically and are never reused
- Stale tracks never reach the output
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from loguru import logger

from src.core.contracts import Detection
from .kalman_tracker import KalmanBoxTracker, MAX_AGE, MIN_HITS


MANAGER_IOU_THRESHOLD = 0.1  # Lower than the per-track threshold for easier matching


@dataclass
class TrackerConfig:
    """Configuration for the tracker pool."""
    max_age: int = MAX_AGE
    min_hits: int = MIN_HITS
    iou_threshold: float = MANAGER_IOU_THRESHOLD

    # Used for normalized output until the source reports its resolution
    fallback_frame_width: int = 1178
    fallback_frame_height: int = 1572

    # False: the first cycle on an empty pool echoes the raw detections.
    # True: it returns the freshly created tracks' own boxes instead.
    filter_first_frame: bool = False

    def __post_init__(self):
        if self.max_age < 0:
            raise ValueError(f"max_age must be >= 0, got {self.max_age}")
        if self.min_hits < 1:
            raise ValueError(f"min_hits must be >= 1, got {self.min_hits}")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError(f"iou_threshold must be within [0, 1], got {self.iou_threshold}")
        if self.fallback_frame_width <= 0 or self.fallback_frame_height <= 0:
            raise ValueError(
                f"fallback frame size must be positive, got "
                f"{self.fallback_frame_width}x{self.fallback_frame_height}"
            )


class KalmanTrackerManager:
    """
    Tracker pool with greedy IoU association.

    Call update() on frames where the detector ran and predict() on frames
    where it was skipped. Not thread-safe: calls must come from a single
    processing thread.
    """

    def __init__(self, config: Optional[TrackerConfig] = None):
        """
        Initialize the tracker pool.

        Args:
            config: Pool configuration
        """
        self.config = config or TrackerConfig()

        self._trackers: List[KalmanBoxTracker] = []
        self._next_id: int = 1

        self.frame_width: int = self.config.fallback_frame_width
        self.frame_height: int = self.config.fallback_frame_height

    def set_frame_size(self, width: int, height: int):
        """Set frame dimensions used to normalize output boxes."""
        if width <= 0 or height <= 0:
            logger.warning(
                f"Ignoring invalid frame size {width}x{height}, "
                f"keeping {self.frame_width}x{self.frame_height}"
            )
            return
        self.frame_width = width
        self.frame_height = height

    def predict(self) -> List[Detection]:
        """
        Coast all tracks one frame (no detection cycle ran).

        Returns:
            Boxes of all confirmed tracks
        """
        self._remove_stale()

        for tracker in self._trackers:
            tracker.predict()

        self._remove_stale()

        boxes = self.get_tracked_boxes()
        logger.debug(f"Predicted {len(boxes)} tracks")
        return boxes

    def update(self, detections: List[Detection]) -> List[Detection]:
        """
        Associate detections with tracks and advance every track one frame.

        Args:
            detections: Detector output for this frame

        Returns:
            Boxes of all confirmed tracks
        """
        logger.debug(f"Updating with {len(detections)} detections, {len(self._trackers)} existing tracks")

        if not detections:
            return self.predict()

        if not self._trackers:
            new_trackers = [self._create_tracker(d) for d in detections]
            if self.config.filter_first_frame:
                return [
                    t.to_box(self.frame_width, self.frame_height)
                    for t in new_trackers
                    if t.confirmed
                ]
            return list(detections)

        iou_matrix = self._iou_matrix(detections)
        matches = self._greedy_match(iou_matrix)

        matched_tracks = set()
        matched_detections = set()
        for t_idx, d_idx in matches:
            self._trackers[t_idx].update(detections[d_idx])
            matched_tracks.add(t_idx)
            matched_detections.add(d_idx)
            logger.debug(
                f"Matched track {self._trackers[t_idx].id} to detection {d_idx} "
                f"(IoU={iou_matrix[t_idx, d_idx]:.3f})"
            )

        for d_idx, detection in enumerate(detections):
            if d_idx not in matched_detections:
                self._create_tracker(detection)

        # Tracks spawned above are unmatched too and coast with the rest
        for t_idx in range(len(self._trackers)):
            if t_idx not in matched_tracks:
                self._trackers[t_idx].predict()

        self._remove_stale()

        boxes = self.get_tracked_boxes()
        logger.debug(f"Returning {len(boxes)} tracked boxes")
        return boxes

    def get_tracked_boxes(self) -> List[Detection]:
        """Snapshot of confirmed track boxes; does not advance any state."""
        return [
            tracker.to_box(self.frame_width, self.frame_height)
            for tracker in self._trackers
            if tracker.confirmed
        ]

    def clear(self):
        """Remove all tracks and restart ID numbering."""
        self._trackers.clear()
        self._next_id = 1
        logger.info("Tracker pool cleared")

    @property
    def track_count(self) -> int:
        """Number of confirmed tracks."""
        return sum(1 for tracker in self._trackers if tracker.confirmed)

    @property
    def ids_issued(self) -> int:
        """Track IDs handed out since construction or the last clear()."""
        return self._next_id - 1

    @property
    def trackers(self) -> List[KalmanBoxTracker]:
        """Live trackers (read-only copy of the pool)."""
        return list(self._trackers)

    def _create_tracker(self, detection: Detection) -> KalmanBoxTracker:
        tracker = KalmanBoxTracker(
            detection,
            self._generate_id(),
            max_age=self.config.max_age,
            min_hits=self.config.min_hits,
        )
        self._trackers.append(tracker)
        return tracker

    def _generate_id(self) -> int:
        track_id = self._next_id
        self._next_id += 1
        return track_id

    def _iou_matrix(self, detections: List[Detection]) -> np.ndarray:
        """IoU of every (track, detection) pair, shape (tracks, detections)."""
        iou_matrix = np.zeros((len(self._trackers), len(detections)))
        for t_idx, tracker in enumerate(self._trackers):
            for d_idx, detection in enumerate(detections):
                iou_matrix[t_idx, d_idx] = tracker.iou(detection)
        return iou_matrix

    def _greedy_match(self, iou_matrix: np.ndarray) -> List[Tuple[int, int]]:
        """
        Greedy approximation of bipartite assignment.

        Candidates above the IoU threshold are accepted best-first whenever
        neither side has been matched yet.

        Returns:
            List of (track_index, detection_index) pairs
        """
        t_indices, d_indices = np.nonzero(iou_matrix > self.config.iou_threshold)
        scores = iou_matrix[t_indices, d_indices]
        order = np.argsort(-scores, kind="stable")

        matches = []
        used_tracks = set()
        used_detections = set()
        for k in order:
            t_idx, d_idx = int(t_indices[k]), int(d_indices[k])
            if t_idx in used_tracks or d_idx in used_detections:
                continue
            matches.append((t_idx, d_idx))
            used_tracks.add(t_idx)
            used_detections.add(d_idx)
        return matches

    def _remove_stale(self):
        stale = [tracker for tracker in self._trackers if tracker.is_stale]
        if not stale:
            return
        for tracker in stale:
            logger.debug(f"Track lost: {tracker.id} (unmatched for {tracker.time_since_update} frames)")
        self._trackers = [tracker for tracker in self._trackers if not tracker.is_stale]
