"""
Kalman Filter for Bounding Box Tracking.

Keeps one object's box alive between detector runs, so a plausible box
exists every frame even when detection is skipped for performance.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
from numpy.typing import NDArray
from loguru import logger

from src.core.contracts import Detection, Rect


# State: x, y, w, h, vx, vy, vw, vh
STATE_DIM = 8
# Measurement: x, y, w, h
MEASURE_DIM = 4

# Process noise (how much we expect state to change per frame)
PROCESS_NOISE_POS = 100.0
PROCESS_NOISE_VEL = 25.0

# Measurement noise (how much we trust detections)
MEASUREMENT_NOISE = 10.0

# Track management
MAX_AGE = 30                 # Frames without detection before deletion
MIN_HITS = 1                 # Detections needed to confirm (1 = show immediately)
TRACKER_IOU_THRESHOLD = 0.15  # Kept for parity; the pool matches with its own threshold
MIN_SIZE = 10.0
VELOCITY_SMOOTHING_ALPHA = 0.3

INITIAL_POS_VARIANCE = 10.0
INITIAL_VEL_VARIANCE = 1000.0  # Initial velocity is unknown


class KalmanBoxTracker:
    """
    Kalman filter for tracking a single bounding box.

    State vector: [x_center, y_center, width, height, vx, vy, vw, vh]
    Measurement: [x_center, y_center, width, height]

    The covariance is kept as a full matrix but only its diagonal is
    touched: every state dimension gets its own scalar gain instead of a
    matrix solve.
    """

    IOU_THRESHOLD = TRACKER_IOU_THRESHOLD

    def __init__(
        self,
        detection: Detection,
        track_id: int,
        max_age: int = MAX_AGE,
        min_hits: int = MIN_HITS,
        process_noise_pos: float = PROCESS_NOISE_POS,
        process_noise_vel: float = PROCESS_NOISE_VEL,
        measurement_noise: float = MEASUREMENT_NOISE,
    ):
        """
        Initialize tracker from its first detection.

        Args:
            detection: Detection that spawned this track
            track_id: Unique identifier assigned by the pool manager
            max_age: Frames without a match before the track is stale
            min_hits: Matches needed before the track is output
            process_noise_pos: Per-frame variance added to position/size
            process_noise_vel: Per-frame variance added to rates
            measurement_noise: Detection measurement variance
        """
        self.dim_x = STATE_DIM
        self.dim_z = MEASURE_DIM

        self.max_age = max_age
        self.min_hits = min_hits
        self.process_noise_pos = process_noise_pos
        self.process_noise_vel = process_noise_vel
        self.measurement_noise = measurement_noise

        self._id = track_id

        cx, cy = detection.box.center
        w = max(MIN_SIZE, detection.box.width)
        h = max(MIN_SIZE, detection.box.height)

        # Velocities stay at 0 until the first match
        self.x: NDArray[np.float64] = np.zeros(self.dim_x)
        self.x[:self.dim_z] = [cx, cy, w, h]

        self.P: NDArray[np.float64] = np.zeros((self.dim_x, self.dim_x))
        self.P[np.diag_indices(self.dim_z)] = INITIAL_POS_VARIANCE
        self.P[self.dim_z:, self.dim_z:] = np.eye(self.dim_x - self.dim_z) * INITIAL_VEL_VARIANCE

        self.class_index = detection.class_index
        self.class_name = detection.class_name
        self.confidence = detection.confidence

        self.age = 1
        self.hits = 1
        self.time_since_update = 0
        self.confirmed = self.hits >= self.min_hits

        logger.debug(f"Track {self._id} created at ({cx:.1f}, {cy:.1f}) size {w:.1f}x{h:.1f}")

    def predict(self) -> Rect:
        """
        Advance the state one frame with the constant velocity model.

        Returns:
            Predicted bounding box
        """
        self.x[:self.dim_z] += self.x[self.dim_z:]

        # Size must stay positive
        self.x[2] = max(MIN_SIZE, self.x[2])
        self.x[3] = max(MIN_SIZE, self.x[3])

        # P = F*P*F' + Q, reduced to diagonal inflation
        diag = np.arange(self.dim_x)
        self.P[diag[:self.dim_z], diag[:self.dim_z]] += self.process_noise_pos
        self.P[diag[self.dim_z:], diag[self.dim_z:]] += self.process_noise_vel

        self.age += 1
        self.time_since_update += 1

        return self.bounding_box

    def update(self, detection: Detection):
        """
        Correct the state with a matched detection.

        Args:
            detection: Detection associated with this track
        """
        cx, cy = detection.box.center
        z = np.array([cx, cy, detection.box.width, detection.box.height])

        # Innovation (measurement residual)
        y = z - self.x[:self.dim_z]

        # Per-dimension gain; rate dimensions borrow their position/size row
        rows = np.arange(self.dim_x)
        cols = rows % self.dim_z
        gain = self.P[rows, cols] / (self.P[cols, cols] + self.measurement_noise)

        self.x = self.x + gain * y[cols]

        # Learn motion from consecutive matches
        if self.time_since_update <= 2:
            alpha = VELOCITY_SMOOTHING_ALPHA
            self.x[4:6] = (1 - alpha) * self.x[4:6] + alpha * y[:2]

        # P = (I - K*H) * P on the measured block
        measured = np.arange(self.dim_z)
        self.P[measured, measured] *= 1.0 - gain[:self.dim_z]

        self.class_index = detection.class_index
        self.class_name = detection.class_name
        self.confidence = detection.confidence
        self.hits += 1
        self.time_since_update = 0

        if self.hits >= self.min_hits:
            self.confirmed = True

        logger.debug(
            f"Track {self._id} updated: pos=({self.x[0]:.1f}, {self.x[1]:.1f}) "
            f"vel=({self.x[4]:.2f}, {self.x[5]:.2f}) conf={self.confidence:.2f}"
        )

    def iou(self, detection: Detection) -> float:
        """IoU between the current box and a detection's box."""
        return self.bounding_box.iou(detection.box)

    def to_box(self, frame_width: float, frame_height: float) -> Detection:
        """
        Package the current state for rendering.

        Args:
            frame_width: Source frame width in pixels
            frame_height: Source frame height in pixels
        """
        bbox = self.bounding_box
        return Detection(
            class_index=self.class_index,
            class_name=self.class_name,
            confidence=self.confidence,
            box=bbox,
            box_normalized=bbox.normalized(frame_width, frame_height),
        )

    @property
    def bounding_box(self) -> Rect:
        """Current box in pixel coordinates."""
        cx, cy, w, h = (float(v) for v in self.x[:self.dim_z])
        return Rect.from_center(cx, cy, w, h)

    @property
    def velocity(self) -> Tuple[float, float]:
        """Current velocity estimate (vx, vy) in pixels per frame."""
        return float(self.x[4]), float(self.x[5])

    @property
    def id(self) -> int:
        return self._id

    @property
    def is_stale(self) -> bool:
        return self.time_since_update > self.max_age
