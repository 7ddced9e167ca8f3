"""
Object Tracking Module.

Responsibilities:
- Persistent integer track IDs
- Kalman filtering for smooth boxes between detector runs
- Greedy IoU association of detections to tracks
- Age-based track retirement
"""

from .kalman_tracker import KalmanBoxTracker
from .tracker_manager import KalmanTrackerManager, TrackerConfig
