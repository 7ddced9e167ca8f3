"""
Kalman Box Tracking for Throttled Detectors

Keeps a smooth, temporally coherent bounding box for every object an
external detector reports, even on frames where the detector is skipped.

Per processed camera frame (NEVER REORDER):
1. Associate fresh detections with live tracks (greedy IoU)
2. Correct matched tracks, spawn tracks for unmatched detections
3. Coast unmatched tracks forward on their learned velocity
4. Retire tracks that have gone unmatched for too long
5. Hand confirmed boxes to the renderer
"""

__version__ = "0.1.0"
__author__ = "Ball Tracking Team"
