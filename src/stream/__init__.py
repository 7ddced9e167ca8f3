"""
Detector Streaming Module.

Responsibilities:
- Parse detector streaming payloads into Detection records
- Reject degenerate boxes before they reach the tracker
- Keep the tracker's frame size in sync with the source
"""

from .streaming_adapter import (
    StreamingTracker,
    StreamingResult,
    parse_streaming_detections,
)
