#!/usr/bin/env python3
"""
Kalman Box Tracking - Stream Replay

Replays a recorded detector stream through the tracker and writes the
smoothed boxes for every frame.

Usage:
    python main.py RECORDING [--config CONFIG_PATH] [--output OUTPUT_PATH]

The recording is JSON lines, one detector streaming payload per line.
Lines without a "detections" key are frames where the detector was
skipped; the tracker coasts through them.

Output is JSON lines as well:
    {"frame": 0, "boxes": [{"classIndex": 0, "className": "ball", ...}]}
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Iterator, Optional, TextIO, Tuple

import yaml
from loguru import logger

from src.stream.streaming_adapter import StreamingTracker, result_to_dict
from src.tracking.tracker_manager import TrackerConfig


# ============================================================
# LOGGING CONFIGURATION
# ============================================================

def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure logging."""
    logger.remove()  # Remove default handler

    # Console output with colors
    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
        colorize=True,
    )

    # File output
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {module}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )


# ============================================================
# CONFIGURATION
# ============================================================

def load_config(config_path: Optional[str]) -> dict:
    """Load configuration from file."""
    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}

    if config_path:
        logger.warning(f"Config not found: {config_path}, using defaults")

    # Try default location
    default_path = Path(__file__).parent / "config" / "settings.yaml"
    if default_path.exists():
        with open(default_path) as f:
            return yaml.safe_load(f) or {}

    return {}


def build_tracker_config(config: dict) -> TrackerConfig:
    """Build TrackerConfig from the 'tracking' section."""
    tracking = config.get('tracking', {}) or {}
    defaults = TrackerConfig()
    return TrackerConfig(
        max_age=tracking.get('max_age', defaults.max_age),
        min_hits=tracking.get('min_hits', defaults.min_hits),
        iou_threshold=tracking.get('iou_threshold', defaults.iou_threshold),
        fallback_frame_width=tracking.get('fallback_frame_width', defaults.fallback_frame_width),
        fallback_frame_height=tracking.get('fallback_frame_height', defaults.fallback_frame_height),
        filter_first_frame=tracking.get('filter_first_frame', defaults.filter_first_frame),
    )


# ============================================================
# REPLAY
# ============================================================

def iter_payloads(path: Path) -> Iterator[Tuple[int, dict]]:
    """Yield (line_number, payload) for every decodable line."""
    with path.open("r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping line {line_number}: {e}")
                continue
            if not isinstance(payload, dict):
                logger.warning(f"Skipping line {line_number}: payload is not an object")
                continue
            yield line_number, payload


class ReplaySession:
    """Replays one recording through a StreamingTracker."""

    def __init__(self, tracker_config: Optional[TrackerConfig] = None):
        self.tracker = StreamingTracker(tracker_config)

        self.frames = 0
        self.detection_frames = 0
        self.peak_tracks = 0

    def run(self, recording: Path, out: TextIO) -> int:
        """
        Replay a recording.

        Args:
            recording: JSON-lines file of streaming payloads
            out: Stream receiving one JSON line per frame

        Returns:
            Number of frames processed
        """
        logger.info(f"Replaying {recording}")

        for _, payload in iter_payloads(recording):
            result = self.tracker.process_streaming_data(payload)

            if result.ran_detection:
                self.detection_frames += 1
            self.peak_tracks = max(self.peak_tracks, len(result.boxes))

            out.write(json.dumps(result_to_dict(self.frames, result)) + "\n")
            self.frames += 1

        logger.info(
            f"Replay done: {self.frames} frames, {self.detection_frames} with detections, "
            f"peak {self.peak_tracks} tracks, {self.tracker.manager.ids_issued} ids issued"
        )
        return self.frames


# ============================================================
# ENTRY POINT
# ============================================================

def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Replay a recorded detector stream through the Kalman box tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "recording",
        type=str,
        help="JSON-lines file of detector streaming payloads",
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Output JSON-lines path (default: stdout)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from config, else INFO)",
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Log file path (default: from config, else none)",
    )

    args = parser.parse_args(argv)

    config = load_config(args.config)
    logging_cfg = config.get('logging', {}) or {}
    replay_cfg = config.get('replay', {}) or {}

    # Setup logging
    setup_logging(
        args.log_level or logging_cfg.get('level', 'INFO'),
        args.log_file or logging_cfg.get('file'),
    )

    recording = Path(args.recording)
    if not recording.exists():
        logger.error(f"Recording not found: {recording}")
        return 1

    session = ReplaySession(build_tracker_config(config))

    output_path = args.output or replay_cfg.get('output')
    if output_path:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as out:
            session.run(recording, out)
        logger.info(f"Tracked boxes written to {output_path}")
    else:
        session.run(recording, sys.stdout)

    return 0


if __name__ == "__main__":
    sys.exit(main())
