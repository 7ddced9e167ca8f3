"""
Core data contracts shared by the tracker, the pool manager and the
streaming adapter.
"""

from .contracts import (
    Rect,
    Detection,
)
