"""Exception types raised by the tracking core.

Nothing in the per-frame pipeline is fatal: these are only raised for input
that cannot be interpreted at all (a malformed detector payload, an unreadable
config file). The session catches `PoseDataError` and treats it as a missed
detection.
"""

from __future__ import annotations

__all__ = ["TrackingError", "PoseDataError", "ConfigError"]


class TrackingError(Exception):
    """Base class for tracking-core errors."""


class PoseDataError(TrackingError, ValueError):
    """Raised when raw detector output cannot be normalised into a Pose."""


class ConfigError(TrackingError, ValueError):
    """Raised when a tracking config file is missing, unreadable or malformed."""
