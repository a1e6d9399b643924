from __future__ import annotations

import os

ENV_PREFIX = "TRYON_TRACKER_"


def get_env(name: str, default: str | None = None) -> str | None:
    """Resolve a ``TRYON_TRACKER_<name>`` configuration environment variable."""
    return os.getenv(f"{ENV_PREFIX}{name}", default)
