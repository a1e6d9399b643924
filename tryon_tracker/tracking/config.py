"""Configuration for the try-on pose tracking pipeline.

Settings include:
- MIN_CONFIDENCE: pose confidence below which the renderer should not draw.
- SMOOTHING_FACTOR / TEMPORAL_WINDOW_SIZE / MAX_JITTER_THRESHOLD: temporal
  smoother tuning (window is ``TEMPORAL_WINDOW_SIZE * 200`` ms).
- MAX_RECOVERY_ATTEMPTS / RECOVERY_COOLDOWN_MS: recovery state machine limits.
- DEFAULT_FRAME_WIDTH / DEFAULT_FRAME_HEIGHT: frame size used when a caller
  does not provide one.

Values come from the dataclass defaults, an optional TOML/JSON file, and
environment variables (``TRYON_TRACKER_<NAME>``), in increasing precedence.
"""

from __future__ import annotations

import json
import logging
import os
import warnings
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from tryon_tracker.env import get_env
from tryon_tracker.tracking.errors import ConfigError

try:  # pragma: no cover - Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    try:
        import tomli as tomllib  # type: ignore
    except ModuleNotFoundError:
        tomllib = None  # type: ignore


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger("tryon_tracker.tracking")
    level_name = get_env("LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
        logger.setLevel(level)
    return logger


TRACKING_LOGGER = _configure_logger()
logger = TRACKING_LOGGER

DEFAULT_CONFIG_PATHS: tuple[str, ...] = ("config/tryon_tracker.toml", "config/tryon_tracker.json")


@dataclass(frozen=True)
class TrackingConfig:
    """Tunable options for one tracking session."""

    min_confidence: float = 0.5
    max_pose_count: int = 1
    enable_tracking: bool = True
    smoothing_factor: float = 0.7
    temporal_window_size: int = 5
    max_jitter_threshold: float = 10.0
    max_recovery_attempts: int = 5
    recovery_cooldown_ms: int = 500
    recovery_quality_threshold: float = 0.2
    default_frame_width: int = 400
    default_frame_height: int = 600

    @property
    def temporal_window_ms(self) -> float:
        return float(self.temporal_window_size) * 200.0


def _coerce_value(name: str, raw: Any, default: Any) -> Any:
    """Coerce a raw file/env value to the type of the dataclass default."""
    try:
        if isinstance(default, bool):
            if isinstance(raw, str):
                return raw.strip().lower() not in {"0", "false", "no", "off", ""}
            return bool(raw)
        if isinstance(default, int):
            return int(float(raw))
        return float(raw)
    except (TypeError, ValueError):
        warnings.warn(
            f"Ignoring invalid value {raw!r} for {name}; using default {default!r}.",
            RuntimeWarning,
            stacklevel=3,
        )
        logger.warning("Invalid value for %s: %r (using %r)", name, raw, default)
        return default


def _env_overrides(base: TrackingConfig) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for item in fields(TrackingConfig):
        raw = get_env(item.name.upper())
        if raw is None:
            continue
        overrides[item.name] = _coerce_value(item.name, raw, getattr(base, item.name))
    return overrides


def _config_path(path: str | Path | None) -> Path | None:
    if path is not None:
        return Path(path).expanduser()
    env_override = get_env("CONFIG")
    if env_override:
        return Path(env_override).expanduser()
    for candidate in DEFAULT_CONFIG_PATHS:
        default_path = Path(candidate)
        if default_path.exists():
            return default_path
    return None


def _load_file(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config not found: {path}")
    if not path.is_file():
        raise ConfigError(f"Expected a config file, but got a directory: {path}")

    suffix = path.suffix.lower()
    try:
        if suffix == ".toml":
            if tomllib is None:
                raise ConfigError("TOML configuration requires Python 3.11+ or the 'tomli' package.")
            with path.open("rb") as handle:
                raw = tomllib.load(handle)
        elif suffix == ".json":
            with path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        else:
            raise ConfigError(f"Unsupported config format for {path}; expected .toml or .json.")
    except (OSError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Could not read config {path}: {exc}") from exc

    body = raw.get("tracking", raw) if isinstance(raw, dict) else raw
    if not isinstance(body, dict):
        raise ConfigError("Invalid config structure; expected a mapping or a [tracking] section.")
    return body


def load_tracking_config(path: str | Path | None = None) -> TrackingConfig:
    """Build the effective config: defaults, then file values, then env vars.

    Unknown keys in the file are ignored with a log warning.
    """
    config = TrackingConfig()
    config_path = _config_path(path)
    if config_path is not None:
        body = _load_file(config_path)
        known = {item.name for item in fields(TrackingConfig)}
        file_values: Dict[str, Any] = {}
        for key, value in body.items():
            if key not in known:
                logger.warning("Ignoring unknown tracking config key %r in %s", key, config_path)
                continue
            file_values[key] = _coerce_value(key, value, getattr(config, key))
        config = replace(config, **file_values)

    overrides = _env_overrides(config)
    if overrides:
        config = replace(config, **overrides)
    validate_config_values(config)
    return config


def _warn(message: str) -> None:
    warnings.warn(message, RuntimeWarning, stacklevel=3)
    logger.warning(message)


def validate_config_values(config: TrackingConfig) -> None:
    """Emit warnings for suspicious settings; never raises."""
    for name in ("min_confidence", "smoothing_factor", "recovery_quality_threshold"):
        value = getattr(config, name)
        if not 0.0 <= value <= 1.0:
            _warn(f"{name}={value} is outside [0,1]; please correct the environment or config.")
    if config.temporal_window_size <= 0:
        _warn(f"temporal_window_size={config.temporal_window_size} is non-positive; history will always be empty.")
    if config.max_jitter_threshold < 0:
        _warn(f"max_jitter_threshold={config.max_jitter_threshold} is negative; jitter suppression is disabled.")
    if config.max_recovery_attempts <= 0:
        _warn(f"max_recovery_attempts={config.max_recovery_attempts} disables recovery entirely.")
    if config.recovery_cooldown_ms < 0:
        _warn(f"recovery_cooldown_ms={config.recovery_cooldown_ms} is negative.")
    if config.default_frame_width <= 0 or config.default_frame_height <= 0:
        _warn(
            "default frame size "
            f"{config.default_frame_width}x{config.default_frame_height} must be positive."
        )
    if config.max_pose_count != 1:
        logger.info("max_pose_count=%s: only the primary pose is tracked per session.", config.max_pose_count)


def config_as_dict(config: TrackingConfig | None = None, *, source: str | Path | None = None) -> dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    effective = config or load_tracking_config()
    payload = asdict(effective)
    payload["temporal_window_ms"] = effective.temporal_window_ms
    resolved = source if source is not None else _config_path(None)
    payload["source"] = str(resolved or "defaults")
    return payload


__all__ = [
    "TRACKING_LOGGER",
    "TrackingConfig",
    "load_tracking_config",
    "validate_config_values",
    "config_as_dict",
]
