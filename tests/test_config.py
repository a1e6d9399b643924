import json

import pytest

from tryon_tracker.env import get_env
from tryon_tracker.tracking.config import (
    TrackingConfig,
    config_as_dict,
    load_tracking_config,
    validate_config_values,
)
from tryon_tracker.tracking.errors import ConfigError


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("CONFIG", "MIN_CONFIDENCE", "SMOOTHING_FACTOR", "ENABLE_TRACKING", "TEMPORAL_WINDOW_SIZE"):
        monkeypatch.delenv("TRYON_TRACKER_" + name, raising=False)


def test_defaults() -> None:
    config = load_tracking_config()
    assert config == TrackingConfig()
    assert config.min_confidence == 0.5
    assert config.temporal_window_ms == 1000.0
    assert config.max_recovery_attempts == 5
    assert config.recovery_cooldown_ms == 500


def test_env_overrides_use_the_package_prefix(monkeypatch) -> None:
    assert get_env("MIN_CONFIDENCE") is None
    assert get_env("MIN_CONFIDENCE", "0.5") == "0.5"
    assert load_tracking_config().min_confidence == pytest.approx(0.5)
    monkeypatch.setenv("TRYON_TRACKER_MIN_CONFIDENCE", "0.6")
    assert get_env("MIN_CONFIDENCE") == "0.6"
    assert load_tracking_config().min_confidence == pytest.approx(0.6)


def test_env_bool_and_int_coercion(monkeypatch) -> None:
    monkeypatch.setenv("TRYON_TRACKER_ENABLE_TRACKING", "off")
    monkeypatch.setenv("TRYON_TRACKER_TEMPORAL_WINDOW_SIZE", "3")
    config = load_tracking_config()
    assert config.enable_tracking is False
    assert config.temporal_window_size == 3
    assert config.temporal_window_ms == 600.0


def test_invalid_env_value_falls_back_with_warning(monkeypatch) -> None:
    monkeypatch.setenv("TRYON_TRACKER_SMOOTHING_FACTOR", "lots")
    with pytest.warns(RuntimeWarning):
        config = load_tracking_config()
    assert config.smoothing_factor == 0.7


def test_toml_file_with_tracking_table(tmp_path) -> None:
    path = tmp_path / "tracking.toml"
    path.write_text("[tracking]\nmin_confidence = 0.65\nmax_jitter_threshold = 4\nunknown_key = 1\n")
    config = load_tracking_config(path)
    assert config.min_confidence == pytest.approx(0.65)
    assert config.max_jitter_threshold == pytest.approx(4.0)


def test_json_file_and_env_override(tmp_path, monkeypatch) -> None:
    path = tmp_path / "tracking.json"
    path.write_text(json.dumps({"smoothing_factor": 0.5, "recovery_cooldown_ms": 250}))
    monkeypatch.setenv("TRYON_TRACKER_CONFIG", str(path))
    monkeypatch.setenv("TRYON_TRACKER_SMOOTHING_FACTOR", "0.9")
    config = load_tracking_config()
    assert config.recovery_cooldown_ms == 250
    assert config.smoothing_factor == pytest.approx(0.9)
    payload = config_as_dict(config)
    assert payload["source"] == str(path)
    assert payload["temporal_window_ms"] == 1000.0


def test_missing_or_unsupported_file_raises(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_tracking_config(tmp_path / "missing.toml")
    bad = tmp_path / "tracking.yaml"
    bad.write_text("min_confidence: 0.5")
    with pytest.raises(ConfigError):
        load_tracking_config(bad)


def test_validate_config_values_warns_on_out_of_range() -> None:
    with pytest.warns(RuntimeWarning, match="min_confidence"):
        validate_config_values(TrackingConfig(min_confidence=1.5))
