# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for configuration loading and validation."""

import pytest
import yaml

from beadview.config import Config, ConfigurationError


def test_default_config_when_file_missing(tmp_path):
    """Test that defaults are used when config file is missing."""
    config = Config(config_path=tmp_path / "nonexistent.yml")

    assert config.debounce_ms == 200
    assert config.heartbeat_interval_s == 5.0
    assert config.heartbeat_timeout_s == 30.0
    assert config.max_retries == 3
    assert config.retry_backoff_base_ms == 500
    assert config.retry_backoff_max_ms == 8000
    assert config.incremental_max_change_ratio == 0.2
    assert config.tier_small_max == 1000
    assert config.tier_medium_max == 5000
    assert config.tier_large_max == 20000
    assert config.freshness_warn_s == 30.0
    assert config.freshness_stale_s == 120.0
    assert config.error_badge_threshold == 3
    assert config.message_buffer_size == 16
    assert config.max_cycles_to_store == 100
    assert config.insights_limit == 10


def test_valid_config_loading(tmp_path):
    """Test loading a valid configuration file."""
    config_path = tmp_path / ".beadview.yml"
    with open(config_path, "w") as f:
        yaml.dump({"debounce_ms": 50, "max_retries": 0, "freshness_warn_s": 10}, f)

    config = Config(config_path=config_path)

    assert config.debounce_ms == 50
    assert config.max_retries == 0
    # Integer YAML values for float settings are converted
    assert config.freshness_warn_s == 10.0
    assert isinstance(config.freshness_warn_s, float)
    # Defaults for unspecified values
    assert config.heartbeat_timeout_s == 30.0


def test_invalid_parameter_values(tmp_path):
    """Test that invalid parameter values are rejected and defaults used."""
    config_path = tmp_path / ".beadview.yml"
    with open(config_path, "w") as f:
        yaml.dump(
            {
                "debounce_ms": -5,
                "max_retries": "three",
                "incremental_max_change_ratio": 1.5,
                "heartbeat_interval_s": True,
                "message_buffer_size": 0,
            },
            f,
        )

    config = Config(config_path=config_path)

    assert config.debounce_ms == 200
    assert config.max_retries == 3
    assert config.incremental_max_change_ratio == 0.2
    assert config.heartbeat_interval_s == 5.0
    assert config.message_buffer_size == 16


def test_unknown_parameter_ignored(tmp_path, caplog):
    """Test that unknown keys are logged and ignored."""
    config_path = tmp_path / ".beadview.yml"
    config_path.write_text("not_a_setting: 1\ndebounce_ms: 300\n")

    config = Config(config_path=config_path)

    assert config.debounce_ms == 300
    assert "not_a_setting" not in config.as_dict()
    assert "Unknown configuration parameter" in caplog.text


@pytest.mark.parametrize(
    "content",
    ["", "- just\n- a list\n", "debounce_ms: [unclosed\n"],
    ids=["empty", "not-a-dict", "malformed"],
)
def test_unusable_file_falls_back_to_defaults(tmp_path, content):
    """Test that empty, non-dict or unparseable files give defaults."""
    config_path = tmp_path / ".beadview.yml"
    config_path.write_text(content)

    config = Config(config_path=config_path)

    assert config.as_dict() == Config.DEFAULTS


def test_tier_thresholds_must_increase():
    """Test that inconsistent tier thresholds raise ConfigurationError."""
    with pytest.raises(ConfigurationError):
        Config.from_dict({"tier_small_max": 6000, "tier_medium_max": 5000})


def test_from_dict_without_file():
    """Test building configuration from an in-memory mapping."""
    config = Config.from_dict({"insights_limit": 3})

    assert config.config_path is None
    assert config.insights_limit == 3
    assert config.tier_large_max == 20000
