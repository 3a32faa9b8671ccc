# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Configuration loading and validation for beadview."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration validation fails critically."""

    pass


class Config:
    """Configuration for the snapshot pipeline and background worker.

    Loads configuration from .beadview.yml with validation and defaults.
    """

    DEFAULTS = {
        # Background worker
        "debounce_ms": 200,
        "heartbeat_interval_s": 5.0,
        "heartbeat_timeout_s": 30.0,
        "max_retries": 3,
        "retry_backoff_base_ms": 500,
        "retry_backoff_max_ms": 8000,
        "message_buffer_size": 16,
        # Snapshot policy
        "incremental_max_change_ratio": 0.2,
        "tier_small_max": 1000,
        "tier_medium_max": 5000,
        "tier_large_max": 20000,
        # Analysis
        "max_cycles_to_store": 100,
        "insights_limit": 10,
        # Consumer indicators
        "freshness_warn_s": 30.0,
        "freshness_stale_s": 120.0,
        "error_badge_threshold": 3,
    }

    _POSITIVE_INTS = (
        "debounce_ms",
        "retry_backoff_base_ms",
        "retry_backoff_max_ms",
        "message_buffer_size",
        "tier_small_max",
        "tier_medium_max",
        "tier_large_max",
        "max_cycles_to_store",
        "insights_limit",
        "error_badge_threshold",
    )

    _POSITIVE_FLOATS = (
        "heartbeat_interval_s",
        "heartbeat_timeout_s",
        "freshness_warn_s",
        "freshness_stale_s",
    )

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file. If None, uses default location.

        Raises:
            ConfigurationError: If the merged tier thresholds are not increasing.
        """
        if config_path is None:
            config_path = Path.cwd() / ".beadview.yml"

        self.config_path = config_path
        self._config: Dict[str, Any] = {}
        self._load_config()
        self._check_consistency()

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "Config":
        """Build a configuration from an in-memory mapping (no file access)."""
        config = cls.__new__(cls)
        config.config_path = None
        config._config = cls.DEFAULTS.copy()
        config._validate_and_merge(values)
        config._check_consistency()
        return config

    def _load_config(self) -> None:
        """Load and validate configuration from file."""
        if not self.config_path.exists():
            logger.info(f"Configuration file not found at {self.config_path}, using defaults")
            self._config = self.DEFAULTS.copy()
            return

        try:
            with open(self.config_path, encoding="utf-8") as f:
                loaded_config = yaml.safe_load(f)

            if loaded_config is None:
                logger.warning("Configuration file is empty, using defaults")
                self._config = self.DEFAULTS.copy()
                return

            if not isinstance(loaded_config, dict):
                logger.warning(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(loaded_config)}, using defaults"
                )
                self._config = self.DEFAULTS.copy()
                return

            self._config = self.DEFAULTS.copy()
            self._validate_and_merge(loaded_config)

        except yaml.YAMLError as e:
            logger.warning(
                f"Error parsing configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self.DEFAULTS.copy()
        except OSError as e:
            logger.warning(
                f"Error reading configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self.DEFAULTS.copy()

    def _validate_and_merge(self, loaded_config: Dict[str, Any]) -> None:
        """Validate loaded configuration and merge with defaults.

        Invalid parameters are logged as warnings and defaults are used.
        """
        for key, value in loaded_config.items():
            if key not in self.DEFAULTS:
                logger.warning(f"Unknown configuration parameter '{key}', ignoring")
                continue

            if not self._validate_parameter(key, value):
                logger.warning(
                    f"Invalid value for '{key}': {value}, using default {self.DEFAULTS[key]}"
                )
                continue

            # YAML gives ints for "30"; keep float-typed settings as floats
            if isinstance(self.DEFAULTS[key], float):
                value = float(value)
            self._config[key] = value

    def _validate_parameter(self, key: str, value: Any) -> bool:
        """Validate a configuration parameter.

        Returns:
            True if valid, False if invalid
        """
        if isinstance(value, bool):
            return False

        expected_type = type(self.DEFAULTS[key])
        if expected_type is float:
            if not isinstance(value, (int, float)):
                return False
        elif not isinstance(value, expected_type):
            return False

        if key in self._POSITIVE_INTS:
            return bool(value > 0)
        elif key in self._POSITIVE_FLOATS:
            return bool(value > 0)
        elif key == "max_retries":
            return bool(0 <= value <= 100)
        elif key == "incremental_max_change_ratio":
            return bool(0.0 <= value <= 1.0)

        return True

    def _check_consistency(self) -> None:
        small, medium, large = self.tier_small_max, self.tier_medium_max, self.tier_large_max
        if not (small < medium < large):
            raise ConfigurationError(
                f"Tier thresholds must increase: small={small} medium={medium} large={large}"
            )
        if self.freshness_warn_s > self.freshness_stale_s:
            logger.warning(
                f"freshness_warn_s ({self.freshness_warn_s}) exceeds freshness_stale_s "
                f"({self.freshness_stale_s}); stale will take precedence"
            )

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._config)

    @property
    def debounce_ms(self) -> int:
        """Quiet period before a file change triggers a rebuild."""
        value = self._config["debounce_ms"]
        assert isinstance(value, int)
        return value

    @property
    def heartbeat_interval_s(self) -> float:
        """How often the worker refreshes its heartbeat while idle."""
        value = self._config["heartbeat_interval_s"]
        assert isinstance(value, float)
        return value

    @property
    def heartbeat_timeout_s(self) -> float:
        """Heartbeat age after which the worker is shown as unresponsive."""
        value = self._config["heartbeat_timeout_s"]
        assert isinstance(value, float)
        return value

    @property
    def max_retries(self) -> int:
        """Automatic retries after a failed build before giving up."""
        value = self._config["max_retries"]
        assert isinstance(value, int)
        return value

    @property
    def retry_backoff_base_ms(self) -> int:
        value = self._config["retry_backoff_base_ms"]
        assert isinstance(value, int)
        return value

    @property
    def retry_backoff_max_ms(self) -> int:
        value = self._config["retry_backoff_max_ms"]
        assert isinstance(value, int)
        return value

    @property
    def message_buffer_size(self) -> int:
        """Capacity of the worker's outgoing message queue."""
        value = self._config["message_buffer_size"]
        assert isinstance(value, int)
        return value

    @property
    def incremental_max_change_ratio(self) -> float:
        """Largest changed/total ratio that still allows an incremental list rebuild."""
        value = self._config["incremental_max_change_ratio"]
        assert isinstance(value, float)
        return value

    @property
    def tier_small_max(self) -> int:
        value = self._config["tier_small_max"]
        assert isinstance(value, int)
        return value

    @property
    def tier_medium_max(self) -> int:
        value = self._config["tier_medium_max"]
        assert isinstance(value, int)
        return value

    @property
    def tier_large_max(self) -> int:
        """Issue count at which the dataset becomes huge (phase 2 skipped)."""
        value = self._config["tier_large_max"]
        assert isinstance(value, int)
        return value

    @property
    def max_cycles_to_store(self) -> int:
        value = self._config["max_cycles_to_store"]
        assert isinstance(value, int)
        return value

    @property
    def insights_limit(self) -> int:
        """Number of top issues kept per metric in insights."""
        value = self._config["insights_limit"]
        assert isinstance(value, int)
        return value

    @property
    def freshness_warn_s(self) -> float:
        value = self._config["freshness_warn_s"]
        assert isinstance(value, float)
        return value

    @property
    def freshness_stale_s(self) -> float:
        value = self._config["freshness_stale_s"]
        assert isinstance(value, float)
        return value

    @property
    def error_badge_threshold(self) -> int:
        """Consecutive failures before the error badge is shown."""
        value = self._config["error_badge_threshold"]
        assert isinstance(value, int)
        return value
