"""Configuration for create-ebs-volume: JSON file defaults plus per-call overrides"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .devices import DEFAULT_LOCK_FILE
from .errors import ConfigurationError
from .models import ResourceLimits, VolumeRequest

logger = logging.getLogger(__name__)

DEFAULTS: dict[str, Any] = {
    "volume": {
        "type": "gp3",
        "iops": None,
        "throughput": None,
        "encrypted": True,
    },
    "limits": {
        "max_logical_volume_size": 8000,
        "max_ebs_volume_count": 16,
        "max_attached_volumes": 16,
    },
    "logging": {
        "log_file": None,
    },
    "timeouts": {
        "volume_available": 600,
        "volume_poll_interval": 5,
        "device_visible": 300,
        "device_poll_interval": 1,
    },
    "device_lock_file": DEFAULT_LOCK_FILE,
}


@dataclass(frozen=True)
class Settings:
    """Everything one invocation needs, resolved once and passed down."""
    request: VolumeRequest
    limits: ResourceLimits
    log_file: str | None = None
    volume_available_timeout: float | None = 600
    volume_poll_interval: float = 5.0
    device_visible_timeout: float | None = 300
    device_poll_interval: float = 1.0
    device_lock_file: str | None = DEFAULT_LOCK_FILE
    verbose: bool = False


def _as_bool(value: Any, key: str) -> bool:
    # The shell version of this file stores flags as 0/1
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0", "yes", "no"):
        return value.strip().lower() in ("true", "1", "yes")
    raise ConfigurationError(f"{key} must be a boolean, got {value!r}")


def _as_int(value: Any, key: str, optional: bool = False) -> int | None:
    if value is None and optional:
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")


def _as_path(value: Any, key: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"{key} must be a file path or null, got {value!r}")
    return value


def _as_timeout(value: Any, key: str) -> float | None:
    """0 or null means wait forever."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be a number of seconds, got {value!r}")
    if seconds < 0:
        raise ConfigurationError(f"{key} must not be negative, got {value!r}")
    return seconds or None


class Config:
    """Loads /etc/ebs-autoscale.json (or EBS_AUTOSCALE_CONFIG) over built-in defaults"""

    CONFIG_FILE = Path("/etc/ebs-autoscale.json")

    def __init__(self, config_file: str | Path | None = None):
        self.config_file = Path(
            config_file or os.environ.get("EBS_AUTOSCALE_CONFIG") or self.CONFIG_FILE
        )
        self.data = self._load()

    def _load(self) -> dict[str, Any]:
        merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in DEFAULTS.items()}

        if not self.config_file.exists():
            logger.warning(f"Config file {self.config_file} not found, using defaults")
            return merged

        try:
            with open(self.config_file, "r") as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Could not parse {self.config_file}: {e}")
        except OSError as e:
            raise ConfigurationError(f"Could not read {self.config_file}: {e}")

        if not isinstance(loaded, dict):
            raise ConfigurationError(f"{self.config_file} must contain a JSON object")

        for key, value in loaded.items():
            if isinstance(merged.get(key), dict):
                if not isinstance(value, dict):
                    raise ConfigurationError(f"{self.config_file}: '{key}' must be a JSON object, got {value!r}")
                merged[key].update(value)
            else:
                merged[key] = value

        logger.debug(f"Loaded config from {self.config_file}")
        return merged

    def get(self, section: str, key: str, default: Any = None) -> Any:
        value = self.data.get(section) or {}
        return value.get(key, default)

    def settings(
        self,
        size_gb: int | None,
        volume_type: str | None = None,
        iops: int | None = None,
        throughput: int | None = None,
        encrypted: bool | None = None,
        max_total_created_size: int | None = None,
        max_attached_volumes: int | None = None,
        max_created_volumes: int | None = None,
        verbose: bool = False,
    ) -> Settings:
        """
        Build the frozen Settings for one invocation.

        Arguments that are None fall back to the config file, then to the
        built-in defaults.

        Raises:
            ConfigurationError: If a config file value has the wrong type
            UsageError: If the resulting request or limits are invalid
        """
        def pick(override, section, key, convert):
            if override is not None:
                return override
            return convert(self.get(section, key), f"{section}.{key}")

        request = VolumeRequest(
            size_gb=size_gb,
            volume_type=volume_type or str(self.get("volume", "type") or DEFAULTS["volume"]["type"]),
            iops=pick(iops, "volume", "iops", lambda v, k: _as_int(v, k, optional=True)),
            throughput=pick(throughput, "volume", "throughput", lambda v, k: _as_int(v, k, optional=True)),
            encrypted=pick(encrypted, "volume", "encrypted", _as_bool),
        ).validate()

        limits = ResourceLimits(
            max_total_created_size_gb=pick(max_total_created_size, "limits", "max_logical_volume_size", _as_int),
            max_attached_volumes=pick(max_attached_volumes, "limits", "max_attached_volumes", _as_int),
            max_created_volumes=pick(max_created_volumes, "limits", "max_ebs_volume_count", _as_int),
        ).validate()

        return Settings(
            request=request,
            limits=limits,
            log_file=_as_path(self.get("logging", "log_file"), "logging.log_file"),
            volume_available_timeout=_as_timeout(self.get("timeouts", "volume_available"), "timeouts.volume_available"),
            volume_poll_interval=_as_timeout(self.get("timeouts", "volume_poll_interval"), "timeouts.volume_poll_interval") or 5.0,
            device_visible_timeout=_as_timeout(self.get("timeouts", "device_visible"), "timeouts.device_visible"),
            device_poll_interval=_as_timeout(self.get("timeouts", "device_poll_interval"), "timeouts.device_poll_interval") or 1.0,
            device_lock_file=_as_path(self.data.get("device_lock_file"), "device_lock_file"),
            verbose=verbose,
        )
