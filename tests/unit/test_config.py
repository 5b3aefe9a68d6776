"""
Unit tests for ebs_autoscale.config

Tests:
- Defaults when no config file exists
- Config file loading and merging
- CLI override precedence
- Value validation
"""

import json
from unittest.mock import patch

import pytest

from ebs_autoscale.config import Config
from ebs_autoscale.errors import ConfigurationError, UsageError


def write_config(path, data):
    path.write_text(json.dumps(data))
    return path


class TestConfigLoad:

    def test_missing_file_uses_defaults(self, tmp_path):
        config = Config(tmp_path / "missing.json")
        settings = config.settings(size_gb=20)

        assert settings.request.volume_type == "gp3"
        assert settings.request.encrypted is True
        assert settings.request.iops is None
        assert settings.limits.max_total_created_size_gb == 8000
        assert settings.limits.max_created_volumes == 16
        assert settings.limits.max_attached_volumes == 16
        assert settings.volume_available_timeout == 600
        assert settings.device_visible_timeout == 300
        assert settings.device_poll_interval == 1.0

    def test_env_var_selects_file(self, tmp_path):
        path = write_config(tmp_path / "env.json", {"volume": {"type": "st1"}})
        with patch.dict("os.environ", {"EBS_AUTOSCALE_CONFIG": str(path)}):
            config = Config()
        assert config.config_file == path
        assert config.settings(size_gb=500).request.volume_type == "st1"

    def test_default_path_is_class_attribute(self, tmp_path):
        path = write_config(tmp_path / "etc.json", {"limits": {"max_ebs_volume_count": 4}})
        with patch("ebs_autoscale.config.Config.CONFIG_FILE", path), patch.dict("os.environ", {}, clear=True):
            config = Config()
        assert config.settings(size_gb=20).limits.max_created_volumes == 4

    def test_file_values_merge_over_defaults(self, tmp_path):
        path = write_config(tmp_path / "c.json", {
            "volume": {"type": "io2", "iops": 5000, "encrypted": 0},
            "limits": {"max_logical_volume_size": 2000},
            "logging": {"log_file": "/tmp/ebs-autoscale.log"},
        })

        settings = Config(path).settings(size_gb=100)

        assert settings.request.volume_type == "io2"
        assert settings.request.iops == 5000
        assert settings.request.encrypted is False
        assert settings.limits.max_total_created_size_gb == 2000
        # Untouched keys in the same section keep their defaults
        assert settings.limits.max_created_volumes == 16
        assert settings.log_file == "/tmp/ebs-autoscale.log"

    def test_unrelated_keys_are_ignored(self, tmp_path):
        path = write_config(tmp_path / "c.json", {
            "mountpoint": "/scratch",
            "filesystem": "btrfs",
            "lvm": {"volume_group": "autoscale_vg"},
        })
        assert Config(path).settings(size_gb=20).request.size_gb == 20

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "c.json"
        path.write_text("{nope")
        with pytest.raises(ConfigurationError, match="Could not parse"):
            Config(path)

    def test_non_object_json(self, tmp_path):
        path = write_config(tmp_path / "c.json", [1, 2, 3])
        with pytest.raises(ConfigurationError, match="JSON object"):
            Config(path)


class TestSettingsOverrides:

    @pytest.fixture
    def config(self, tmp_path):
        return Config(write_config(tmp_path / "c.json", {
            "volume": {"type": "gp2", "encrypted": True},
            "limits": {"max_logical_volume_size": 1000, "max_ebs_volume_count": 8, "max_attached_volumes": 8},
        }))

    def test_cli_overrides_win(self, config):
        settings = config.settings(
            size_gb=50,
            volume_type="io1",
            iops=2000,
            encrypted=False,
            max_total_created_size=300,
            max_attached_volumes=2,
            max_created_volumes=3,
            verbose=True,
        )

        assert settings.request.volume_type == "io1"
        assert settings.request.iops == 2000
        assert settings.request.encrypted is False
        assert settings.limits.max_total_created_size_gb == 300
        assert settings.limits.max_attached_volumes == 2
        assert settings.limits.max_created_volumes == 3
        assert settings.verbose is True

    def test_none_overrides_fall_back_to_file(self, config):
        settings = config.settings(size_gb=50)
        assert settings.request.volume_type == "gp2"
        assert settings.limits.max_total_created_size_gb == 1000

    def test_settings_are_frozen(self, config):
        settings = config.settings(size_gb=50)
        with pytest.raises(Exception):
            settings.verbose = True

    def test_missing_size_is_usage_error(self, config):
        with pytest.raises(UsageError):
            config.settings(size_gb=None)

    def test_zero_limit_override_is_usage_error(self, config):
        with pytest.raises(UsageError, match="max_created_volumes"):
            config.settings(size_gb=20, max_created_volumes=0)


class TestValueParsing:

    @pytest.mark.parametrize("raw,expected", [(1, True), (0, False), ("true", True), ("no", False), (True, True)])
    def test_encrypted_flag_forms(self, tmp_path, raw, expected):
        path = write_config(tmp_path / "c.json", {"volume": {"encrypted": raw}})
        assert Config(path).settings(size_gb=20).request.encrypted is expected

    def test_bad_encrypted_value(self, tmp_path):
        path = write_config(tmp_path / "c.json", {"volume": {"encrypted": "maybe"}})
        with pytest.raises(ConfigurationError, match="volume.encrypted"):
            Config(path).settings(size_gb=20)

    def test_bad_limit_value(self, tmp_path):
        path = write_config(tmp_path / "c.json", {"limits": {"max_ebs_volume_count": "lots"}})
        with pytest.raises(ConfigurationError, match="limits.max_ebs_volume_count"):
            Config(path).settings(size_gb=20)

    def test_zero_timeout_means_wait_forever(self, tmp_path):
        path = write_config(tmp_path / "c.json", {"timeouts": {"volume_available": 0, "device_visible": None}})
        settings = Config(path).settings(size_gb=20)
        assert settings.volume_available_timeout is None
        assert settings.device_visible_timeout is None

    def test_negative_timeout_rejected(self, tmp_path):
        path = write_config(tmp_path / "c.json", {"timeouts": {"device_visible": -1}})
        with pytest.raises(ConfigurationError, match="timeouts.device_visible"):
            Config(path).settings(size_gb=20)

    @pytest.mark.parametrize("section,value", [("limits", 5), ("volume", "gp3"), ("timeouts", [600])])
    def test_section_must_be_object(self, tmp_path, section, value):
        path = write_config(tmp_path / "c.json", {section: value})
        with pytest.raises(ConfigurationError, match=f"'{section}' must be a JSON object"):
            Config(path)

    def test_bad_lock_file_value(self, tmp_path):
        path = write_config(tmp_path / "c.json", {"device_lock_file": 5})
        with pytest.raises(ConfigurationError, match="device_lock_file"):
            Config(path).settings(size_gb=20)

    def test_bad_log_file_value(self, tmp_path):
        path = write_config(tmp_path / "c.json", {"logging": {"log_file": ["/var/log/x.log"]}})
        with pytest.raises(ConfigurationError, match="logging.log_file"):
            Config(path).settings(size_gb=20)

    def test_lock_file_can_be_disabled(self, tmp_path):
        path = write_config(tmp_path / "c.json", {"device_lock_file": None})
        assert Config(path).settings(size_gb=20).device_lock_file is None
