"""Tests for configuration loading and validation."""

from __future__ import annotations

import json

import pytest

from sandbox_bridge.config import CONFIG_ENV_VAR, load_config, validate_config


class TestLoadConfig:
    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)
        config = load_config()
        assert config.console.buffer_size == 1000
        assert config.console.truncation.max_string_length == 500
        assert config.execution.ui_timeout_ms == 5000
        assert config.execution.worker_timeout_ms == 30_000
        assert config.cache.ttl_seconds == 300.0
        assert config.cache.max_entries == 10
        assert config.ports.preferred_port == 9223
        assert config.ports.range_size == 10
        assert validate_config(config) == []

    def test_dict_overrides(self):
        config = load_config(config_dict={
            "log_level": "DEBUG",
            "console": {"buffer_size": 50, "truncation": {"max_array_length": 3}},
            "execution": {"max_attempts": 4},
            "cache": {"token_budget": 1000},
        })
        assert config.log_level == "DEBUG"
        assert config.console.buffer_size == 50
        assert config.console.truncation.max_array_length == 3
        assert config.console.truncation.max_object_depth == 3
        assert config.execution.max_attempts == 4
        assert config.cache.token_budget == 1000

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "sandbox-bridge.yaml"
        path.write_text(
            "ports:\n"
            "  preferred_port: 9300\n"
            "  advertisement_dir: /tmp/adverts\n"
            "host:\n"
            "  debug_endpoint: http://127.0.0.1:9333\n"
        )
        config = load_config(path)
        assert config.ports.preferred_port == 9300
        assert config.ports.advertisement_dir == "/tmp/adverts"
        assert config.host.debug_endpoint == "http://127.0.0.1:9333"

    def test_json_file(self, tmp_path):
        path = tmp_path / "sandbox-bridge.json"
        path.write_text(json.dumps({"cache": {"ttl_seconds": 60}}))
        assert load_config(path).cache.ttl_seconds == 60

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "sandbox-bridge.yaml"
        path.write_text("")
        assert load_config(path).console.buffer_size == 1000

    def test_env_var(self, monkeypatch, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("console:\n  buffer_size: 7\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_config().console.buffer_size == 7

    def test_discovered_in_parent_directory(self, monkeypatch, tmp_path):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        (tmp_path / "sandbox-bridge.yml").write_text("cache:\n  max_entries: 3\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        assert load_config().cache.max_entries == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")


class TestValidateConfig:
    @pytest.mark.parametrize("raw, fragment", [
        ({"log_level": "LOUD"}, "log_level"),
        ({"console": {"buffer_size": 0}}, "buffer_size"),
        ({"console": {"filter_levels": ["log", "verbose"]}}, "filter_levels"),
        ({"console": {"truncation": {"max_object_depth": 0}}}, "max_object_depth"),
        ({"execution": {"worker_marker": "not valid"}}, "worker_marker"),
        ({"execution": {"ui_entry_point": "run-code"}}, "ui_entry_point"),
        ({"execution": {"ui_timeout_ms": 0}}, "timeouts"),
        ({"execution": {"max_attempts": 0}}, "max_attempts"),
        ({"execution": {"retry_delay": -1}}, "retry_delay"),
        ({"cache": {"ttl_seconds": 0}}, "ttl_seconds"),
        ({"cache": {"max_entries": 0}}, "max_entries"),
        ({"ports": {"preferred_port": 65530}}, "65535"),
        ({"ports": {"file_prefix": ""}}, "file_prefix"),
        ({"host": {"debug_endpoint": "ws://localhost:9222"}}, "debug_endpoint"),
    ])
    def test_invalid_values(self, raw, fragment):
        errors = validate_config(load_config(config_dict=raw))
        assert len(errors) == 1
        assert fragment in errors[0]

    def test_lowercase_log_level_accepted(self):
        assert validate_config(load_config(config_dict={"log_level": "debug"})) == []
