"""Tests for configuration loading."""

import pytest

from vmlens.core.config import AppConfig, deep_merge, load_yaml
from vmlens.core.errors import ConfigError


class TestLoadYaml:
    """Tests for YAML loading."""

    def test_env_expansion(self, tmp_path, monkeypatch):
        """Test ${VARS} are expanded before parsing."""
        monkeypatch.setenv("VMLENS_TEST_URI", "ws://127.0.0.1:8181/ws")
        path = tmp_path / "app.yaml"
        path.write_text("connection:\n  vm_service_uri: ${VMLENS_TEST_URI}\n")
        assert load_yaml(path) == {"connection": {"vm_service_uri": "ws://127.0.0.1:8181/ws"}}

    def test_non_mapping_root(self, tmp_path):
        """Test a list at the root is rejected."""
        path = tmp_path / "app.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_yaml(path)

    def test_missing_file(self, tmp_path):
        """Test an unreadable path raises ConfigError."""
        with pytest.raises(ConfigError):
            load_yaml(tmp_path / "missing.yaml")

    def test_empty_file(self, tmp_path):
        """Test an empty file is an empty mapping."""
        path = tmp_path / "app.yaml"
        path.write_text("")
        assert load_yaml(path) == {}


class TestAppConfig:
    """Tests for AppConfig construction."""

    def test_defaults(self, monkeypatch):
        """Test defaults match the documented values."""
        monkeypatch.delenv("VMLENS_LLM_API_KEY", raising=False)
        cfg = AppConfig.from_raw({})
        assert cfg.collection.window_us == 10_000_000
        assert cfg.collection.sample_period_us == 250
        assert cfg.collection.cpu_top_n == 20
        assert cfg.source.cache_size == 200
        assert cfg.source.timeout_sec == 5.0
        assert cfg.connection.call_timeout_sec == 10.0
        assert cfg.privacy.level == "maximum"
        assert cfg.llm.api_key is None

    def test_shorthands(self, monkeypatch):
        """Test top-level URI and privacy shorthands are accepted."""
        monkeypatch.delenv("VMLENS_LLM_API_KEY", raising=False)
        cfg = AppConfig.from_raw({"vm_service_uri": "ws://x/ws", "privacy": "PARTIAL"})
        assert cfg.connection.vm_service_uri == "ws://x/ws"
        assert cfg.privacy.level == "partial"

    def test_unknown_privacy_level(self):
        """Test an unknown level is a configuration error."""
        with pytest.raises(ConfigError):
            AppConfig.from_raw({"privacy_level": "none"})

    def test_api_key_env(self, monkeypatch):
        """Test the LLM key can be read from a named variable."""
        monkeypatch.setenv("MY_LLM_KEY", "sk-test")
        cfg = AppConfig.from_raw({"llm": {"provider": "anthropic", "api_key_env": "MY_LLM_KEY"}})
        assert cfg.llm.api_key == "sk-test"
        assert cfg.llm.provider == "anthropic"

    def test_default_key_variable(self, monkeypatch):
        """Test VMLENS_LLM_API_KEY is the fallback key."""
        monkeypatch.setenv("VMLENS_LLM_API_KEY", "sk-default")
        assert AppConfig.from_raw({}).llm.api_key == "sk-default"

    def test_validation_error(self):
        """Test bad field types become ConfigError."""
        with pytest.raises(ConfigError):
            AppConfig.from_raw({"collection": {"window_sec": "ten"}})

    def test_from_yaml(self, tmp_path, monkeypatch):
        """Test a full YAML file round-trips into typed sections."""
        monkeypatch.delenv("VMLENS_LLM_API_KEY", raising=False)
        path = tmp_path / "app.yaml"
        path.write_text(
            "connection:\n"
            "  vm_service_uri: ws://127.0.0.1:8181/abc=/ws\n"
            "collection:\n"
            "  window_sec: 5\n"
            "source:\n"
            "  workspace_root: /work/shop_app\n"
            "  cache_size: 10\n"
        )
        cfg = AppConfig.from_yaml(path)
        assert cfg.collection.window_us == 5_000_000
        assert cfg.source.cache_size == 10
        assert str(cfg.source.workspace_root) == "/work/shop_app"


class TestDeepMerge:
    """Tests for deep_merge."""

    def test_nested_override(self):
        """Test nested keys merge and the override wins."""
        base = {"collection": {"window_sec": 10, "cpu_top_n": 20}, "privacy": "maximum"}
        override = {"collection": {"window_sec": 5}, "privacy": "partial"}
        assert deep_merge(base, override) == {
            "collection": {"window_sec": 5, "cpu_top_n": 20},
            "privacy": "partial",
        }
