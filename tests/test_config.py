"""Tests for vertexhub.config."""

import logging
from pathlib import Path

import pytest

from vertexhub.config import DEFAULT_PORT, configure_logging, load_config


class TestPort:
    def test_default(self, home):
        assert load_config({}, home=home).port == DEFAULT_PORT == 8090

    def test_valid_override(self, home):
        config = load_config({"VERTEXHUB_PORT": "65535"}, home=home)
        assert config.port == 65535
        assert config.proxy_url == "http://127.0.0.1:65535"

    @pytest.mark.parametrize("raw", ["0", "99999", "abc", "-1", "08080", "3.14", "8080; rm -rf /", "$(echo 1)", " 9000 "])
    def test_invalid_falls_back_to_default(self, home, raw):
        config = load_config({"VERTEXHUB_PORT": raw}, home=home)
        assert config.port == DEFAULT_PORT
        assert config.proxy_url == "http://127.0.0.1:8090"

    def test_injection_never_reaches_child_env(self, home):
        config = load_config({"VERTEXHUB_PORT": "8080; rm -rf /"}, home=home)
        env = config.child_env(PORT=str(config.port))
        assert env["PORT"] == "8090"

    def test_candidate_ports(self, home):
        assert load_config({}, home=home).candidate_ports == [8090]
        assert load_config({"VERTEXHUB_PORT": "9000"}, home=home).candidate_ports == [9000, 8090]


class TestPaths:
    def test_defaults_live_under_home(self, home):
        config = load_config({}, home=home)
        assert config.proxy_dir == home / "antigravity-proxy"
        assert config.proxy_entry == home / "antigravity-proxy" / "src" / "index.js"
        assert config.accounts_script == home / "antigravity-proxy" / "src" / "cli" / "accounts.js"
        assert config.claude_settings_file == home / ".claude" / "settings.json"
        assert config.claude_json_file == home / ".claude.json"
        assert config.log_file == home / ".vertexhub" / "vertexhub.log"

    def test_overrides(self, home, tmp_path):
        config = load_config(
            {"VERTEXHUB_PROXY_DIR": str(tmp_path / "proxy"), "VERTEXHUB_HOME": str(tmp_path / "data")},
            home=home,
        )
        assert config.proxy_dir == (tmp_path / "proxy").resolve()
        assert config.log_file == tmp_path / "data" / "vertexhub.log"


class TestClaudeEnv:
    def test_points_at_proxy(self, home):
        config = load_config({"VERTEXHUB_PORT": "9100", "VERTEXHUB_MODEL": "m-opus"}, home=home)
        env = config.claude_env()
        assert env["ANTHROPIC_BASE_URL"] == "http://127.0.0.1:9100"
        assert env["ANTHROPIC_AUTH_TOKEN"] == "test"
        assert env["ANTHROPIC_MODEL"] == "m-opus"
        assert env["ANTHROPIC_DEFAULT_OPUS_MODEL"] == "m-opus"
        assert set(env) == {
            "ANTHROPIC_AUTH_TOKEN",
            "ANTHROPIC_BASE_URL",
            "ANTHROPIC_MODEL",
            "ANTHROPIC_DEFAULT_OPUS_MODEL",
            "ANTHROPIC_DEFAULT_SONNET_MODEL",
            "ANTHROPIC_DEFAULT_HAIKU_MODEL",
            "CLAUDE_CODE_SUBAGENT_MODEL",
        }

    def test_child_env_keeps_caller_environment(self, home):
        config = load_config({"PATH": "/usr/bin", "VERTEXHUB_PORT": "9100"}, home=home)
        env = config.child_env(PORT="9100")
        assert env == {"PATH": "/usr/bin", "VERTEXHUB_PORT": "9100", "PORT": "9100"}


class TestLogging:
    def test_writes_rotating_log_file(self, home):
        config = load_config({"LOG_MAX_BYTES": "not-a-number"}, home=home)
        assert config.log_max_bytes == 10 * 1024 * 1024
        configure_logging(config)
        try:
            logging.getLogger("vertexhub.test").info("hello log")
            for handler in logging.getLogger().handlers:
                handler.flush()
            assert "hello log" in Path(config.log_file).read_text()
        finally:
            for handler in list(logging.getLogger().handlers):
                handler.close()
                logging.getLogger().removeHandler(handler)
