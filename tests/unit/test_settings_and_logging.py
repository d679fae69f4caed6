"""
Unit tests for settings and logging setup.
"""

import logging

import pytest

from vibesAgent.config import get_settings
from vibesAgent.config.settings import AgentSettings, WorkspaceSettings
from vibesAgent.utils.logging_utils import setup_logging, truncate_for_log
from vibesAgent.utils.stream_writer import DataStreamWriter


class TestSettings:
    """Tests for environment-bound settings."""

    def test_defaults(self, monkeypatch):
        for name in ("AGENT_MAX_STEPS", "AGENT_MAX_CONTEXT_MESSAGES", "SUBAGENT_MAX_STEPS", "DELEGATION_CACHE_TTL", "AGENT_MAX_CONTEXT_TOKENS", "AGENT_COMPRESSION_THRESHOLD"):
            monkeypatch.delenv(name, raising=False)

        settings = AgentSettings(_env_file=None)

        assert settings.max_steps == 20
        assert settings.max_context_messages == 30
        assert settings.subagent_max_steps == 10
        assert settings.delegation_cache_ttl == 3600
        assert settings.max_context_tokens == 100000
        assert settings.compression_threshold == 3000

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("AGENT_MAX_STEPS", "7")
        monkeypatch.setenv("WORKSPACE_DIR", "/tmp/vibes")

        assert AgentSettings(_env_file=None).max_steps == 7
        assert WorkspaceSettings(_env_file=None).root == "/tmp/vibes"

    def test_bounds_are_validated(self, monkeypatch):
        monkeypatch.setenv("AGENT_MAX_STEPS", "0")

        with pytest.raises(ValueError):
            AgentSettings(_env_file=None)


class TestLogging:
    """Tests for setup_logging."""

    def test_writes_session_log(self, tmp_path):
        logger = setup_logging(level="DEBUG", log_dir=tmp_path / "logs")
        logging.getLogger("vibesAgent.tests").info("hello from test")
        for handler in logger.handlers:
            handler.flush()

        files = list((tmp_path / "logs").glob("vibes_*.log"))
        assert len(files) == 1
        assert "hello from test" in files[0].read_text(encoding="utf-8")
        logger.handlers = []

    def test_console_only(self, tmp_path):
        logger = setup_logging(log_dir=tmp_path / "logs", log_to_file=False)

        assert not (tmp_path / "logs").exists()
        assert all(not isinstance(h, logging.FileHandler) for h in logger.handlers)
        logger.handlers = []

    def test_truncate_for_log(self):
        assert truncate_for_log("abc", limit=5) == "abc"
        assert truncate_for_log("abcdefgh", limit=5) == "abcde... (truncated)"

    def test_file_logging_follows_settings(self, tmp_path, monkeypatch):
        """Without arguments the log directory and file switch come from settings."""
        observability = get_settings().observability
        monkeypatch.setattr(observability, "log_dir", str(tmp_path / "configured"))
        monkeypatch.setattr(observability, "log_to_file", False)

        logger = setup_logging()

        assert not (tmp_path / "configured").exists()
        assert all(not isinstance(h, logging.FileHandler) for h in logger.handlers)
        logger.handlers = []

    def test_truncate_defaults_to_configured_length(self, monkeypatch):
        monkeypatch.setattr(get_settings().observability, "log_prompt_max_length", 100)

        assert truncate_for_log("x" * 150) == "x" * 100 + "... (truncated)"


class TestDataStreamWriter:
    def test_without_sink_is_silent(self):
        writer = DataStreamWriter()

        writer.task_update("t1", "pending", "A")

        assert writer.attached is False

    def test_sink_errors_are_contained(self):
        def broken(event):
            raise RuntimeError("closed")

        DataStreamWriter(broken).notification("hi")

    def test_event_shape(self, events):
        writer = DataStreamWriter(events.append)

        writer.delegation("researcher", "x", "complete", result="ok")

        assert events == [{
            "type": "delegation",
            "data": {"agentName": "researcher", "task": "x", "status": "complete", "result": "ok"},
        }]
