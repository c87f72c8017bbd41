"""Tests for the command line interface."""
from unittest.mock import patch

import pytest
from conftest import FakeModelService
from typer.testing import CliRunner

from sidechat.cli.app import app
from sidechat.cli.providers import create_session, get_config
from sidechat.llm import BackendError, BackendUnavailableError, ModelStartError, OpenAICompatibleService
from sidechat.session import Session

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep SIDECHAT_* variables from the developer's shell out of the tests."""
    import os

    for name in list(os.environ):
        if name.startswith("SIDECHAT_"):
            monkeypatch.delenv(name)


def fake_session_factory(service):
    def _create(config):
        return Session(service, greeting=None)
    return _create


class TestAskCommand:
    """Tests for the one-shot ask command."""

    def test_ask_prints_reply(self):
        service = FakeModelService(reply="<think>greeting</think>Hi there")
        with patch("sidechat.cli.app.create_session", fake_session_factory(service)):
            result = runner.invoke(app, ["ask", "Hello"])

        assert result.exit_code == 0
        assert "Hi there" in result.output
        assert "greeting" not in result.output
        assert service.prompts == ["Hello"]
        assert service.closed is True

    def test_ask_raw_keeps_reasoning(self):
        service = FakeModelService(reply="<think>greeting</think>Hi there")
        with patch("sidechat.cli.app.create_session", fake_session_factory(service)):
            result = runner.invoke(app, ["ask", "--raw", "Hello"])

        assert result.exit_code == 0
        assert "<think>greeting</think>Hi there" in result.output

    def test_ask_start_failure_exits_1(self):
        service = FakeModelService(start_error=BackendUnavailableError("connection refused"))
        with patch("sidechat.cli.app.create_session", fake_session_factory(service)):
            result = runner.invoke(app, ["ask", "Hello"])

        assert result.exit_code == 1
        assert "connection refused" in result.output
        assert service.prompts == []

    def test_ask_turn_failure_exits_1(self):
        service = FakeModelService(complete_error=BackendError("backend crashed"))
        with patch("sidechat.cli.app.create_session", fake_session_factory(service)):
            result = runner.invoke(app, ["ask", "Bad prompt"])

        assert result.exit_code == 1
        assert "backend crashed" in result.output

    def test_ask_blank_question_exits_1(self):
        result = runner.invoke(app, ["ask", "   "])
        assert result.exit_code == 1
        assert "empty" in result.output

    def test_invalid_option_exits_1(self):
        result = runner.invoke(app, ["ask", "--port", "0", "Hello"])
        assert result.exit_code == 1
        assert "invalid configuration" in result.output

    def test_invalid_log_level_exits_1(self):
        result = runner.invoke(app, ["ask", "--log-level", "chatty", "Hello"])
        assert result.exit_code == 1
        assert "Unknown log level" in result.output


class TestChatCommand:
    """Tests for the console chat loop."""

    def test_chat_round_trip(self):
        service = FakeModelService(reply="Hi there")
        with patch("sidechat.cli.app.create_session", fake_session_factory(service)):
            result = runner.invoke(app, ["chat"], input="Hello\n   \n/reset\nquit\n")

        assert result.exit_code == 0
        assert "Hi there" in result.output
        assert "Model context cleared" in result.output
        assert service.prompts == ["Hello"]
        assert service.reset_calls == 1
        assert service.closed is True

    def test_failed_start_command_keeps_the_loop_running(self):
        """Test that /start failing inside the loop is reported, not fatal."""

        class FailsOnRestart(FakeModelService):
            async def start(self):
                if self.start_calls:
                    self.running = False
                    self.start_error = ModelStartError("binary not found")
                await super().start()

        service = FailsOnRestart(reply="Hi there")
        with patch("sidechat.cli.app.create_session", fake_session_factory(service)):
            result = runner.invoke(app, ["chat"], input="/start\nHello\nq\n")

        assert result.exit_code == 0
        assert "binary not found" in result.output
        assert "try again" in result.output
        assert "Goodbye" in result.output
        assert service.start_calls == 2
        assert service.prompts == []
        assert service.closed is True

    def test_chat_ends_on_eof(self):
        service = FakeModelService()
        with patch("sidechat.cli.app.create_session", fake_session_factory(service)):
            result = runner.invoke(app, ["chat"], input="")

        assert result.exit_code == 0
        assert "Goodbye" in result.output


class TestProviders:
    """Tests for building configuration and sessions from the command line."""

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("SIDECHAT_PORT", "4000")
        config = get_config(port=5000, turn_timeout=9.0, log_level="info", binary=None)

        assert config.llm.port == 5000
        assert config.session.turn_timeout == 9.0
        assert config.log_level == "info"
        assert config.llm.binary == "candle-vllm"

    def test_environment_used_when_no_override(self, monkeypatch):
        monkeypatch.setenv("SIDECHAT_PORT", "4000")
        assert get_config(port=None).llm.port == 4000

    def test_create_session_attaches_to_base_url(self):
        config = get_config(base_url="http://localhost:8000/v1/", turn_timeout=5.0)
        session = create_session(config)

        assert isinstance(session.service, OpenAICompatibleService)
        assert session.service.base_url == "http://localhost:8000/v1/"
        assert session.orchestrator._turn_timeout == 5.0
        assert len(session.messages) == 1
