"""Tests for the askai CLI commands, helpers, renderer and REPL commands"""

import base64
import io
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import pytest
import respx
import yaml
from click.testing import CliRunner
from rich.console import Console

from conftest import content_chunk, make_config, sse
from askai.cli.main import cli
from askai.cli.render import TurnRenderer
from askai.cli.repl import ReplState, handle_repl_command
from askai.cli.utils import apply_color_setting, build_history, compose_instruction, to_data_url
from askai.config.config_manager import DEFAULT_KEY_ENVS
from askai.core.app import AskApp
from askai.core.models import ConversationMessage, WebSearchAttachment, WebSearchSource
from askai.utils.errors import ConfigError

OPENAI_URL = "https://api.openai.com/v1/chat/completions"


@pytest.fixture
def app_factory(tmp_path, monkeypatch):
    """Patch every command's init_app to build an AskApp rooted in tmp_path"""
    for env in list(DEFAULT_KEY_ENVS.values()) + ["KAGI_SESSION"]:
        monkeypatch.delenv(env, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-1234567")
    config_path = str(tmp_path / "config.yaml")

    def factory():
        return AskApp(config_path)

    with patch("askai.cli.commands.ask.init_app", side_effect=factory), patch(
        "askai.cli.commands.info.init_app", side_effect=factory
    ):
        yield factory


class TestComposeInstruction:
    """Test instruction and context merging"""

    def test_placeholder_replaced(self):
        assert compose_instruction("Translate: ${text}", "bonjour") == "Translate: bonjour"

    def test_context_appended(self):
        assert compose_instruction("explain", "code") == "explain\n\nContext:\ncode"

    def test_no_context(self):
        assert compose_instruction("  hi  ") == "hi"

    def test_build_history_with_system_and_image(self):
        history = build_history("what?", system="Be brief.", image="data:image/png;base64,AA")

        assert [m.role for m in history] == ["system", "user"]
        assert history[1].image == "data:image/png;base64,AA"


class TestToDataUrl:
    """Test image attachment loading"""

    def test_png(self, tmp_path):
        path = tmp_path / "shot.png"
        path.write_bytes(b"\x89PNG")

        assert to_data_url(str(path)) == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Image not found"):
            to_data_url(str(tmp_path / "nope.png"))

    def test_not_an_image(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hi")

        with pytest.raises(ConfigError, match="Not an image"):
            to_data_url(str(path))


class TestColorSetting:
    """Test cli.color_output handling"""

    def test_color_output_off_strips_colors(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            yaml.dump({"cli": {"color_output": False}, "state": {"storage_path": str(tmp_path / "s.json")}})
        )
        console = Console(file=io.StringIO())

        apply_color_setting(console, AskApp(str(config_path)))

        assert console.no_color is True

    def test_color_output_on_by_default(self, tmp_path):
        console = Console(file=io.StringIO(), no_color=True)

        apply_color_setting(console, AskApp(str(tmp_path / "config.yaml")))

        assert console.no_color is False


class TestTurnRenderer:
    """Test incremental rendering of a streamed turn"""

    def make_renderer(self):
        out = io.StringIO()
        return TurnRenderer(Console(file=out, width=120), show_reasoning=True), out

    def test_prints_only_new_content(self, capsys):
        renderer, _ = self.make_renderer()
        message = ConversationMessage(role="assistant", content="Hel")
        history = [message]

        renderer.update(history)
        message.content = "Hello"
        renderer.update(history)

        assert capsys.readouterr().out == "Hello"

    def test_search_status_and_sources(self, capsys):
        renderer, out = self.make_renderer()
        source = WebSearchSource(title="Weather", url="https://w.example")
        first = ConversationMessage(
            role="assistant",
            content="Searching.",
            web_search=WebSearchAttachment(query="Tokyo weather", is_searching=True),
        )
        history = [first]
        renderer.update(history)

        first.web_search = WebSearchAttachment(query="Tokyo weather", is_searching=False, sources=[source])
        history.append(ConversationMessage(role="assistant", content="Sunny.", response_time_ms=1500))
        renderer.update(history)
        renderer.finish(history)

        console_text = out.getvalue()
        assert "Searching the web: Tokyo weather" in console_text
        assert "Found 1 sources for: Tokyo weather" in console_text
        assert "Weather https://w.example" in console_text
        assert "1.5s" in console_text
        assert capsys.readouterr().out == "Searching.Sunny.\n"

    def test_interrupted_marker(self):
        renderer, out = self.make_renderer()
        message = ConversationMessage(role="assistant", content="Part", interrupted=True)

        renderer.finish([message])

        assert "[Interrupted]" in out.getvalue()


class TestReplCommands:
    """Test REPL slash commands"""

    def make_state(self):
        session = SimpleNamespace(config=make_config())
        return ReplState(app=None, session=session, system_prompt="Be brief.")

    def test_exit(self):
        assert handle_repl_command("/exit", self.make_state()) is False
        assert handle_repl_command("/quit", self.make_state()) is False

    def test_search_toggle(self):
        state = self.make_state()

        handle_repl_command("/search off", state)
        assert state.session.config.enable_web_search is False

        handle_repl_command("/search ON", state)
        assert state.session.config.enable_web_search is True

    def test_image_attaches_to_next_message(self, tmp_path):
        path = tmp_path / "a.jpg"
        path.write_bytes(b"jpg")
        state = self.make_state()

        handle_repl_command(f"/image {path}", state)

        assert state.pending_image.startswith("data:image/jpeg;base64,")

    def test_unknown_command_keeps_running(self):
        assert handle_repl_command("/bogus", self.make_state()) is True

    def test_fresh_state_has_system_prompt(self):
        state = self.make_state()

        assert [m.role for m in state.history] == ["system"]
        assert state.is_fresh


class TestCommands:
    """Test click commands end to end"""

    def test_version(self):
        result = CliRunner().invoke(cli, ["version"])

        assert result.exit_code == 0
        assert "askai v0.1.0" in result.output

    @respx.mock
    def test_ask_streams_answer(self, app_factory):
        respx.post(OPENAI_URL).mock(
            return_value=httpx.Response(200, text=sse(content_chunk("2 + 2 = "), content_chunk("4")))
        )

        result = CliRunner().invoke(cli, ["ask", "What is 2+2?"])

        assert result.exit_code == 0, result.output
        assert "2 + 2 = 4" in result.output

    @respx.mock
    def test_ask_no_stream(self, app_factory):
        respx.post(OPENAI_URL).mock(
            return_value=httpx.Response(200, json={"choices": [{"message": {"content": "4"}}]})
        )

        result = CliRunner().invoke(cli, ["ask", "--no-stream", "2+2?"])

        assert result.exit_code == 0, result.output
        assert result.output.strip() == "4"

    @respx.mock
    def test_ask_provider_error_exit_code(self, app_factory):
        respx.post(OPENAI_URL).mock(
            return_value=httpx.Response(429, json={"error": {"message": "Rate limit exceeded"}})
        )

        result = CliRunner().invoke(cli, ["ask", "--no-stream", "hi"])

        assert result.exit_code == 75
        assert "Rate limit exceeded" in result.output

    def test_mark_exhausted_needs_provider(self, app_factory):
        result = CliRunner().invoke(cli, ["keys", "--mark-exhausted", "sk-test-1234567"])

        assert result.exit_code == 2

    def test_keys_status(self, app_factory):
        runner = CliRunner()
        marked = runner.invoke(cli, ["keys", "-p", "openai", "--mark-exhausted", "sk-test-1234567"])
        assert marked.exit_code == 0, marked.output

        result = runner.invoke(cli, ["keys", "-p", "openai"])

        assert result.exit_code == 0, result.output
        assert "sk-t...4567" in result.output
        assert "exhausted" in result.output

    def test_providers(self, app_factory):
        result = CliRunner().invoke(cli, ["providers"])

        assert result.exit_code == 0, result.output
        assert "openrouter" in result.output
        assert "Web search:" in result.output

    def test_models_without_key(self, app_factory):
        result = CliRunner().invoke(cli, ["models", "-p", "anthropic"])

        assert result.exit_code == 78
        assert "No API key found for anthropic" in result.output
