import asyncio
import base64
import mimetypes
import signal
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console

from askai.core.app import AskApp
from askai.core.models import ApiResponse, ConversationMessage
from askai.core.session import StreamSession
from askai.utils.errors import ConfigError
from askai.utils.logging import get_logger

logger = get_logger(__name__)

# Maximum input size from stdin (10MB)
MAX_INPUT_SIZE = 10 * 1024 * 1024

TEXT_PLACEHOLDER = "${text}"


def to_data_url(path: str) -> str:
    """Read an image file into a base64 data URL"""
    file_path = Path(path).expanduser()
    if not file_path.is_file():
        raise ConfigError(f"Image not found: {path}")
    mime_type = mimetypes.guess_type(file_path.name)[0] or "image/png"
    if not mime_type.startswith("image/"):
        raise ConfigError(f"Not an image file: {path}")
    data = base64.b64encode(file_path.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{data}"


def read_context(files: tuple) -> str:
    """Collect context text from files and piped stdin"""
    parts = []
    for path_str in files:
        path = Path(path_str).expanduser()
        try:
            parts.append(f"File: {path}\n---\n{path.read_text(encoding='utf-8')}\n---\n")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Could not read {path_str}: {e}") from e

    if not sys.stdin.isatty():
        # Read with size limit to prevent OOM attacks
        stdin_content = sys.stdin.read(MAX_INPUT_SIZE + 1)
        if len(stdin_content) > MAX_INPUT_SIZE:
            raise ConfigError(
                f"Input exceeds maximum size of {MAX_INPUT_SIZE // (1024 * 1024)}MB. "
                f"Use --file for large inputs."
            )
        if stdin_content.strip():
            parts.append(stdin_content)

    return "\n".join(parts)


def compose_instruction(instruction: str, context: str = "") -> str:
    """Merge the instruction with context text.

    `${text}` in the instruction is replaced by the context; otherwise the
    context is appended under a "Context:" heading.
    """
    instruction = instruction.strip()
    if TEXT_PLACEHOLDER in instruction:
        return instruction.replace(TEXT_PLACEHOLDER, context)
    if context:
        return f"{instruction}\n\nContext:\n{context}"
    return instruction


def build_history(
    instruction: str,
    context: str = "",
    system: Optional[str] = None,
    image: Optional[str] = None,
) -> List[ConversationMessage]:
    history = []
    if system:
        history.append(ConversationMessage(role="system", content=system))
    history.append(
        ConversationMessage(role="user", content=compose_instruction(instruction, context), image=image)
    )
    return history


async def run_turn(session: StreamSession, history: List[ConversationMessage], renderer) -> ApiResponse:
    """Stream a reply into history; Ctrl+C aborts the turn instead of the process"""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, session.abort, "interrupted")
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    start = len(history)
    try:
        return await session.reply(history, on_update=renderer.update)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        renderer.finish(history[start:])


def init_app() -> AskApp:
    return AskApp.create()


def apply_color_setting(console: Console, app: AskApp) -> Console:
    """Strip colors from console output when cli.color_output is off"""
    console.no_color = not app.config_manager.get("cli.color_output", True)
    return console
