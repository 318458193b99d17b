"""Interactive REPL chat mode for askai."""

import os
from typing import List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from rich.console import Console

from askai.cli.render import TurnRenderer
from askai.cli.utils import apply_color_setting, compose_instruction, run_turn, to_data_url
from askai.core.app import AskApp
from askai.core.models import ConversationMessage
from askai.core.provider_manager import ProviderManager
from askai.core.session import StreamSession
from askai.utils.errors import AbortError, AskError
from askai.utils.logging import get_logger

logger = get_logger(__name__)
console = Console()

REPL_COMMANDS = {
    "/exit",
    "/quit",
    "/help",
    "/clear",
    "/history",
    "/model",
    "/image",
    "/search",
}

# Create completer for REPL commands
repl_completer = WordCompleter(
    list(REPL_COMMANDS),
    ignore_case=True,
    sentence=True,
)


class ReplState:
    """Mutable state of one REPL run"""

    def __init__(self, app: AskApp, session: StreamSession, system_prompt: Optional[str]):
        self.app = app
        self.session = session
        self.system_prompt = system_prompt
        self.history: List[ConversationMessage] = []
        self.pending_image: Optional[str] = None
        self.reset()

    def reset(self) -> None:
        self.history = []
        if self.system_prompt:
            self.history.append(ConversationMessage(role="system", content=self.system_prompt))

    @property
    def is_fresh(self) -> bool:
        return not any(m.role == "user" for m in self.history)


async def repl_main(
    model: Optional[str],
    provider: Optional[str],
    system_prompt: Optional[str],
    context: str = "",
    image: Optional[str] = None,
) -> None:
    """Interactive chat REPL.

    Args:
        model: Model to use.
        provider: Provider to use.
        system_prompt: System prompt to use.
        context: Text attached to the first message.
        image: Data URL attached to the first message.
    """
    app = AskApp()
    state = ReplState(app, app.session(provider, model), system_prompt)
    state.pending_image = image
    show_reasoning = app.config_manager.get("cli.show_reasoning", False)
    apply_color_setting(console, app)

    config = state.session.config
    console.print("[bold cyan]askai chat[/bold cyan]")
    console.print(f"[dim]Model: {config.selected_provider}/{ProviderManager(config).model_for(config.selected_provider)}[/dim]")
    console.print("[dim]Type /help for commands, Ctrl+C to stop an answer, Ctrl+D or /exit to quit[/dim]")
    print()

    prompt_session = PromptSession(completer=repl_completer)

    while True:
        try:
            print()
            user_input = (await prompt_session.prompt_async("You: ")).strip()

            if not user_input:
                continue

            if user_input.startswith("/"):
                should_continue = handle_repl_command(user_input, state)
                if not should_continue:
                    break
                continue

            content = compose_instruction(user_input, context) if state.is_fresh else user_input
            state.history.append(
                ConversationMessage(role="user", content=content, image=state.pending_image)
            )
            state.pending_image = None

            print()
            console.print("[bold green]Assistant:[/bold green]")
            renderer = TurnRenderer(console, show_reasoning=show_reasoning)
            response = await run_turn(state.session, state.history, renderer)
            if response.error:
                console.print(f"[red]Error: {response.error}[/red]")

        except AbortError:
            # The interrupted message stays in history
            continue
        except KeyboardInterrupt:
            print()
            continue
        except EOFError:
            console.print("\n[dim]Goodbye![/dim]")
            break
        except AskError as e:
            console.print(f"[red]Error: {e}[/red]")
        except Exception as e:
            logger.exception(f"REPL error: {e}")
            console.print(f"[red]Error: {e}[/red]")


def handle_repl_command(cmd: str, state: ReplState) -> bool:
    """Handle REPL commands.

    Returns:
        False if should exit, True otherwise.
    """
    parts = cmd.split(maxsplit=1)
    command = parts[0].lower()
    args = parts[1] if len(parts) > 1 else ""
    config = state.session.config

    if command in ("/exit", "/quit"):
        console.print("[dim]Goodbye![/dim]")
        return False

    elif command == "/help":
        show_help()

    elif command == "/clear":
        os.system("clear" if os.name != "nt" else "cls")
        state.reset()
        console.print("[dim]Conversation cleared[/dim]")

    elif command == "/history":
        limit = int(args) if args.isdigit() else 10
        show_history(state.history, limit)

    elif command == "/model":
        if args:
            state.session = state.app.session(config.selected_provider, args)
            console.print(f"[green]✓[/green] Switched to model: {args}")
        else:
            console.print(f"[dim]Current model: {ProviderManager(config).model_for(config.selected_provider)}[/dim]")

    elif command == "/image":
        if args:
            state.pending_image = to_data_url(args)
            console.print("[green]✓[/green] Image attached to your next message")
        else:
            console.print("[yellow]Usage: /image <path>[/yellow]")

    elif command == "/search":
        if args.lower() in ("on", "off"):
            config.enable_web_search = args.lower() == "on"
        console.print(f"[dim]Web search: {'on' if config.enable_web_search else 'off'}[/dim]")

    else:
        console.print(f"[red]Unknown command: {command}[/red]")
        console.print("[dim]Type /help for available commands[/dim]")

    return True


def show_help() -> None:
    """Display help text for REPL commands."""
    help_text = """
[bold]REPL Commands:[/bold]

  [cyan]/help[/cyan]             Show this help
  [cyan]/exit, /quit[/cyan]     Exit REPL (also Ctrl+D)
  [cyan]/clear[/cyan]            Clear conversation
  [cyan]/model <name>[/cyan]     Switch model
  [cyan]/image <path>[/cyan]     Attach an image to the next message
  [cyan]/search on|off[/cyan]    Toggle web search
  [cyan]/history [n][/cyan]      Show last N messages
"""
    console.print(help_text)


def show_history(history: List[ConversationMessage], limit: int) -> None:
    """Display conversation history."""
    messages = [m for m in history if m.role != "system"][-limit:]
    console.print(f"[dim]Last {len(messages)} messages:[/dim]\n")
    for message in messages:
        role_color = "cyan" if message.role == "user" else "green"
        label = "You" if message.role == "user" else "Assistant"
        content = message.content[:200] + "..." if len(message.content) > 200 else message.content
        suffix = " [yellow](interrupted)[/yellow]" if message.interrupted else ""
        console.print(f"[{role_color}]{label}:[/{role_color}] {content}{suffix}\n")
