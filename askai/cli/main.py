import logging
import sys

import click
from rich.console import Console
from rich.panel import Panel

from askai.cli.commands import (
    ask_command,
    chat_command,
    config_command,
    keys_command,
    models_command,
    providers_command,
    version_command,
)
from askai.utils.errors import AbortError, AskError
from askai.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)

_debug_mode = False


def handle_exception(e: BaseException, debug_mode: bool = False) -> None:
    """Handle exceptions with clean output."""
    exit_code = 1

    if isinstance(e, AbortError):
        exit_code = e.exit_code
    elif isinstance(e, AskError):
        exit_code = getattr(e, "exit_code", 1)
        notes = getattr(e, "__notes__", [])
        hint_text = "\n".join([f"[dim]💡 {note}[/dim]" for note in notes])
        body = f"[red]Error[/red]: {e}"
        if hint_text:
            body = f"{body}\n\n{hint_text}"
        console.print(Panel(body, title="[bold]askai Error[/bold]", border_style="red"))
    elif isinstance(e, KeyboardInterrupt):
        console.print("[yellow]Interrupted[/yellow]")
        exit_code = 130
    else:
        console.print(
            Panel(
                f"[red]Unexpected Error[/red]: {str(e)}\n\n"
                f"[dim]This is a bug. Run again with --debug for the full traceback.[/dim]",
                title="[bold]askai Error[/bold]",
                border_style="red",
            )
        )

    if debug_mode:
        logger.exception(f"Unhandled exception: {e}")
        console.print_exception(show_locals=True)

    sys.exit(exit_code)


def excepthook(exc_type, exc_value, exc_traceback) -> None:
    """Global exception handler."""
    if exc_type is KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        sys.exit(130)
    handle_exception(exc_value, debug_mode=_debug_mode)


class AskGroup(click.Group):
    """Click group that routes uncaught errors through handle_exception"""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except (click.exceptions.Exit, click.ClickException, click.exceptions.Abort):
            raise
        except Exception as e:
            handle_exception(e, debug_mode=_debug_mode)


@click.group(cls=AskGroup, context_settings=dict(help_option_names=["-h", "--help"]))
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.option("--log-file", type=click.Path(), default=None, help="Also write logs to this file")
def cli(debug, log_file):
    """askai - ask any LLM, with live web search

    \b
    Examples:
      askai ask "your question"                 # Default provider
      askai ask -p anthropic "your question"    # Specify provider
      askai ask -f file.txt "explain this"      # Include file
      cat file.txt | askai ask "explain"        # Pipe content
      askai chat                                # Interactive REPL
      askai keys                                # Key quota status
    """
    global _debug_mode
    _debug_mode = debug
    sys.excepthook = excepthook
    setup_logging(logging.DEBUG if debug else logging.WARNING, log_file=log_file)


cli.add_command(ask_command, "ask")
cli.add_command(chat_command, "chat")
cli.add_command(models_command, "models")
cli.add_command(providers_command, "providers")
cli.add_command(keys_command, "keys")
cli.add_command(config_command, "config")
cli.add_command(version_command, "version")


if __name__ == "__main__":
    cli()
