import asyncio

import click
from rich.console import Console

from askai.cli.render import TurnRenderer
from askai.cli.utils import apply_color_setting, build_history, init_app, read_context, run_turn, to_data_url
from askai.utils.errors import ProviderError

console = Console()


@click.command(name="ask")
@click.argument("instruction", nargs=-1, required=True)
@click.option("-m", "--model", help="Model to use (e.g., gpt-4o, claude-sonnet-4-5)")
@click.option("-p", "--provider", help="Provider (openai, google, anthropic, openrouter, perplexity)")
@click.option("-s", "--system", help="System prompt")
@click.option(
    "-f",
    "--file",
    "files",
    multiple=True,
    type=click.Path(),
    help="Include file content as context",
)
@click.option("-i", "--image", type=click.Path(), help="Attach an image")
@click.option("--no-stream", is_flag=True, default=False, help="Wait for the full answer")
@click.option("--reasoning", is_flag=True, default=False, help="Show model reasoning")
def ask_command(instruction, model, provider, system, files, image, no_stream, reasoning):
    """Ask a single question

    \b
    Examples:
      askai ask "what is the weather in Tokyo right now?"
      askai ask -p anthropic "summarize" -f notes.txt
      cat report.md | askai ask 'Translate to French: ${text}'
      askai ask -i screenshot.png "what does this error mean?"
    """
    app = init_app()
    session = app.session(provider, model)
    apply_color_setting(console, app)
    history = build_history(
        " ".join(instruction),
        context=read_context(files),
        system=system,
        image=to_data_url(image) if image else None,
    )

    if no_stream:
        response = asyncio.run(session.call(history))
        if response.text:
            print(response.text)
    else:
        show_reasoning = reasoning or app.config_manager.get("cli.show_reasoning", False)
        renderer = TurnRenderer(console, show_reasoning=show_reasoning)
        response = asyncio.run(run_turn(session, history, renderer))

    if response.error:
        raise ProviderError(response.error)
