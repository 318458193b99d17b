import asyncio

import click

from askai.cli.repl import repl_main
from askai.cli.utils import read_context, to_data_url


@click.command(name="chat")
@click.option("-m", "--model", help="Model to use (e.g., gpt-4o, claude-sonnet-4-5)")
@click.option("-p", "--provider", help="Provider (openai, google, anthropic, openrouter, perplexity)")
@click.option("-s", "--system", help="System prompt")
@click.option(
    "-f",
    "--file",
    "files",
    multiple=True,
    type=click.Path(),
    help="Include file content as context for the first message",
)
@click.option("-i", "--image", type=click.Path(), help="Attach an image to the first message")
def chat_command(model, provider, system, files, image):
    """Start interactive chat REPL

    \b
    Examples:
      askai chat                          # REPL with the default provider
      askai chat -p google -m gemini-2.5-pro
      askai chat -f paper.md              # Discuss a file
    """
    asyncio.run(
        repl_main(
            model=model,
            provider=provider,
            system_prompt=system,
            context=read_context(files) if files else "",
            image=to_data_url(image) if image else None,
        )
    )
