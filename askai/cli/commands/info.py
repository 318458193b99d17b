import asyncio

import click
from rich.console import Console
from rich.table import Table

from askai.cli.utils import init_app
from askai.core.credentials import CredentialRotator
from askai.core.provider_manager import ProviderManager
from askai.search.executor import WebSearchExecutor, resolve_search_mode
from askai.utils.errors import NoApiKeyError

console = Console()


def mask_key(key: str) -> str:
    if len(key) <= 8:
        return "****"
    return f"{key[:4]}...{key[-4:]}"


@click.command()
@click.option("-p", "--provider", help="Provider to list models for (defaults to the configured one)")
def models(provider):
    """List the models a provider offers"""
    app = init_app()
    manager = app.provider_manager(provider)
    name = manager.config.selected_provider

    keys = manager.config.keys_for(name)
    if not keys:
        raise NoApiKeyError(name)

    model_ids = asyncio.run(manager.list_models(name, keys[0]))
    if not model_ids:
        console.print(f"[yellow]No models returned by {name}.[/yellow]")
        return

    selected = manager.model_for(name)
    table = Table(title=f"{name.upper()} Models", show_header=True)
    table.add_column("Model ID", style="cyan")
    table.add_column("Selected", justify="center")
    for model_id in model_ids:
        table.add_row(model_id, "[green]✓[/green]" if model_id == selected else "")
    console.print(table)


@click.command()
def providers():
    """List all configured providers"""
    app = init_app()
    cfg = app.config_manager
    manager = app.provider_manager()
    config = manager.config

    table = Table(title="Providers", show_header=True)
    table.add_column("Provider", style="cyan")
    table.add_column("Protocol")
    table.add_column("Keys", justify="right")
    table.add_column("Model", style="green")

    for name in manager.list_providers():
        enabled = cfg.is_enabled(name)
        status_color = "green" if enabled and config.keys_for(name) else "red"
        table.add_row(
            f"[{status_color}]{name}[/{status_color}]",
            manager.kind(name).value,
            str(len(config.keys_for(name))),
            manager.model_for(name) or "N/A",
        )
    console.print(table)

    mode = resolve_search_mode(config)
    backend = WebSearchExecutor(config, app.rotator).backend
    credentials = "" if backend.is_available() else " [red](no credentials)[/red]"
    console.print(
        f"\nWeb search: [cyan]{config.web_search_provider}[/cyan]{credentials} "
        f"([green]{mode.value}[/green] with {config.selected_provider})"
    )


@click.command()
@click.option("-p", "--provider", help="Only show keys for this provider")
@click.option("--mark-exhausted", "exhausted_key", help="Mark a key as exhausted until next month")
def keys(provider, exhausted_key):
    """Show API keys and their quota status"""
    app = init_app()
    config = app.config_manager.generation_config()
    rotator: CredentialRotator = app.rotator

    if exhausted_key:
        if not provider:
            raise click.UsageError("--mark-exhausted needs --provider")
        asyncio.run(rotator.mark_exhausted(exhausted_key, provider))
        console.print(f"[green]✓[/green] Marked key {mask_key(exhausted_key)} as exhausted")
        return

    entries = asyncio.run(rotator.exhausted_entries(provider))
    exhausted = {(e.provider, e.key): e for e in entries}

    table = Table(title="API Keys", show_header=True)
    table.add_column("Provider", style="cyan")
    table.add_column("Key")
    table.add_column("Status", justify="center")
    table.add_column("Resets", style="dim")

    names = [provider] if provider else ProviderManager(config).list_providers()
    for name in names:
        for key in config.keys_for(name):
            entry = exhausted.get((name, key))
            if entry:
                table.add_row(name, mask_key(key), "[red]exhausted[/red]", entry.expires_at.strftime("%Y-%m-%d"))
            else:
                table.add_row(name, mask_key(key), "[green]available[/green]", "")
    console.print(table)


@click.command()
def config():
    """Show current configuration"""
    app = init_app()
    cfg = app.config_manager

    console.print("\n[bold cyan]Configuration[/bold cyan]")
    console.print(f"  Config file: [yellow]{cfg.config_path}[/yellow]")
    console.print(f"  State file: [yellow]{cfg.get('state.storage_path')}[/yellow]")
    console.print("\n[bold cyan]Defaults[/bold cyan]")
    console.print(f"  Provider: [green]{cfg.get_default_provider()}[/green]")
    console.print(f"  Max tokens: [green]{cfg.get('defaults.max_tokens')}[/green]")
    console.print(f"  Request timeout: [green]{cfg.get('defaults.request_timeout')}s[/green]")
    console.print("\n[bold cyan]Web search[/bold cyan]")
    console.print(f"  Enabled: [green]{cfg.get('web_search.enabled')}[/green]")
    console.print(f"  Backend: [green]{cfg.get('web_search.provider')}[/green]")
    console.print(f"  Kagi session: [green]{'set' if cfg.get_kagi_session() else 'not set'}[/green]")
    console.print()


@click.command()
def version():
    """Show version information"""
    console.print("[cyan]askai[/cyan] v0.1.0")
    console.print("Multi-provider LLM streaming with live web search")


# Export individual commands for top-level CLI registration
models_command = models
providers_command = providers
keys_command = keys
config_command = config
version_command = version

__all__ = [
    "models_command",
    "providers_command",
    "keys_command",
    "config_command",
    "version_command",
]
