"""SEO Pipeline Engine CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client.base import EngineAPIError
from .client.endpoints import EngineClient
from .commands import config, pipeline, queues, worker
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

app = typer.Typer(
    name="seo-engine",
    help="SEO pipeline engine operator CLI",
    rich_markup_mode="rich",
)

app.add_typer(queues.app, name="queues")
app.add_typer(pipeline.app, name="pipeline")
app.add_typer(worker.app, name="worker")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check engine status and connectivity"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with EngineClient(base_url) as client:
            health = client.health_check()
    except EngineAPIError as e:
        print_error(f"Failed to connect: {e}")
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"Make sure the engine API is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"You can update the API URL with:\n"
                f"[cyan]seo-engine config set api.base_url <url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    queues_ok = health.get("queues_healthy", False)
    console.print(
        Panel(
            f"🚀 [green]Connected Successfully![/green]\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Queue backend: [cyan]{health.get('queue_backend', 'unknown')}[/cyan]\n"
            f"• Queues: {'[green]healthy[/green]' if queues_ok else '[red]unhealthy[/red]'}\n"
            f"• API URL: [blue]{base_url}[/blue]",
            title="System Status",
            border_style="green" if queues_ok else "yellow",
        )
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
):
    """
    SEO pipeline engine CLI

    Inspect queue health, pause and resume queues, drive project pipelines
    and run queue workers.
    """
    if version:
        from . import __version__

        console.print(f"SEO Engine CLI v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


if __name__ == "__main__":
    app()
