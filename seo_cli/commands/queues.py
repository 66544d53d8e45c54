"""Queue Commands - health, metrics and pause control"""

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.base import EngineAPIError
from ..client.endpoints import EngineClient
from ..utils.formatting import (
    create_metrics_panel,
    create_queue_health_table,
    create_workers_table,
    print_error,
    print_success,
)

console = Console()
app = typer.Typer(name="queues", help="Queue health and control commands")


@app.command("health")
def health():
    """🩺 Show per-queue counts and worker state"""
    try:
        with EngineClient() as client:
            report = client.queue_health()
    except EngineAPIError as e:
        print_error(str(e))
        raise typer.Exit(1) from None

    console.print(create_queue_health_table(report.get("queues", [])))
    if report.get("workers"):
        console.print(create_workers_table(report["workers"]))

    if report.get("healthy"):
        console.print(Panel("[green]All queues healthy[/green]", border_style="green"))
    else:
        issues = "\n".join(f"• {issue}" for issue in report.get("issues", []))
        console.print(Panel(f"[red]{issues}[/red]", title="Unhealthy", border_style="red"))
        raise typer.Exit(2)


@app.command("metrics")
def metrics():
    """📊 Show totals across all queues"""
    try:
        with EngineClient() as client:
            data = client.queue_metrics()
    except EngineAPIError as e:
        print_error(str(e))
        raise typer.Exit(1) from None

    console.print(create_metrics_panel(data))


@app.command("pause")
def pause(name: str = typer.Argument(..., help="Queue name, e.g. 'publish'")):
    """⏸ Stop leasing new jobs from a queue"""
    try:
        with EngineClient() as client:
            client.pause_queue(name)
    except EngineAPIError as e:
        print_error(str(e))
        raise typer.Exit(1) from None

    print_success(f"Queue {name} paused")


@app.command("resume")
def resume(name: str = typer.Argument(..., help="Queue name, e.g. 'publish'")):
    """▶ Resume leasing on a paused queue"""
    try:
        with EngineClient() as client:
            client.resume_queue(name)
    except EngineAPIError as e:
        print_error(str(e))
        raise typer.Exit(1) from None

    print_success(f"Queue {name} resumed")
