"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


def print_success(message: str):
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    console.print(f"[blue]ℹ {message}[/blue]")


def create_queue_health_table(queues: list[dict[str, Any]]) -> Table:
    """One row per queue with its job counts"""
    table = Table(title="Queues", box=box.ROUNDED)

    table.add_column("Queue", justify="left", style="cyan", no_wrap=True)
    table.add_column("Waiting", justify="right", style="white")
    table.add_column("Active", justify="right", style="green")
    table.add_column("Delayed", justify="right", style="yellow")
    table.add_column("Completed", justify="right", style="blue")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("State", justify="center")

    for queue in queues:
        table.add_row(
            queue.get("name", ""),
            str(queue.get("waiting", 0)),
            str(queue.get("active", 0)),
            str(queue.get("delayed", 0)),
            str(queue.get("completed", 0)),
            str(queue.get("failed", 0)),
            "[yellow]paused[/yellow]" if queue.get("is_paused") else "[green]running[/green]",
        )

    return table


def create_workers_table(workers: list[dict[str, Any]]) -> Table:
    table = Table(title="Workers", box=box.ROUNDED)

    table.add_column("Queue", justify="left", style="cyan")
    table.add_column("Running", justify="center")
    table.add_column("Active", justify="right")
    table.add_column("Processed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Last Job", justify="left", style="dim")

    for worker in workers:
        table.add_row(
            worker.get("queue_name", ""),
            "✓" if worker.get("is_running") else "✗",
            str(worker.get("active_jobs", 0)),
            str(worker.get("processed_jobs", 0)),
            str(worker.get("failed_jobs", 0)),
            worker.get("last_job_timestamp") or "-",
        )

    return table


def create_metrics_panel(metrics: dict[str, Any]) -> Panel:
    lines = [
        f"• Waiting: [white]{metrics.get('total_waiting', 0)}[/white]",
        f"• Active: [green]{metrics.get('total_active', 0)}[/green]",
        f"• Delayed: [yellow]{metrics.get('total_delayed', 0)}[/yellow]",
        f"• Completed: [blue]{metrics.get('total_completed', 0)}[/blue]",
        f"• Failed: [red]{metrics.get('total_failed', 0)}[/red]",
        f"• Paused queues: {metrics.get('paused_queues', 0)}",
        f"• Running workers: {metrics.get('running_workers', 0)}",
    ]
    return Panel("\n".join(lines), title="Queue Metrics", border_style="cyan")
