"""Worker Commands - run queue workers in this process"""

import asyncio

import typer
from rich.console import Console

from seo_engine.config.logging import setup_logging
from seo_engine.config.settings import get_settings
from seo_engine.v1.engine import build_engine

from ..utils.formatting import print_error, print_info

console = Console()
app = typer.Typer(name="worker", help="Queue worker commands")


async def _serve(queues: list[str] | None) -> None:
    engine = build_engine(get_settings())
    try:
        pool = engine.worker_pool(queues)
        await pool.serve()
    finally:
        await engine.close()


@app.command("run")
def run(
    queue: list[str] | None = typer.Option(
        None, "--queue", "-q", help="Queue to work (repeatable, default: all)"
    ),
):
    """⚙️ Run workers until interrupted"""
    setup_logging(get_settings())
    print_info(f"Starting workers for: {', '.join(queue) if queue else 'all queues'}")

    try:
        asyncio.run(_serve(queue or None))
    except (RuntimeError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1) from None
