"""Pipeline Commands - start, pause and resume project pipelines"""

import typer
from rich.console import Console

from ..client.base import EngineAPIError
from ..client.endpoints import EngineClient
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="pipeline", help="Project pipeline commands")


@app.command("start")
def start(project_id: str = typer.Argument(..., help="Project ID")):
    """🚀 Start the build pipeline for a project"""
    try:
        with EngineClient() as client:
            data = client.start_pipeline(project_id)
    except EngineAPIError as e:
        print_error(str(e))
        raise typer.Exit(1) from None

    print_success(f"Pipeline started for {project_id}")
    print_info(f"Research job: {data.get('job_id')}")


@app.command("pause")
def pause(project_id: str = typer.Argument(..., help="Project ID")):
    """⏸ Pause a project"""
    try:
        with EngineClient() as client:
            client.pause_project(project_id)
    except EngineAPIError as e:
        print_error(str(e))
        raise typer.Exit(1) from None

    print_success(f"Project {project_id} paused")


@app.command("resume")
def resume(project_id: str = typer.Argument(..., help="Project ID")):
    """▶ Resume a paused project"""
    try:
        with EngineClient() as client:
            data = client.resume_project(project_id)
    except EngineAPIError as e:
        print_error(str(e))
        raise typer.Exit(1) from None

    print_success(f"Project {project_id} resumed ({data.get('status')})")


@app.command("optimize")
def optimize(
    project_id: str = typer.Argument(..., help="Project ID"),
    page_id: str = typer.Argument(..., help="Page ID"),
):
    """🔧 Queue a manual optimization pass for a page"""
    try:
        with EngineClient() as client:
            data = client.optimize_page(project_id, page_id)
    except EngineAPIError as e:
        print_error(str(e))
        raise typer.Exit(1) from None

    print_success(f"Optimization scheduled: {data.get('job_id')}")
