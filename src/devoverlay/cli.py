"""CLI entry point for devoverlay."""

import logging
from pathlib import Path

import click
import uvicorn

from .config import get_port, get_target_port
from .verbose import set_verbose


@click.group()
def main():
    """Coding-agent overlay for a running web dev server."""
    pass


@main.command()
@click.option("--port", type=int, default=None, help="Port to serve on. [default: $DEVOVERLAY_PORT or 3001]")
@click.option("--target-port", type=int, default=None, help="Port of the dev server. [default: 3000]")
@click.option(
    "--project",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    help="Project directory the agent works in.",
)
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.option("--create", "creation_mode", is_flag=True, help="Build a new project from scratch.")
@click.option("--verbose", is_flag=True, help="Trace every agent stream event.")
def serve(port: int | None, target_port: int | None, project: Path, host: str, creation_mode: bool, verbose: bool):
    """Start the overlay server."""
    from . import server

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    set_verbose(verbose)

    port = port or get_port()
    state = server.configure(project, target_port=target_port or get_target_port(), creation_mode=creation_mode)
    click.echo(f"Starting devoverlay on http://{host}:{port} for {state.project_dir}")
    uvicorn.run(server.app, host=host, port=port, reload=False)
