#!/usr/bin/env python3
"""
CLI for the Construction Budget App.

Usage:
    python cli.py budget init-db
    python cli.py budget add-location SW62 SW62-A --name "Centinela"
    python cli.py budget import 1 data/budget.xlsx
    python cli.py budget edit production_rate 12 6
    python cli.py budget summary 1
    python cli.py serve --port 8000

Commands:
    budget    Location budget management
    serve     Start the API server
"""
import click
import logging

from app.cli import register_commands

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version='1.0.0')
def cli():
    """Construction Budget App CLI.

    Import location budgets and keep parent/child line items
    consistent as quantities, rates and hours change.
    """
    pass


@cli.command()
@click.option('--port', type=int, default=8000, help='Server port')
@click.option('--host', default='0.0.0.0', help='Server host')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
def serve(port: int, host: str, reload: bool):
    """Start the API server.

    Runs the FastAPI application with uvicorn.

    Example:
        python cli.py serve --port 8000 --reload
    """
    import uvicorn

    click.echo(click.style('Construction Budget App - API Server', fg='cyan', bold=True))
    click.echo(f"Starting server at http://{host}:{port}")
    click.echo("Press CTRL+C to stop\n")

    uvicorn.run(
        "app.main:app",
        host=host,
        port=port,
        reload=reload
    )


register_commands(cli)


if __name__ == '__main__':
    cli()
