"""Main CLI implementation using Typer."""

from pathlib import Path
from typing import Any, Callable, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from pvelxc.cli.commands import run_build, validate_config
from pvelxc.exceptions import PvelxcError


# Create Typer app
app = typer.Typer(
    name="pvelxc",
    help="pvelxc - Build LXC container templates on Proxmox VE",
    add_completion=False,
)

# Console for rich output
console = Console()


def _run_cli_command(handler: Callable[..., Any], **kwargs: Any):
    """Helper to run a CLI command with error handling."""
    try:
        handler(**kwargs)
    except (PvelxcError, ValidationError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


@app.command("build")
def build_command(
    config_file: Path = typer.Argument(..., help="Build configuration file", exists=True, dir_okay=False),
    force: bool = typer.Option(
        False, "--force", "-f", help="Delete an existing container with the same ID or hostname first"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", "-l", help="Override the configured log level"
    ),
):
    """Build a container template."""
    _run_cli_command(run_build, config_file=config_file, force=force, log_level=log_level)


@app.command("validate")
def validate_command(
    config_file: Path = typer.Argument(..., help="Build configuration file", exists=True, dir_okay=False),
):
    """Validate a build configuration file."""
    _run_cli_command(validate_config, config_file=config_file)


def main():
    """Main entry point for CLI."""
    app()
