# Copyright (c) Syntropy Systems
"""abfunnel init command."""

from pathlib import Path

import typer
import yaml
from rich.console import Console

from abfunnel.config import CONFIG_DIR_NAME, CONFIG_FILE_NAME, default_config_data

console = Console()


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Initialize abfunnel configuration for a project.

    Creates a .abfunnel directory with a config.yaml holding the defaults,
    including the built-in variant catalog.
    """
    target = path.resolve()
    config_dir = target / CONFIG_DIR_NAME

    if config_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {config_dir}")
        return

    config_dir.mkdir(parents=True)

    config_path = config_dir / CONFIG_FILE_NAME
    with config_path.open("w") as f:
        yaml.dump(default_config_data(), f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]Initialized abfunnel project:[/green] {config_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
