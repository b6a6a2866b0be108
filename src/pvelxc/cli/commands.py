"""Command implementations for CLI."""

import asyncio
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from pvelxc.builder import Builder
from pvelxc.config import load_config
from pvelxc.models.config import BuildConfig
from pvelxc.utils.logging import setup_logging


console = Console()


def _yes_no(value: bool) -> str:
    return "[green]yes[/green]" if value else "[dim]no[/dim]"


def show_config(config: BuildConfig):
    """Print a summary of a validated configuration."""
    table = Table(title=f"Build: {config.hostname}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    
    table.add_row("Proxmox URL", config.cluster.proxmox_url)
    table.add_row("Node", config.cluster.node)
    table.add_row("Auth", "token" if config.cluster.token else "password")
    table.add_row("Tunnel", f"ssh {config.ssh.username}@{config.ssh.host or '(proxmox host)'}" if config.ssh else "local pct")
    table.add_row("OS template", config.os_template)
    table.add_row("VM ID", str(config.vm_id) if config.vm_id else "[dim]next free[/dim]")
    table.add_row("Arch", config.arch)
    table.add_row("Cores / Memory / Swap", f"{config.cores} / {config.memory} MB / {config.swap} MB")
    table.add_row("Root FS", f"{config.rootfs.storage_id}:{config.rootfs.disk_size or config.rootfs.volume}")
    table.add_row("Mount points", str(len(config.mount_points)))
    table.add_row("Network interfaces", str(len(config.network_interfaces)))
    table.add_row("Provisioners", ", ".join(p.type for p in config.provisioners) or "[dim]none[/dim]")
    table.add_row("Template", _yes_no(config.template))
    table.add_row("Force", _yes_no(config.force))
    
    console.print(table)


def validate_config(config_file: Path):
    """Load and validate a build configuration."""
    config = asyncio.run(load_config(config_file))
    console.print(f"[green]✓[/green] Configuration is valid: {config_file}")
    show_config(config)


def run_build(config_file: Path, force: bool = False, log_level: Optional[str] = None):
    """Load configuration and run a build."""
    overrides = {"log_level": log_level} if log_level else {}
    
    async def _build():
        config = await load_config(config_file, **overrides)
        setup_logging(config.log_level)
        return await Builder(config).run(force=force)
        
    artifact = asyncio.run(_build())
    
    console.print(f"[green]✓[/green] {artifact}")
    if artifact.generated_data:
        table = Table(title="Generated data")
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in artifact.generated_data.items():
            table.add_row(key, str(value))
        console.print(table)
