"""
pvelxc - LXC container template builder for Proxmox VE.

Creates a disposable container on a Proxmox cluster, provisions it over a
``pct`` command channel and converts it into a reusable template, deleting the
container again if any step of the build fails.
"""

__version__ = "1.0.0"

# Re-export key components for easier access
from pvelxc.artifact import Artifact
from pvelxc.builder import Builder
from pvelxc.models.config import BuildConfig
from pvelxc.models.container import ContainerSpec

__all__ = [
    "Artifact",
    "Builder",
    "BuildConfig",
    "ContainerSpec",
]
