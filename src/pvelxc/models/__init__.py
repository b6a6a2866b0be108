"""Pydantic models for configuration and validation."""

from pvelxc.models.config import (
    BuildConfig,
    ClusterConfig,
    SSHConfig,
    MountPointConfig,
    NetworkInterfaceConfig,
    ProvisionerConfig,
)
from pvelxc.models.container import ContainerSpec, build_container_spec

__all__ = [
    "BuildConfig",
    "ClusterConfig",
    "SSHConfig",
    "MountPointConfig",
    "NetworkInterfaceConfig",
    "ProvisionerConfig",
    "ContainerSpec",
    "build_container_spec",
]
