"""Cluster control plane clients."""

from pvelxc.cluster.base import ClusterClient, VmRef
from pvelxc.cluster.proxmox import ProxmoxClient

__all__ = [
    "ClusterClient",
    "VmRef",
    "ProxmoxClient",
]
