"""Cluster client interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pvelxc.models.container import ContainerSpec


@dataclass
class VmRef:
    """Identity and location of one instance on the cluster."""
    vmid: int
    node: str = ""
    pool: str = ""
    vm_type: str = "lxc"
    
    def __str__(self) -> str:
        return f"{self.vmid}@{self.node}" if self.node else str(self.vmid)


class ClusterClient(ABC):
    """Authenticated operations against the virtualization control plane."""
    
    @abstractmethod
    async def create_container(self, vm_ref: VmRef, spec: ContainerSpec) -> None:
        """Create a container with the given identity."""
        pass
        
    @abstractmethod
    async def get_vm_ref_by_id(self, vmid: int) -> VmRef:
        """Look up an instance by id. Raises NotFoundError."""
        pass
        
    @abstractmethod
    async def get_vm_refs_by_name(self, name: str) -> List[VmRef]:
        """Look up instances by name. Raises NotFoundError when there are none."""
        pass
        
    @abstractmethod
    async def get_vm_config(self, vm_ref: VmRef) -> Dict[str, Any]:
        """Get the instance's current configuration."""
        pass
        
    @abstractmethod
    async def get_next_id(self, hint: Optional[int] = None) -> int:
        """Allocate the next free vmid."""
        pass
        
    @abstractmethod
    async def start_vm(self, vm_ref: VmRef) -> None:
        pass
        
    @abstractmethod
    async def stop_vm(self, vm_ref: VmRef) -> None:
        pass
        
    @abstractmethod
    async def delete_vm(self, vm_ref: VmRef) -> None:
        pass
        
    @abstractmethod
    async def convert_to_template(self, vm_ref: VmRef) -> None:
        """Turn a stopped instance into a template."""
        pass
        
    async def close(self) -> None:
        """Release the client's connection resources."""
        pass
