"""Build artifact."""

from dataclasses import dataclass, field
from typing import Any, Dict

from pvelxc.cluster.base import VmRef


@dataclass
class Artifact:
    """The container (or template) left on the cluster by a successful build."""
    
    builder_id: str
    vm_ref: VmRef
    generated_data: Dict[str, Any] = field(default_factory=dict)
    
    @property
    def id(self) -> str:
        return str(self.vm_ref.vmid)
        
    def __str__(self) -> str:
        return f"A container was created: {self.vm_ref.vmid} on node {self.vm_ref.node}"
