"""Per-build state shared by all steps."""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional, TYPE_CHECKING

from pvelxc.exceptions import MissingStateError, StateConflictError

if TYPE_CHECKING:
    from pvelxc.cluster.base import ClusterClient, VmRef
    from pvelxc.communicator.base import Communicator
    from pvelxc.communicator.pct import PctCommunicator
    from pvelxc.hooks import ProvisionHook
    from pvelxc.models.config import BuildConfig
    from pvelxc.ui import BuildUi


@dataclass
class BuildState:
    """Values deposited by steps for later steps to read.

    ``None`` means "not produced yet". Steps write through :meth:`deposit`,
    which refuses to replace a value another step already produced.
    """
    
    # Provided by the builder
    config: Optional["BuildConfig"] = None
    client: Optional["ClusterClient"] = None
    ui: Optional["BuildUi"] = None
    hook: Optional["ProvisionHook"] = None
    force: bool = False
    
    # Produced by steps
    vm_ref: Optional["VmRef"] = None
    tunnel: Optional["Communicator"] = None
    channel: Optional["PctCommunicator"] = None
    container_ip: Optional[str] = None
    generated_data: Optional[Dict[str, Any]] = None
    
    # Outcome
    error: Optional[BaseException] = None
    cancelled: bool = False
    success: bool = False
    
    def deposit(self, **values: Any) -> None:
        """Store step outputs."""
        names = {f.name for f in fields(self)}
        for name, value in values.items():
            if name not in names:
                raise AttributeError(f"BuildState has no field '{name}'")
            current = getattr(self, name)
            if current is not None and current is not value:
                raise StateConflictError(f"'{name}' was already produced by an earlier step")
            setattr(self, name, value)
            
    def require(self, name: str) -> Any:
        """Return a prerequisite, raising if no earlier step produced it."""
        value = getattr(self, name)
        if value is None:
            raise MissingStateError(f"'{name}' has not been produced by an earlier step")
        return value
        
    def record_error(self, error: BaseException) -> None:
        """Record a step failure. Only the first error is kept."""
        if self.error is None:
            self.error = error
            
    def cancel(self) -> None:
        """Signal that the build should stop before the next step."""
        self.cancelled = True
        
    def mark_success(self) -> None:
        self.success = True
