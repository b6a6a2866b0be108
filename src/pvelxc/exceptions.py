"""Exception hierarchy for pvelxc."""

from typing import Optional


class PvelxcError(Exception):
    """Base class for all pvelxc errors."""
    pass


class ConfigurationError(PvelxcError):
    """Configuration-derived error. Never retried."""
    pass


class AmbiguousTargetError(ConfigurationError):
    """More than one existing instance matches a force re-create target."""
    
    def __init__(self, hostname: str, vmids: list[int]):
        self.hostname = hostname
        self.vmids = vmids
        super().__init__(f"found multiple VMs with name '{hostname}', IDs: {vmids}")


class ClusterError(PvelxcError):
    """Error returned by the cluster control plane."""
    pass


class NotFoundError(ClusterError):
    """Requested instance does not exist on the cluster."""
    pass


class TaskFailedError(ClusterError):
    """An asynchronous cluster task finished unsuccessfully."""
    pass


class RemoteCommandError(PvelxcError):
    """A command run through a communicator failed."""
    
    def __init__(self, message: str, exit_status: Optional[int] = None):
        self.exit_status = exit_status
        super().__init__(message)


class StateConflictError(PvelxcError):
    """A step tried to overwrite a value another step already produced."""
    pass


class MissingStateError(PvelxcError):
    """A step's prerequisite was not produced by an earlier step."""
    pass


class BuildCancelledError(PvelxcError):
    """The build was cancelled before it could finish."""
    
    def __init__(self, message: str = "build was cancelled"):
        super().__init__(message)


DUPLICATE_ID_MARKER = "already exists on node"


def is_duplicate_id_error(err: BaseException) -> bool:
    """Check whether a creation error means the vmid was claimed concurrently."""
    return DUPLICATE_ID_MARKER in str(err)
