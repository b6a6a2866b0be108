"""Command channels into the build container."""

from pvelxc.communicator.base import Communicator, RemoteCmd
from pvelxc.communicator.pct import PctCommunicator
from pvelxc.communicator.ssh import SSHCommunicator

__all__ = [
    "Communicator",
    "RemoteCmd",
    "PctCommunicator",
    "SSHCommunicator",
]
