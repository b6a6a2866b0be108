"""Communicator interface and remote command handle."""

import asyncio
from abc import ABC, abstractmethod
from typing import BinaryIO, List, Optional


# Exit status used when the real one cannot be determined, e.g. signal termination
UNKNOWN_EXIT_STATUS = 1


class RemoteCmd:
    """A command to run through a communicator, plus its eventual exit status.

    The exit status is set exactly once, by whichever transport ran the
    command, after the underlying process or session has completed.
    """
    
    def __init__(
        self,
        command: str,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
    ):
        self.command = command
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr
        self.exit_status: Optional[int] = None
        self._exited = asyncio.Event()
        
    @property
    def exited(self) -> bool:
        return self._exited.is_set()
        
    def set_exited(self, status: int) -> None:
        """Record the exit status and wake up waiters."""
        if self._exited.is_set():
            raise RuntimeError(f"exit status for '{self.command}' already set")
        self.exit_status = status
        self._exited.set()
        
    async def wait(self) -> int:
        """Wait for the command to exit and return its status."""
        await self._exited.wait()
        return self.exit_status
        
    async def run(self, comm: "Communicator") -> int:
        """Start the command on a communicator and wait for it to exit."""
        await comm.start(self)
        return await self.wait()
        
    def __repr__(self) -> str:
        return f"RemoteCmd({self.command!r}, exit_status={self.exit_status})"


class Communicator(ABC):
    """Runs commands and transfers files to a remote target."""
    
    @abstractmethod
    async def start(self, cmd: RemoteCmd) -> None:
        """Start a command. Returns before the command exits."""
        pass
        
    @abstractmethod
    async def upload(self, dst: str, reader: BinaryIO) -> None:
        pass
        
    @abstractmethod
    async def upload_dir(self, dst: str, src: str, exclude: Optional[List[str]] = None) -> None:
        pass
        
    @abstractmethod
    async def download(self, src: str, writer: BinaryIO) -> None:
        pass
        
    @abstractmethod
    async def download_dir(self, src: str, dst: str, exclude: Optional[List[str]] = None) -> None:
        pass
        
    async def close(self) -> None:
        """Release any session held by the communicator."""
        pass
