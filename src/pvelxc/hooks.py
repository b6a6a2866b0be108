"""Provisioning hooks run against the build container."""

import asyncio
import io
import logging
import shlex
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional

from pvelxc.cluster.base import VmRef
from pvelxc.communicator.base import Communicator, RemoteCmd
from pvelxc.communicator.pct import PctCommunicator
from pvelxc.exceptions import ConfigurationError, RemoteCommandError
from pvelxc.models.config import ProvisionerConfig
from pvelxc.ui import BuildUi


logger = logging.getLogger(__name__)


class ProvisionSurface:
    """What a provisioning hook can do with the build container.

    Commands run inside the container through ``channel``; ``tunnel`` is the
    raw SSH session to the node, or ``None`` when ``pct`` runs locally.
    """
    
    def __init__(self, vm_ref: VmRef, channel: PctCommunicator, tunnel: Optional[Communicator] = None):
        self.vm_ref = vm_ref
        self.channel = channel
        self.tunnel = tunnel
        
    async def start(self, cmd: RemoteCmd) -> None:
        await self.channel.start(cmd)
        
    async def execute(self, cmd: RemoteCmd) -> int:
        """Run ``cmd`` in the container and raise unless it exits 0."""
        exit_status = await cmd.run(self.channel)
        if exit_status != 0:
            raise RemoteCommandError(
                f"script exited with non-zero exit status: {exit_status}", exit_status
            )
        return exit_status
        
    async def upload(self, dst: str, reader: BinaryIO) -> None:
        await self.channel.upload(dst, reader)
        
    async def upload_dir(self, dst: str, src: str, exclude: Optional[List[str]] = None) -> None:
        await self.channel.upload_dir(dst, src, exclude)
        
    async def download(self, src: str, writer: BinaryIO) -> None:
        await self.channel.download(src, writer)
        
    async def download_dir(self, src: str, dst: str, exclude: Optional[List[str]] = None) -> None:
        await self.channel.download_dir(src, dst, exclude)


class ProvisionHook(ABC):
    """External provisioning engine."""
    
    @abstractmethod
    async def run(self, surface: ProvisionSurface, data: Dict[str, Any]) -> None:
        """Provision the container. Raising stops the build."""
        pass


class Provisioner(ABC):
    """One configured provisioning action."""
    
    kind = "provisioner"
    
    def __init__(self, ui: Optional[BuildUi] = None):
        self.ui = ui
        
    @abstractmethod
    async def provision(self, surface: ProvisionSurface, data: Dict[str, Any]) -> None:
        pass
        
    def _say(self, message: str) -> None:
        if self.ui:
            self.ui.say(message)
        logger.info(message)


class ShellProvisioner(Provisioner):
    """Runs inline shell commands in the container.

    The commands are written to a script that is uploaded into the container
    and run with ``bash -e``, so quoting and variable expansion happen inside
    the container rather than on the node.
    """
    
    kind = "shell"
    remote_folder = "/tmp"
    
    def __init__(
        self,
        inline: List[str],
        environment_vars: Optional[Dict[str, str]] = None,
        ui: Optional[BuildUi] = None,
    ):
        super().__init__(ui)
        self.inline = inline
        self.environment_vars = environment_vars or {}
        
    def render_script(self) -> str:
        """Return the script body: environment exports followed by the inline commands."""
        lines = [f"export {key}={shlex.quote(str(value))}" for key, value in self.environment_vars.items()]
        lines.extend(self.inline)
        return "\n".join(lines) + "\n"
        
    async def provision(self, surface: ProvisionSurface, data: Dict[str, Any]) -> None:
        remote_path = f"{self.remote_folder}/pvelxc-script-{uuid.uuid4().hex}.sh"
        for command in self.inline:
            self._say(f"Provisioning with shell: {command}")
            
        await surface.upload(remote_path, io.BytesIO(self.render_script().encode("utf-8")))
        output = io.BytesIO()
        cmd = RemoteCmd(f"bash -e {remote_path}", stdout=output, stderr=output)
        try:
            await surface.execute(cmd)
        finally:
            for line in output.getvalue().decode("utf-8", errors="replace").splitlines():
                if self.ui:
                    self.ui.message(line)
                logger.debug(f"[{self.kind}] {line}")
            await self._remove_script(surface, remote_path)
            
    @staticmethod
    async def _remove_script(surface: ProvisionSurface, remote_path: str) -> None:
        try:
            await surface.execute(RemoteCmd(f"rm -f {remote_path}"))
        except RemoteCommandError as e:
            logger.warning(f"Failed to remove {remote_path} from the container: {e}")


class FileProvisioner(Provisioner):
    """Uploads a file or directory tree into the container."""
    
    kind = "file"
    
    def __init__(
        self,
        source: str,
        destination: str,
        exclude: Optional[List[str]] = None,
        ui: Optional[BuildUi] = None,
    ):
        super().__init__(ui)
        self.source = source
        self.destination = destination
        self.exclude = exclude or []
        
    async def provision(self, surface: ProvisionSurface, data: Dict[str, Any]) -> None:
        self._say(f"Uploading {self.source} => {self.destination}")
        path = Path(self.source)
        
        if await asyncio.to_thread(path.is_dir):
            await surface.upload_dir(self.destination, self.source, self.exclude)
            return
            
        if not await asyncio.to_thread(path.is_file):
            raise ConfigurationError(f"file provisioner source not found: {self.source}")
            
        f = await asyncio.to_thread(path.open, "rb")
        try:
            await surface.upload(self.destination, f)
        finally:
            f.close()


class ProvisionerChain(ProvisionHook):
    """Runs configured provisioners in order, stopping at the first failure."""
    
    def __init__(self, provisioners: Optional[List[Provisioner]] = None):
        self.provisioners = provisioners or []
        
    @classmethod
    def from_config(cls, configs: List[ProvisionerConfig], ui: Optional[BuildUi] = None) -> "ProvisionerChain":
        """Create provisioners from their configuration blocks."""
        provisioners: List[Provisioner] = []
        for config in configs:
            if config.type == "shell":
                provisioners.append(
                    ShellProvisioner(config.inline, config.environment_vars, ui=ui)
                )
            elif config.type == "file":
                provisioners.append(
                    FileProvisioner(config.source, config.destination, config.exclude, ui=ui)
                )
            else:
                raise ConfigurationError(f"Unknown provisioner type: {config.type}")
        return cls(provisioners)
        
    async def run(self, surface: ProvisionSurface, data: Dict[str, Any]) -> None:
        if not self.provisioners:
            logger.info("No provisioners configured")
            return
            
        for provisioner in self.provisioners:
            logger.debug(f"Running {provisioner.kind} provisioner")
            await provisioner.provision(surface, data)
