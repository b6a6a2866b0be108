"""Command channel into an LXC container through ``pct``."""

import asyncio
import fnmatch
import logging
import os
import shlex
import shutil
import tarfile
import tempfile
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, BinaryIO, List, Optional, Set

from pvelxc.cluster.base import VmRef
from pvelxc.communicator.base import Communicator, RemoteCmd, UNKNOWN_EXIT_STATUS
from pvelxc.exceptions import RemoteCommandError


logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536


def wrap_pct_exec(vmid: int, command: str) -> str:
    """Wrap a command so it runs inside the container."""
    return f'pct exec {vmid} -- bash -c "{command}"'


class Transport(ABC):
    """How node-level commands and files reach the Proxmox node."""
    
    can_download = False
    
    @abstractmethod
    async def execute(self, cmd: RemoteCmd) -> None:
        """Start a node-level command without waiting for it."""
        pass
        
    @abstractmethod
    def stage_file(self, reader: BinaryIO) -> AsyncIterator[str]:
        """Async context manager placing ``reader``'s content in a file on the node.

        Yields the node-side path; the file is removed when the context exits.
        """
        pass
        
    async def retrieve(self, path: str, writer: BinaryIO) -> None:
        """Copy a node-side file into ``writer``."""
        raise NotImplementedError("Download is not implemented for lxc")


class LocalTransport(Transport):
    """Runs node-level commands on the machine driving the build."""
    
    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        
    async def execute(self, cmd: RemoteCmd) -> None:
        logger.debug(f"Starting command locally: {cmd.command}")
        
        process = await asyncio.create_subprocess_exec(
            "/bin/sh", "-c", cmd.command,
            stdin=asyncio.subprocess.PIPE if cmd.stdin else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE if cmd.stdout else asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE if cmd.stderr else asyncio.subprocess.DEVNULL,
        )
        
        task = asyncio.create_task(self._supervise(process, cmd))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        
    async def _supervise(self, process: asyncio.subprocess.Process, cmd: RemoteCmd) -> None:
        """Pump the process streams and report its exit status."""
        status = UNKNOWN_EXIT_STATUS
        pumps = [
            asyncio.create_task(self._feed(process.stdin, cmd.stdin)),
            asyncio.create_task(self._pump(process.stdout, cmd.stdout)),
            asyncio.create_task(self._pump(process.stderr, cmd.stderr)),
        ]
        try:
            await asyncio.gather(*pumps)
            returncode = await process.wait()
            if returncode >= 0:
                status = returncode
            else:
                logger.debug(f"Command terminated by signal {-returncode}: {cmd.command}")
        except Exception as e:
            logger.error(f"Error while running '{cmd.command}': {e}")
            # Nothing may reach the caller's streams once the status is reported
            for pump in pumps:
                pump.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            if process.returncode is None:
                process.kill()
                await process.wait()
        finally:
            logger.debug(f"pct execution exited with '{status}': '{cmd.command}'")
            cmd.set_exited(status)
            
    @staticmethod
    async def _feed(pipe: Optional[asyncio.StreamWriter], reader: Optional[BinaryIO]) -> None:
        if pipe is None or reader is None:
            return
        try:
            data = await asyncio.to_thread(reader.read)
            pipe.write(data)
            await pipe.drain()
        finally:
            pipe.close()
            
    @staticmethod
    async def _pump(pipe: Optional[asyncio.StreamReader], writer: Optional[BinaryIO]) -> None:
        if pipe is None or writer is None:
            return
        while True:
            chunk = await pipe.read(CHUNK_SIZE)
            if not chunk:
                break
            writer.write(chunk)
            
    @asynccontextmanager
    async def stage_file(self, reader: BinaryIO) -> AsyncIterator[str]:
        fd, path = await asyncio.to_thread(tempfile.mkstemp, prefix="pvelxc-pct-push")
        try:
            def _copy():
                with os.fdopen(fd, "wb") as f:
                    shutil.copyfileobj(reader, f)
                    
            await asyncio.to_thread(_copy)
            yield path
        finally:
            await asyncio.to_thread(Path(path).unlink, missing_ok=True)


class TunneledTransport(Transport):
    """Forwards node-level commands through an open session to the node."""
    
    can_download = True
    
    def __init__(self, tunnel: Communicator):
        self.tunnel = tunnel
        
    async def execute(self, cmd: RemoteCmd) -> None:
        logger.debug("Starting remote command through tunnel")
        await self.tunnel.start(cmd)
        
    @asynccontextmanager
    async def stage_file(self, reader: BinaryIO) -> AsyncIterator[str]:
        path = f"/tmp/pvelxc-pct-push-{uuid.uuid4().hex}"
        logger.debug(f"Uploading {path} via the tunnel")
        try:
            await self.tunnel.upload(path, reader)
            yield path
        finally:
            await self.discard(path)
            
    async def retrieve(self, path: str, writer: BinaryIO) -> None:
        await self.tunnel.download(path, writer)
        
    async def discard(self, path: str) -> None:
        """Remove a staged file from the node, reporting but not raising failures."""
        cmd = RemoteCmd(f"rm -f {shlex.quote(path)}")
        try:
            status = await cmd.run(self.tunnel)
            if status != 0:
                logger.warning(f"Failed to remove {path} from the node: exit status {status}")
        except Exception as e:
            logger.warning(f"Failed to remove {path} from the node: {e}")


class PctCommunicator(Communicator):
    """Runs commands inside a container with ``pct exec`` and moves files with ``pct push``.

    Without a tunnel, ``pct`` is invoked on the local machine, which must then
    be the Proxmox node. With a tunnel (an SSH session to the node), the same
    command strings are forwarded unmodified through the session.
    """
    
    def __init__(self, vm_ref: VmRef, tunnel: Optional[Communicator] = None):
        self.vm_ref = vm_ref
        self.tunnel = tunnel
        self._transport: Transport = TunneledTransport(tunnel) if tunnel else LocalTransport()
        self._forwarders: Set[asyncio.Task] = set()
        
    @property
    def transport(self) -> Transport:
        return self._transport
        
    async def start(self, cmd: RemoteCmd) -> None:
        """Start ``cmd`` inside the container and return immediately."""
        wrapped = RemoteCmd(
            wrap_pct_exec(self.vm_ref.vmid, cmd.command),
            stdin=cmd.stdin,
            stdout=cmd.stdout,
            stderr=cmd.stderr,
        )
        
        await self.execute(wrapped, sync=False)
        
        # The caller waits on the original command, not the wrapper
        async def _forward():
            cmd.set_exited(await wrapped.wait())
            
        task = asyncio.create_task(_forward())
        self._forwarders.add(task)
        task.add_done_callback(self._forwarders.discard)
        
    async def execute(self, cmd: RemoteCmd, sync: bool = True) -> None:
        """Run a node-level command, optionally waiting for a zero exit status."""
        await self._transport.execute(cmd)
        
        if sync:
            exit_status = await cmd.wait()
            if exit_status != 0:
                raise RemoteCommandError(
                    f"remote command returned error status {exit_status}", exit_status
                )
                
    async def upload(self, dst: str, reader: BinaryIO) -> None:
        """Upload ``reader``'s content to ``dst`` inside the container."""
        async with self._transport.stage_file(reader) as src:
            cmd = RemoteCmd(f"pct push {self.vm_ref.vmid} {shlex.quote(src)} {shlex.quote(dst)}")
            await self.execute(cmd, sync=True)
            
    async def upload_dir(self, dst: str, src: str, exclude: Optional[List[str]] = None) -> None:
        """Upload a local directory tree into the container.

        ``src/`` copies the directory's contents into ``dst``; ``src`` without
        a trailing separator copies the directory itself into ``dst``.
        """
        archive_name = f"/tmp/pvelxc-upload-{uuid.uuid4().hex}.tar"
        archive = await asyncio.to_thread(build_archive, src, exclude or [])
        try:
            with open(archive, "rb") as f:
                await self.upload(archive_name, f)
        finally:
            await asyncio.to_thread(Path(archive).unlink, missing_ok=True)
            
        await self._run_in_container(
            f"mkdir -p {shlex.quote(dst)} && "
            f"tar -xf {archive_name} -C {shlex.quote(dst)} && "
            f"rm -f {archive_name}"
        )
        
    async def download(self, src: str, writer: BinaryIO) -> None:
        """Download a file from the container. Only supported through a tunnel."""
        if not self._transport.can_download:
            raise NotImplementedError("Download is not implemented for lxc")
            
        staged = f"/tmp/pvelxc-pct-pull-{uuid.uuid4().hex}"
        await self.execute(
            RemoteCmd(f"pct pull {self.vm_ref.vmid} {shlex.quote(src)} {staged}"), sync=True
        )
        try:
            await self._transport.retrieve(staged, writer)
        finally:
            await self._transport.discard(staged)
            
    async def download_dir(self, src: str, dst: str, exclude: Optional[List[str]] = None) -> None:
        raise NotImplementedError("DownloadDir is not implemented for lxc")
        
    async def check_init(self) -> None:
        """Check that commands can run inside the container."""
        logger.debug("Checking container runlevel")
        cmd = RemoteCmd("/sbin/runlevel")
        exit_status = await cmd.run(self)
        if exit_status != 0:
            raise RemoteCommandError(f"got bad exit status from check init: {exit_status}", exit_status)
            
    async def _run_in_container(self, command: str) -> None:
        cmd = RemoteCmd(command)
        exit_status = await cmd.run(self)
        if exit_status != 0:
            raise RemoteCommandError(f"command '{command}' exited with status {exit_status}", exit_status)


def build_archive(src: str, exclude: List[str]) -> str:
    """Pack ``src`` into a temporary tar file, skipping paths matching ``exclude``."""
    root = Path(src)
    if not root.is_dir():
        raise FileNotFoundError(f"not a directory: {src}")
        
    contents_only = src.endswith(os.sep) or src.endswith("/")
    arcname = "." if contents_only else root.resolve().name
    
    def _filter(info: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        relative = os.path.normpath(info.name)
        parts = Path(relative).parts
        if not contents_only:
            parts = parts[1:]
        relative = "/".join(parts)
        if relative and any(fnmatch.fnmatch(relative, pattern) for pattern in exclude):
            return None
        return info
        
    fd, path = tempfile.mkstemp(prefix="pvelxc-upload-", suffix=".tar")
    os.close(fd)
    try:
        with tarfile.open(path, "w") as tar:
            tar.add(str(root), arcname=arcname, filter=_filter)
    except Exception:
        os.unlink(path)
        raise
    return path
