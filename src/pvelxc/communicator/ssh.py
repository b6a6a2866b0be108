"""SSH session to the Proxmox node, used as a command tunnel."""

import asyncio
import fnmatch
import logging
import os
import posixpath
import shlex
from typing import BinaryIO, List, Optional, Set

import paramiko

from pvelxc.communicator.base import Communicator, RemoteCmd, UNKNOWN_EXIT_STATUS
from pvelxc.exceptions import RemoteCommandError
from pvelxc.models.config import SSHConfig


logger = logging.getLogger(__name__)

CHUNK_SIZE = 32768


class SSHCommunicator(Communicator):
    """Paramiko-backed communicator. Blocking calls run in worker threads."""
    
    def __init__(self, host: str, config: SSHConfig):
        self.host = host
        self.config = config
        self.client: Optional[paramiko.SSHClient] = None
        self._tasks: Set[asyncio.Task] = set()
        
    async def connect(self) -> None:
        """Open the SSH session."""
        logger.info(f"Connecting to {self.config.username}@{self.host}:{self.config.port}")
        
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            await asyncio.to_thread(
                client.connect,
                self.host,
                port=self.config.port,
                username=self.config.username,
                password=self.config.password,
                key_filename=self.config.private_key_file,
                timeout=self.config.timeout,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise RemoteCommandError(f"failed to connect to {self.host}: {e}") from e
            
        self.client = client
        logger.debug(f"Connected to {self.host}")
        
    async def close(self) -> None:
        """Close the SSH session."""
        if self.client:
            await asyncio.to_thread(self.client.close)
            self.client = None
            
    def _require_client(self) -> paramiko.SSHClient:
        if self.client is None:
            raise RemoteCommandError(f"not connected to {self.host}")
        return self.client
        
    async def start(self, cmd: RemoteCmd) -> None:
        client = self._require_client()
        
        def _open():
            transport = client.get_transport()
            if transport is None or not transport.is_active():
                raise RemoteCommandError(f"SSH session to {self.host} is closed")
            channel = transport.open_session()
            channel.exec_command(cmd.command)
            return channel
            
        try:
            channel = await asyncio.to_thread(_open)
        except paramiko.SSHException as e:
            raise RemoteCommandError(f"failed to start '{cmd.command}': {e}") from e
            
        task = asyncio.create_task(self._supervise(channel, cmd))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        
    async def _supervise(self, channel: paramiko.Channel, cmd: RemoteCmd) -> None:
        status = UNKNOWN_EXIT_STATUS
        try:
            status = await asyncio.to_thread(self._run_channel, channel, cmd)
        except Exception as e:
            logger.error(f"Error while running '{cmd.command}' on {self.host}: {e}")
        finally:
            channel.close()
            cmd.set_exited(status)
            
    @staticmethod
    def _run_channel(channel: paramiko.Channel, cmd: RemoteCmd) -> int:
        """Feed stdin, drain output and return the exit status. Runs in a thread."""
        if cmd.stdin is not None:
            channel.sendall(cmd.stdin.read())
        channel.shutdown_write()
        
        while True:
            drained = False
            if channel.recv_ready():
                data = channel.recv(CHUNK_SIZE)
                if cmd.stdout is not None:
                    cmd.stdout.write(data)
                drained = True
            if channel.recv_stderr_ready():
                data = channel.recv_stderr(CHUNK_SIZE)
                if cmd.stderr is not None:
                    cmd.stderr.write(data)
                drained = True
            if not drained and channel.exit_status_ready():
                if not channel.recv_ready() and not channel.recv_stderr_ready():
                    break
            if not drained:
                channel.status_event.wait(0.1)
                
        exit_status = channel.recv_exit_status()
        return exit_status if exit_status >= 0 else UNKNOWN_EXIT_STATUS
        
    async def upload(self, dst: str, reader: BinaryIO) -> None:
        client = self._require_client()
        
        def _put():
            with client.open_sftp() as sftp:
                sftp.putfo(reader, dst)
                
        await asyncio.to_thread(_put)
        
    async def upload_dir(self, dst: str, src: str, exclude: Optional[List[str]] = None) -> None:
        client = self._require_client()
        exclude = exclude or []
        if not (src.endswith(os.sep) or src.endswith("/")):
            dst = posixpath.join(dst, os.path.basename(os.path.normpath(src)))
            
        def _put_tree():
            with client.open_sftp() as sftp:
                for root, dirs, files in os.walk(src):
                    relative_root = os.path.relpath(root, src)
                    remote_root = dst if relative_root == "." else posixpath.join(
                        dst, *relative_root.split(os.sep)
                    )
                    self._mkdir_p(sftp, remote_root)
                    
                    for name in files:
                        relative = os.path.normpath(os.path.join(relative_root, name)).replace(os.sep, "/")
                        if any(fnmatch.fnmatch(relative, pattern) for pattern in exclude):
                            continue
                        sftp.put(os.path.join(root, name), posixpath.join(remote_root, name))
                        
        await asyncio.to_thread(_put_tree)
        
    @staticmethod
    def _mkdir_p(sftp: paramiko.SFTPClient, path: str) -> None:
        current = ""
        for part in path.split("/"):
            if not part:
                current = current or "/"
                continue
            current = posixpath.join(current, part)
            try:
                sftp.stat(current)
            except FileNotFoundError:
                sftp.mkdir(current)
                
    async def download(self, src: str, writer: BinaryIO) -> None:
        client = self._require_client()
        
        def _get():
            with client.open_sftp() as sftp:
                sftp.getfo(src, writer)
                
        await asyncio.to_thread(_get)
        
    async def download_dir(self, src: str, dst: str, exclude: Optional[List[str]] = None) -> None:
        raise NotImplementedError("DownloadDir is not implemented for the SSH tunnel")
        
    async def run_checked(self, command: str) -> None:
        """Run a command on the node and raise on a nonzero exit status."""
        cmd = RemoteCmd(command)
        exit_status = await cmd.run(self)
        if exit_status != 0:
            raise RemoteCommandError(
                f"command {shlex.quote(command)} exited with status {exit_status}", exit_status
            )
