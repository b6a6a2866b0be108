"""Tests for the pct command channel."""

import asyncio
import io
import os
import shlex
import tarfile

import pytest
from unittest.mock import AsyncMock, Mock, patch

from pvelxc.cluster.base import VmRef
from pvelxc.communicator.base import Communicator, RemoteCmd
from pvelxc.communicator.pct import PctCommunicator, build_archive, wrap_pct_exec
from pvelxc.exceptions import RemoteCommandError


VM_REF = VmRef(vmid=101, node="pve1")
WRAPPED = 'pct exec 101 -- bash -c "echo hi"'


def fake_process(returncode=0, stdout=b""):
    """Stand-in for an asyncio subprocess with canned output."""
    process = Mock()
    process.stdin = None
    reader = asyncio.StreamReader()
    reader.feed_data(stdout)
    reader.feed_eof()
    process.stdout = reader
    process.stderr = None
    process.returncode = returncode
    process.wait = AsyncMock(return_value=returncode)
    return process


class FakeTunnel(Communicator):
    """Tunnel that records commands and uploads, exiting with scripted statuses."""
    
    def __init__(self, statuses=None):
        self.statuses = list(statuses or [])
        self.commands = []
        self.uploads = {}
        
    async def start(self, cmd):
        self.commands.append(cmd.command)
        cmd.set_exited(self.statuses.pop(0) if self.statuses else 0)
        
    async def upload(self, dst, reader):
        self.uploads[dst] = reader.read()
        
    async def upload_dir(self, dst, src, exclude=None):
        raise AssertionError("not used")
        
    async def download(self, src, writer):
        writer.write(b"pulled")
        
    async def download_dir(self, src, dst, exclude=None):
        raise NotImplementedError()


def test_wrap_pct_exec():
    assert wrap_pct_exec(101, "echo hi") == WRAPPED


def test_remote_command_error_without_status():
    assert RemoteCommandError("connection lost").exit_status is None


@pytest.mark.asyncio
class TestRemoteCmd:
    
    async def test_exit_status_set_exactly_once(self):
        cmd = RemoteCmd("true")
        cmd.set_exited(0)
        
        with pytest.raises(RuntimeError):
            cmd.set_exited(1)
            
        assert await cmd.wait() == 0


@pytest.mark.asyncio
class TestLocalTransport:
    """PctCommunicator without a tunnel."""
    
    async def test_start_wraps_command(self):
        comm = PctCommunicator(VM_REF)
        stdout = io.BytesIO()
        cmd = RemoteCmd("echo hi", stdout=stdout)
        
        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock) as mock_exec:
            mock_exec.return_value = fake_process(stdout=b"hi\n")
            await comm.start(cmd)
            status = await cmd.wait()
            
        assert status == 0
        assert mock_exec.call_args[0] == ("/bin/sh", "-c", WRAPPED)
        assert stdout.getvalue() == b"hi\n"
        
    async def test_start_returns_before_exit(self):
        comm = PctCommunicator(VM_REF)
        cmd = RemoteCmd("sleep 10")
        release = asyncio.Event()
        process = fake_process()
        
        async def slow_wait():
            await release.wait()
            return 0
            
        process.wait = slow_wait
        
        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock, return_value=process):
            await comm.start(cmd)
            assert not cmd.exited
            release.set()
            assert await cmd.wait() == 0
            
    async def test_signal_exit_synthesized(self):
        comm = PctCommunicator(VM_REF)
        cmd = RemoteCmd("echo hi")
        
        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock, return_value=fake_process(returncode=-9)):
            await comm.start(cmd)
            status = await cmd.wait()
            
        assert status == 1
        
    async def test_execute_raises_on_nonzero(self):
        comm = PctCommunicator(VM_REF)
        
        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock, return_value=fake_process(returncode=2)):
            with pytest.raises(RemoteCommandError) as exc_info:
                await comm.execute(RemoteCmd("lxc-info -n 101 -i -H"))
                
        assert exc_info.value.exit_status == 2
        
    async def test_upload_pushes_and_removes_temp_file(self):
        comm = PctCommunicator(VM_REF)
        staged = {}
        
        async def run(*args, **kwargs):
            argv = shlex.split(args[2])
            staged["path"] = argv[3]
            with open(argv[3], "rb") as f:
                staged["content"] = f.read()
            return fake_process()
            
        with patch("asyncio.create_subprocess_exec", side_effect=run) as mock_exec:
            await comm.upload("/etc/motd", io.BytesIO(b"hello"))
            
        assert shlex.split(mock_exec.call_args[0][2])[:3] == ["pct", "push", "101"]
        assert shlex.split(mock_exec.call_args[0][2])[4] == "/etc/motd"
        assert staged["content"] == b"hello"
        assert not os.path.exists(staged["path"])
        
    async def test_upload_removes_temp_file_on_error(self):
        comm = PctCommunicator(VM_REF)
        staged = {}
        
        async def run(*args, **kwargs):
            staged["path"] = shlex.split(args[2])[3]
            return fake_process(returncode=1)
            
        with patch("asyncio.create_subprocess_exec", side_effect=run):
            with pytest.raises(RemoteCommandError):
                await comm.upload("/etc/motd", io.BytesIO(b"hello"))
                
        assert not os.path.exists(staged["path"])
        
    async def test_download_not_implemented(self):
        comm = PctCommunicator(VM_REF)
        
        with pytest.raises(NotImplementedError, match="not implemented for lxc"):
            await comm.download("/etc/hostname", io.BytesIO())
            
        with pytest.raises(NotImplementedError):
            await comm.download_dir("/etc", "/tmp/etc")

    async def test_stream_error_stops_other_pumps(self):
        comm = PctCommunicator(VM_REF)
        stdout = io.BytesIO()
        stderr = Mock()
        stderr.write.side_effect = OSError("stream closed")
        process = Mock()
        process.stdin = None
        process.stdout = asyncio.StreamReader()
        process.stderr = asyncio.StreamReader()
        process.stderr.feed_data(b"boom")
        process.stderr.feed_eof()
        process.returncode = None
        process.wait = AsyncMock(return_value=-9)
        cmd = RemoteCmd("echo hi", stdout=stdout, stderr=stderr)

        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock, return_value=process):
            await comm.start(cmd)
            assert await cmd.wait() == 1

        process.kill.assert_called_once()
        process.stdout.feed_data(b"late output")
        process.stdout.feed_eof()
        await asyncio.sleep(0.01)
        assert stdout.getvalue() == b""


@pytest.mark.asyncio
class TestLocalProcess:
    """PctCommunicator running a real process through a local pct."""

    async def test_stdin_round_trip(self, fake_pct):
        comm = PctCommunicator(VM_REF)
        stdout = io.BytesIO()
        cmd = RemoteCmd("cat", stdin=io.BytesIO(b"hello container\n"), stdout=stdout)

        await comm.start(cmd)

        assert await cmd.wait() == 0
        assert stdout.getvalue() == b"hello container\n"

    async def test_nonzero_exit(self, fake_pct):
        comm = PctCommunicator(VM_REF)
        stderr = io.BytesIO()
        cmd = RemoteCmd("echo oops >&2; exit 3", stderr=stderr)

        await comm.start(cmd)

        assert await cmd.wait() == 3
        assert stderr.getvalue() == b"oops\n"

    async def test_execute_raises_on_nonzero(self, fake_pct):
        comm = PctCommunicator(VM_REF)

        with pytest.raises(RemoteCommandError) as exc_info:
            await comm.execute(RemoteCmd("pct exec 101 -- bash -c 'exit 4'"))

        assert exc_info.value.exit_status == 4

    async def test_killed_process_reports_one(self, fake_pct):
        comm = PctCommunicator(VM_REF)
        cmd = RemoteCmd("kill -9 $$")

        await comm.start(cmd)

        assert await cmd.wait() == 1

    async def test_upload_copies_file(self, fake_pct, tmp_path):
        comm = PctCommunicator(VM_REF)
        dst = tmp_path / "motd"

        await comm.upload(str(dst), io.BytesIO(b"welcome\n"))

        assert dst.read_bytes() == b"welcome\n"


@pytest.mark.asyncio
class TestTunneledTransport:
    """PctCommunicator forwarding through a tunnel."""
    
    async def test_forwards_identical_command(self):
        tunnel = FakeTunnel()
        comm = PctCommunicator(VM_REF, tunnel)
        cmd = RemoteCmd("echo hi")
        
        await comm.start(cmd)
        
        assert await cmd.wait() == 0
        assert tunnel.commands == [WRAPPED]
        
    async def test_same_string_as_local_transport(self):
        tunnel = FakeTunnel()
        await PctCommunicator(VM_REF, tunnel).start(RemoteCmd("echo hi"))
        
        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock, return_value=fake_process()) as mock_exec:
            local_cmd = RemoteCmd("echo hi")
            await PctCommunicator(VM_REF).start(local_cmd)
            await local_cmd.wait()
            
        assert tunnel.commands[0] == mock_exec.call_args[0][2]
        
    async def test_exit_status_forwarded(self):
        comm = PctCommunicator(VM_REF, FakeTunnel(statuses=[7]))
        cmd = RemoteCmd("exit 7")
        
        await comm.start(cmd)
        
        assert await cmd.wait() == 7
        
    async def test_upload_stages_on_node(self):
        tunnel = FakeTunnel()
        comm = PctCommunicator(VM_REF, tunnel)
        
        await comm.upload("/etc/motd", io.BytesIO(b"hello"))
        
        [(staged, content)] = tunnel.uploads.items()
        assert content == b"hello"
        assert tunnel.commands == [
            f"pct push 101 {staged} /etc/motd",
            f"rm -f {staged}",
        ]
        
    async def test_upload_dir_extracts_archive(self, tmp_path):
        src = tmp_path / "site"
        src.mkdir()
        (src / "index.html").write_text("<h1>hi</h1>")
        (src / "notes.bak").write_text("old")
        tunnel = FakeTunnel()
        comm = PctCommunicator(VM_REF, tunnel)
        
        await comm.upload_dir("/srv/www", str(src) + "/", exclude=["*.bak"])
        
        [(staged, content)] = tunnel.uploads.items()
        with tarfile.open(fileobj=io.BytesIO(content)) as tar:
            names = {os.path.normpath(n) for n in tar.getnames()}
        assert names == {".", "index.html"}
        
        push, rm, extract = tunnel.commands
        assert push.startswith(f"pct push 101 {staged} /tmp/pvelxc-upload-")
        assert rm == f"rm -f {staged}"
        assert extract.startswith('pct exec 101 -- bash -c "mkdir -p /srv/www && tar -xf /tmp/pvelxc-upload-')
        
    async def test_download_through_tunnel(self):
        tunnel = FakeTunnel()
        comm = PctCommunicator(VM_REF, tunnel)
        writer = io.BytesIO()
        
        await comm.download("/etc/hostname", writer)
        
        assert writer.getvalue() == b"pulled"
        assert tunnel.commands[0].startswith("pct pull 101 /etc/hostname /tmp/pvelxc-pct-pull-")
        assert tunnel.commands[1].startswith("rm -f /tmp/pvelxc-pct-pull-")


class TestBuildArchive:
    """Test directory packing."""
    
    def make_tree(self, tmp_path):
        src = tmp_path / "conf"
        (src / "sub").mkdir(parents=True)
        (src / "a.txt").write_text("a")
        (src / "b.bak").write_text("b")
        (src / "sub" / "c.txt").write_text("c")
        return src
        
    def names(self, path):
        try:
            with tarfile.open(path) as tar:
                return {os.path.normpath(n) for n in tar.getnames()}
        finally:
            os.unlink(path)
            
    def test_trailing_separator_packs_contents(self, tmp_path):
        src = self.make_tree(tmp_path)
        
        names = self.names(build_archive(str(src) + "/", ["*.bak"]))
        
        assert names == {".", "a.txt", "sub", "sub/c.txt"}
        
    def test_without_separator_packs_directory(self, tmp_path):
        src = self.make_tree(tmp_path)
        
        names = self.names(build_archive(str(src), ["*.bak"]))
        
        assert names == {"conf", "conf/a.txt", "conf/sub", "conf/sub/c.txt"}
        
    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            build_archive(str(tmp_path / "missing"), [])
