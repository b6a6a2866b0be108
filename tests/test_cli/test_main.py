"""Tests for CLI main module."""

import pytest
from unittest.mock import MagicMock, patch

import typer
from typer.testing import CliRunner

from pvelxc.cli.main import _run_cli_command, app
from pvelxc.artifact import Artifact
from pvelxc.cluster.base import VmRef
from pvelxc.exceptions import ClusterError


CONFIG_YAML = """
cluster:
  proxmox_url: https://pve.example.com:8006/api2/json
  username: root@pam
  password: secret
  node: pve1
os_template: local:vztmpl/debian-12-standard_12.2-1_amd64.tar.zst
hostname: builder
rootfs:
  storage_id: local-lvm
  disk_size: 8G
provisioners:
  - type: shell
    inline:
      - apt-get update
"""

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("PROXMOX_URL", "PROXMOX_USERNAME", "PROXMOX_PASSWORD", "PROXMOX_TOKEN"):
        monkeypatch.delenv(name, raising=False)


@patch("pvelxc.cli.main.console")
def test_run_cli_command_success(mock_console):
    """Test the CLI command runner on a successful execution."""
    mock_handler = MagicMock()
    
    _run_cli_command(mock_handler, config_file="build.yaml")
    
    mock_handler.assert_called_once_with(config_file="build.yaml")
    mock_console.print.assert_not_called()


@patch("pvelxc.cli.main.console")
def test_run_cli_command_error(mock_console):
    """Test the CLI command runner when a build error is raised."""
    mock_handler = MagicMock(side_effect=ClusterError("error creating VM: boom"))
    
    with pytest.raises(typer.Exit) as exc_info:
        _run_cli_command(mock_handler, config_file="build.yaml")
        
    mock_console.print.assert_called_once_with("[red]Error:[/red] error creating VM: boom")
    assert exc_info.value.exit_code == 1


def test_validate_command(tmp_path):
    """Test validating a good configuration file."""
    config_file = tmp_path / "build.yaml"
    config_file.write_text(CONFIG_YAML)
    
    result = runner.invoke(app, ["validate", str(config_file)])
    
    assert result.exit_code == 0
    assert "Configuration is valid" in result.output


def test_validate_command_invalid(tmp_path):
    """Test validating a configuration without a root mount."""
    config_file = tmp_path / "build.yaml"
    config_file.write_text(CONFIG_YAML.replace("rootfs:", "unused:"))
    
    result = runner.invoke(app, ["validate", str(config_file)])
    
    assert result.exit_code == 1
    assert "rootfs block must be specified" in result.output


@patch("pvelxc.cli.commands.Builder")
def test_build_command(mock_builder_cls, tmp_path):
    """Test the build command runs the builder with --force."""
    config_file = tmp_path / "build.yaml"
    config_file.write_text(CONFIG_YAML)
    
    async def fake_run(force=False):
        return Artifact("pvelxc.proxmox-lxc", VmRef(vmid=101, node="pve1"), {"ID": 101})
        
    mock_builder_cls.return_value.run.side_effect = fake_run
    
    with patch("pvelxc.cli.commands.setup_logging"):
        result = runner.invoke(app, ["build", str(config_file), "--force"])
        
    assert result.exit_code == 0, result.output
    config = mock_builder_cls.call_args[0][0]
    assert config.hostname == "builder"
    mock_builder_cls.return_value.run.assert_called_once_with(force=True)
    assert "A container was created: 101 on node pve1" in result.output
