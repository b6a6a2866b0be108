"""Shared fixtures."""

import os

import pytest


# Runs "pct exec <vmid> -- <argv>" and "pct push <vmid> <src> <dst>" on this machine
FAKE_PCT = """#!/bin/sh
case "$1" in
    exec) shift 3; exec "$@" ;;
    push) cp "$3" "$4" ;;
    *) echo "unsupported pct command: $1" >&2; exit 2 ;;
esac
"""


@pytest.fixture
def fake_pct(tmp_path, monkeypatch):
    """Put a local stand-in for ``pct`` first on PATH."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    pct = bin_dir / "pct"
    pct.write_text(FAKE_PCT)
    pct.chmod(0o755)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return pct
