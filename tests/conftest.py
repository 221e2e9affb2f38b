"""Shared fixtures for rbench tests."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest

from rbench.aws_api import EC2Direct
from rbench.models import InstanceArch, RemoteBenchConfig


@pytest.fixture
def config(tmp_path):
    """Configuration that never touches the real home directory."""
    return RemoteBenchConfig(
        user_name="alice",
        key_dir=tmp_path / "ssh",
        ssh_probe_attempts=2,
        ssh_probe_timeout=1,
        ssh_probe_interval=0,
    )


@pytest.fixture
def client():
    """EC2 client double with successful defaults."""
    fake = MagicMock(spec=EC2Direct)
    fake.get_user_name.return_value = "alice"
    fake.ensure_key_pair.return_value = False
    fake.get_instance_arch.return_value = InstanceArch.X86_64
    fake.run_instance.return_value = "i-0123456789abcdef0"
    fake.wait_until_running.return_value = "203.0.113.10"
    fake.terminate_instance.return_value = True
    return fake


@pytest.fixture(autouse=True)
def _clean_rbench_env(monkeypatch):
    """Keep RBENCH_* variables from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("RBENCH_"):
            monkeypatch.delenv(key)
