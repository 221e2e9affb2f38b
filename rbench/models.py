"""Data models and configuration classes for rbench.

This module contains the dataclasses shared across the remote benchmarking
workflow: the forwarded ``go test`` flags, the instance architecture and the
run configuration loaded from a ``.env`` file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from dotenv import dotenv_values

ENV_PREFIX = "RBENCH_"

# Ubuntu Server 24.04 LTS (HVM), SSD Volume Type, us-east-2
DEFAULT_X86_AMI = "ami-0ea3c35c5c3284d82"
DEFAULT_ARM_AMI = "ami-01ebf7c0e446f85f9"


class InstanceArch(Enum):
    """CPU architecture of an EC2 instance type."""

    X86_64 = "x86_64"
    ARM64 = "arm64"

    @property
    def goarch(self) -> str:
        """The GOARCH value used to cross-compile for this architecture."""
        return "arm64" if self is InstanceArch.ARM64 else "amd64"


@dataclass
class BenchFlags:
    """Benchmark flags forwarded verbatim to the remote test binary.

    Mirrors the subset of ``go test`` flags that make sense for a compiled
    test binary. Each flag is rendered with the ``-test.`` prefix expected by
    binaries produced with ``go test -c``.
    """

    bench: str = "."
    count: int = 5
    cpu: int = 0
    benchmem: bool = False
    run: str = "NONE"
    benchtime: str | None = None
    timeout: str | None = None
    verbose: bool = False

    def to_test_args(self) -> list[str]:
        """Render the flags as test binary arguments.

        Returns:
            Arguments in ``-test.<name>=<value>`` form, in a stable order.
        """
        args = [
            f"-test.bench={self.bench}",
            f"-test.count={self.count}",
            f"-test.benchmem={'true' if self.benchmem else 'false'}",
            f"-test.run={self.run}",
        ]
        if self.cpu > 0:
            args.append(f"-test.cpu={self.cpu}")
        if self.benchtime:
            args.append(f"-test.benchtime={self.benchtime}")
        if self.timeout:
            args.append(f"-test.timeout={self.timeout}")
        if self.verbose:
            args.append("-test.v=true")
        return args


@dataclass
class RemoteBenchConfig:
    """Configuration settings for a remote benchmark run.

    Values come from ``RBENCH_*`` keys in a ``.env`` file, overlaid by
    ``RBENCH_*`` process environment variables. Every key is optional.
    """

    # AWS configuration
    region: str = "us-east-2"
    instance_type: str = "t2.micro"
    x86_ami: str = DEFAULT_X86_AMI
    arm_ami: str = DEFAULT_ARM_AMI
    security_group_ids: list[str] = field(default_factory=list)
    user_name: str | None = None

    # SSH configuration
    ssh_user: str = "ubuntu"
    ssh_port: int = 22
    key_dir: Path = field(default_factory=lambda: Path.home() / ".ssh")

    # Remote execution
    remote_dir: str = "/tmp"  # noqa: S108

    # Readiness
    running_timeout: int = 120
    ssh_probe_attempts: int = 5
    ssh_probe_timeout: int = 30
    ssh_probe_interval: int = 5

    @classmethod
    def from_dotenv(cls, env_file: str | Path = ".env") -> RemoteBenchConfig:
        """Create configuration from a .env file and the process environment.

        Returns:
            RemoteBenchConfig: An instance populated with the configured values,
            falling back to defaults for anything left unset.
        """
        config: dict[str, str | None] = dict(dotenv_values(env_file))
        config.update(os.environ)

        def get_optional(key: str) -> str | None:
            value = config.get(ENV_PREFIX + key)
            if value is None or not value.strip():
                return None
            return value.strip()

        def get_int(key: str, default: int) -> int:
            value = get_optional(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                msg = f"Invalid integer value for environment variable {ENV_PREFIX}{key}: {value}"
                raise ValueError(msg) from e

        defaults = cls()
        security_groups = get_optional("SECURITY_GROUP_IDS")
        key_dir = get_optional("KEY_DIR")

        return cls(
            region=get_optional("REGION") or defaults.region,
            instance_type=get_optional("INSTANCE_TYPE") or defaults.instance_type,
            x86_ami=get_optional("X86_AMI") or defaults.x86_ami,
            arm_ami=get_optional("ARM_AMI") or defaults.arm_ami,
            security_group_ids=(
                [sg.strip() for sg in security_groups.split(",") if sg.strip()]
                if security_groups
                else []
            ),
            user_name=get_optional("USER_NAME"),
            ssh_user=get_optional("SSH_USER") or defaults.ssh_user,
            ssh_port=get_int("SSH_PORT", defaults.ssh_port),
            key_dir=Path(key_dir).expanduser() if key_dir else defaults.key_dir,
            remote_dir=get_optional("REMOTE_DIR") or defaults.remote_dir,
            running_timeout=get_int("RUNNING_TIMEOUT", defaults.running_timeout),
            ssh_probe_attempts=get_int("SSH_PROBE_ATTEMPTS", defaults.ssh_probe_attempts),
            ssh_probe_timeout=get_int("SSH_PROBE_TIMEOUT", defaults.ssh_probe_timeout),
            ssh_probe_interval=get_int("SSH_PROBE_INTERVAL", defaults.ssh_probe_interval),
        )

    def ami_for(self, arch: InstanceArch) -> str:
        """Return the AMI to launch for the given architecture."""
        return self.arm_ami if arch is InstanceArch.ARM64 else self.x86_ami

    def key_name_for(self, user_name: str) -> str:
        """Key pair name shared by every run of the same IAM user."""
        return f"rbench-{user_name}"

    def private_key_path(self, key_name: str) -> Path:
        """Local path of the private key for a key pair."""
        return self.key_dir / f"{key_name}.pem"
