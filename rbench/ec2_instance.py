"""EC2 instance management for remote benchmarking.

This module provides the EC2Instance class that handles the lifecycle of the
single benchmark instance: launch, readiness checks, binary upload,
benchmark execution and termination.
"""

from __future__ import annotations

import shlex
import socket
import threading
import time
from typing import TYPE_CHECKING, TextIO

from .builder import random_suffix
from .interactive import SSHInteractiveSession
from .logger import logger

if TYPE_CHECKING:
    from pathlib import Path

    from .aws_api import EC2Direct
    from .models import BenchFlags, InstanceArch, RemoteBenchConfig

SSH_SETTLE_SECONDS = 5
REMOTE_BINARY_NAME = "bench"


class EC2Instance:
    """Represents the EC2 instance a benchmark runs on."""

    def __init__(
        self, client: EC2Direct, config: RemoteBenchConfig, user_name: str, key_name: str
    ) -> None:
        """Initialise the instance manager."""
        self.client = client
        self.config = config
        self.user_name = user_name
        self.key_name = key_name
        self.instance_id: str | None = None
        self.public_ip: str | None = None
        self.ssh_session: SSHInteractiveSession | None = None
        self._terminate_lock = threading.Lock()
        self._terminated = False
        self.name = f"rbench/{user_name}/{random_suffix()}"

    @property
    def remote_binary(self) -> str:
        """Remote path the benchmark binary is uploaded to."""
        return f"{self.config.remote_dir.rstrip('/')}/{REMOTE_BINARY_NAME}"

    def create(self, arch: InstanceArch) -> str:
        """Launch the instance with the AMI matching ``arch``.

        Returns:
            The new instance ID.

        Raises:
            AWSAPIError: If the provider rejects the launch.
        """
        logger.info("🚀 Starting %s instance...", self.config.instance_type)
        self.instance_id = self.client.run_instance(
            image_id=self.config.ami_for(arch),
            instance_type=self.config.instance_type,
            key_name=self.key_name,
            security_group_ids=self.config.security_group_ids,
            tags={"rbench": self.user_name, "Name": self.name},
        )
        logger.info("✅ Instance %s created (%s)", self.instance_id, self.name)
        return self.instance_id

    def wait_until_ready(self) -> None:
        """Wait until the instance is running and accepts SSH connections.

        Raises:
            AWSAPIError: If the instance never reaches ``running``.
            RuntimeError: If the instance was not created or SSH is unreachable.
        """
        if self.instance_id is None:
            msg = "Instance has not been created"
            raise RuntimeError(msg)
        logger.info("⏳ Waiting for instance to be running...")
        self.public_ip = self.client.wait_until_running(
            self.instance_id, timeout=self.config.running_timeout
        )
        logger.info("🌟 Instance is running at %s", self.public_ip)
        self._wait_for_ssh_port()
        self._open_session()

    def _wait_for_ssh_port(self) -> None:
        """Probe the SSH port until it accepts TCP connections.

        Raises:
            RuntimeError: If the port is still unreachable after all probes.
        """
        logger.info("🔑 Waiting for SSH on %s:%s...", self.public_ip, self.config.ssh_port)
        attempts = self.config.ssh_probe_attempts
        for attempt in range(attempts):
            try:
                with socket.create_connection(
                    (self.public_ip, self.config.ssh_port), timeout=self.config.ssh_probe_timeout
                ):
                    pass
            except OSError as e:
                logger.debug("SSH probe %d/%d failed: %s", attempt + 1, attempts, e)
                time.sleep(self.config.ssh_probe_interval)
            else:
                # sshd accepts connections slightly before cloud-init installs the key
                time.sleep(SSH_SETTLE_SECONDS)
                return

        msg = f"unable to connect to instance {self.instance_id} on port {self.config.ssh_port}"
        raise RuntimeError(msg)

    def _open_session(self) -> None:
        if self.public_ip is None:
            msg = "Instance has no public IP"
            raise RuntimeError(msg)
        self.ssh_session = SSHInteractiveSession(
            self.public_ip,
            self.config.ssh_port,
            self.config.ssh_user,
            self.config.private_key_path(self.key_name),
        )
        self.ssh_session.connect(timeout=self.config.ssh_probe_timeout)
        logger.info("✅ SSH ready (%s)", self.public_ip)

    def upload_binary(self, local_path: Path) -> None:
        """Upload the benchmark binary to the instance.

        Raises:
            RuntimeError: If the session is missing or the upload fails.
        """
        if not self.ssh_session:
            msg = "SSH session not established."
            raise RuntimeError(msg)
        logger.info("📦 Uploading benchmark binary...")
        self.ssh_session.upload(local_path, self.remote_binary)

    def build_command(self, flags: BenchFlags) -> str:
        """Build the remote shell command that runs the benchmark binary.

        Returns:
            The command, with every forwarded flag shell-quoted.
        """
        args = " ".join(shlex.quote(arg) for arg in flags.to_test_args())
        return f"cd {shlex.quote(self.config.remote_dir)} && ./{REMOTE_BINARY_NAME} {args}"

    def run_benchmark(
        self, flags: BenchFlags, stdout: TextIO | None = None, stderr: TextIO | None = None
    ) -> None:
        """Run the benchmark binary, streaming its output locally.

        Raises:
            RuntimeError: If the session is missing or the benchmark exits non-zero.
        """
        if not self.ssh_session:
            msg = "SSH session not established."
            raise RuntimeError(msg)
        command = self.build_command(flags)
        logger.debug("Benchmark command: %s", command)
        try:
            self.ssh_session.execute_command_streaming(command, stdout=stdout, stderr=stderr)
        except RuntimeError as e:
            msg = f"failed to run the benchmark: {e}"
            raise RuntimeError(msg) from e

    def terminate(self) -> bool:
        """Close the SSH session and terminate the instance.

        Only the first call issues the termination request; later calls
        return False without contacting AWS.

        Returns:
            True if this call issued an accepted termination request.
        """
        with self._terminate_lock:
            if self._terminated or not self.instance_id:
                return False
            self._terminated = True

        if self.ssh_session:
            self.ssh_session.close()
            self.ssh_session = None

        logger.info("🧹 Terminating instance %s", self.instance_id)
        if self.client.terminate_instance(self.instance_id):
            logger.info("Instance %s terminated.", self.instance_id)
            return True

        logger.warning(
            "⚠️  Instance %s may still be running and incurring charges!", self.instance_id
        )
        return False
