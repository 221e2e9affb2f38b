"""SSH session management for remote benchmark execution.

This module provides the paramiko-backed session used to upload the
benchmark binary over SFTP and to run it with real-time output streaming.
"""

from __future__ import annotations

import codecs
import logging
import select
import sys
import time
from typing import TYPE_CHECKING, TextIO

import paramiko

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096


class SSHInteractiveSession:
    """Manages an SSH session for remote command execution and file transfer."""

    def __init__(
        self, ssh_host: str, ssh_port: int, ssh_user: str, key_filename: str | Path
    ) -> None:
        """Initialise SSH session parameters."""
        self.ssh_host = ssh_host
        self.ssh_port = ssh_port
        self.ssh_user = ssh_user
        self.key_filename = str(key_filename)
        self.client: paramiko.SSHClient | None = None
        self.sftp: paramiko.SFTPClient | None = None

    def connect(self, timeout: int = 30) -> None:
        """Establish SSH connection using Paramiko.

        Unknown host keys are accepted, as freshly launched instances have
        never been seen before.

        Raises:
            RuntimeError: If the connection fails.
        """
        if self.client:
            transport = self.client.get_transport()
            if transport and transport.is_active():
                logger.debug("SSH session already connected.")
                return

        logger.debug(
            "Establishing SSH connection to %s@%s:%s", self.ssh_user, self.ssh_host, self.ssh_port
        )
        try:
            self.client = paramiko.SSHClient()
            self.client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            self.client.connect(
                hostname=self.ssh_host,
                port=self.ssh_port,
                username=self.ssh_user,
                key_filename=self.key_filename,
                look_for_keys=False,
                allow_agent=False,
                timeout=timeout,
                auth_timeout=timeout,
                banner_timeout=timeout,
            )
            transport = self.client.get_transport()
            if transport:
                transport.set_keepalive(30)
            self.sftp = self.client.open_sftp()
            logger.debug("SSH connection established.")
        except paramiko.AuthenticationException as e:
            msg = f"Authentication failed: {e}"
            raise RuntimeError(msg) from e
        except paramiko.SSHException as e:
            msg = f"SSH connection failed: {e}"
            raise RuntimeError(msg) from e
        except OSError as e:
            msg = f"Failed to connect: {e}"
            raise RuntimeError(msg) from e

    def upload(self, local_path: str | Path, remote_path: str, mode: int = 0o755) -> None:
        """Upload a file over SFTP and set its permissions.

        Raises:
            RuntimeError: If the SFTP session is missing or the upload fails.
        """
        if not self.sftp:
            msg = "SFTP session not established."
            raise RuntimeError(msg)

        logger.debug("Uploading %s to %s", local_path, remote_path)
        try:
            self.sftp.put(str(local_path), remote_path)
            self.sftp.chmod(remote_path, mode)
        except (OSError, paramiko.SSHException) as e:
            msg = f"failed to upload the binary: {e}"
            raise RuntimeError(msg) from e

    def _check_command_success(self, command: str, exit_status: int) -> None:
        """Check if command succeeded and raise error if not.

        Raises:
            RuntimeError: If the command fails.
        """
        if exit_status != 0:
            error_msg = f"Command '{command}' failed with exit code {exit_status}."
            raise RuntimeError(error_msg)

    @staticmethod
    def _drain(
        channel: paramiko.Channel,
        stdout: TextIO,
        stderr: TextIO,
        decoders: tuple[codecs.IncrementalDecoder, codecs.IncrementalDecoder],
    ) -> None:
        """Copy whatever is currently readable on the channel to the local streams.

        Each stream has its own incremental decoder, so a multi-byte character
        split across two reads is written once it is complete.
        """
        out_decoder, err_decoder = decoders
        if channel.recv_ready():
            stdout.write(out_decoder.decode(channel.recv(CHUNK_SIZE)))
            stdout.flush()
        if channel.recv_stderr_ready():
            stderr.write(err_decoder.decode(channel.recv_stderr(CHUNK_SIZE)))
            stderr.flush()

    def execute_command_streaming(
        self,
        command: str,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        """Execute a command, copying its stdout and stderr to local streams as they arrive.

        Output is written verbatim, so benchmark results keep the exact
        format of the remote binary.

        Raises:
            RuntimeError: If the SSH session is not established or the command fails.
        """
        if not self.client:
            msg = "SSH session not established"
            raise RuntimeError(msg)
        out = stdout or sys.stdout
        err = stderr or sys.stderr

        logger.debug("Executing streaming command: %s", command)
        _stdin, remote_stdout, _stderr = self.client.exec_command(command)
        channel = remote_stdout.channel
        channel.setblocking(0)
        decoders = (
            codecs.getincrementaldecoder("utf-8")(errors="replace"),
            codecs.getincrementaldecoder("utf-8")(errors="replace"),
        )

        while (
            not channel.exit_status_ready() or channel.recv_ready() or channel.recv_stderr_ready()
        ):
            rlist, _, _ = select.select([channel], [], [], 0.1)
            if rlist:
                self._drain(channel, out, err, decoders)
            elif not channel.exit_status_ready():
                time.sleep(0.1)

        # Flush anything that arrived alongside the exit status
        while channel.recv_ready() or channel.recv_stderr_ready():
            self._drain(channel, out, err, decoders)

        # Emit any incomplete trailing sequence as replacement characters
        out.write(decoders[0].decode(b"", final=True))
        err.write(decoders[1].decode(b"", final=True))
        out.flush()
        err.flush()

        exit_status = channel.recv_exit_status()
        self._check_command_success(command, exit_status)

    def close(self) -> None:
        """Close the SSH and SFTP sessions."""
        if self.sftp:
            self.sftp.close()
            self.sftp = None
        if self.client:
            self.client.close()
            self.client = None
