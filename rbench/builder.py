"""Local build step for remote benchmarking.

Cross-compiles the Go package's test binary for the target instance and
records the commit it was built from.
"""

from __future__ import annotations

import os
import random
import string
import subprocess
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from .logger import logger

if TYPE_CHECKING:
    from .models import InstanceArch

NOT_A_GIT_REPO = "not a git repo"


class BuildError(Exception):
    """Raised when the benchmark binary cannot be built."""


def random_suffix(n: int = 7) -> str:
    """Return ``n`` random lowercase letters."""
    return "".join(random.choices(string.ascii_lowercase, k=n))  # noqa: S311


def compile_benchmark_binary(
    arch: InstanceArch, package: str = ".", output_dir: str | Path | None = None
) -> Path:
    """Cross-compile the package's test binary for linux on ``arch``.

    Args:
        arch: Architecture of the instance that will run the binary.
        package: Go package to compile, relative to the working directory.
        output_dir: Directory for the binary. Defaults to the system temp dir.

    Returns:
        Path to the compiled binary.

    Raises:
        BuildError: If ``go test -c`` fails or produces no binary.
    """
    directory = Path(output_dir) if output_dir is not None else Path(tempfile.gettempdir())
    binary = directory / f"bench-{random_suffix()}"
    command = ["go", "test", "-c", "-o", str(binary), package]

    logger.info("🔨 Cross-compiling %s for linux/%s...", package, arch.goarch)
    logger.debug("Build command: %s", " ".join(command))
    try:
        result = subprocess.run(
            command,
            check=False,
            capture_output=True,
            text=True,
            env={**os.environ, "GOOS": "linux", "GOARCH": arch.goarch},
        )
    except FileNotFoundError as e:
        msg = "go toolchain not found on PATH"
        raise BuildError(msg) from e

    if result.returncode != 0:
        msg = (
            f"failed to cross build the package:\n"
            f"stdout: {result.stdout}\nstderr: {result.stderr}"
        )
        raise BuildError(msg)

    if not binary.exists():
        msg = f"binary not found at {binary} - command {' '.join(command)} failed"
        raise BuildError(msg)

    logger.info("✅ Built %s", binary)
    return binary


def _git(args: list[str], cwd: str | Path | None) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args], check=False, capture_output=True, text=True, cwd=cwd
    )


def git_commit_id(cwd: str | Path | None = None) -> str:
    """Identify the commit the benchmark is built from.

    Returns:
        The HEAD commit hash, suffixed with ``-dirty`` when the working tree
        has uncommitted changes, or ``"not a git repo"`` outside a work tree.

    Raises:
        BuildError: If git fails inside a work tree.
    """
    try:
        inside = _git(["rev-parse", "--is-inside-work-tree"], cwd)
    except FileNotFoundError:
        return NOT_A_GIT_REPO
    if inside.returncode != 0:
        return NOT_A_GIT_REPO

    head = _git(["rev-parse", "HEAD"], cwd)
    if head.returncode != 0:
        msg = f"git rev-parse HEAD failed: {head.stderr.strip()}"
        raise BuildError(msg)
    commit_id = head.stdout.strip()

    status = _git(["status", "--porcelain"], cwd)
    if status.returncode != 0:
        msg = f"git status failed: {status.stderr.strip()}"
        raise BuildError(msg)
    if status.stdout:
        commit_id += "-dirty"

    return commit_id
