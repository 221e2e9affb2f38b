"""Remote Go Benchmark Orchestrator.

Command-line tool that benchmarks a Go package on a short-lived AWS EC2
instance. Usage mirrors ``go test -bench``: the package's test binary is
cross-compiled locally, uploaded to a freshly launched instance and run with
the forwarded flags while its output streams back to the terminal. The
instance is terminated when the benchmark finishes, fails, or the run is
interrupted.

Key Features:
- Instance type selection, with the AMI and GOARCH following its architecture
- Idempotent per-user key pair management
- Verbatim streaming of benchmark output, preceded by a benchstat-style header
- Guaranteed single termination on completion, failure or interrupt signal
"""

from __future__ import annotations

import argparse
import sys
import threading
from typing import TYPE_CHECKING, TextIO, TypeVar

from .aws_api import AWSAPIError, EC2Direct
from .builder import BuildError, compile_benchmark_binary, git_commit_id
from .ec2_instance import EC2Instance
from .logger import logger, set_debug
from .models import BenchFlags, RemoteBenchConfig
from .signals import BenchmarkInterrupted, SignalGuard

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

EXIT_INTERRUPTED = 130
STOP_POLL_SECONDS = 0.5

T = TypeVar("T")


class RemoteBenchmarkOrchestrator:
    """Runs one remote benchmark from local build to instance termination.

    Provisioning up to instance creation happens on the calling thread.
    Readiness checks, upload and execution run on a background thread while
    the calling thread waits for either that work to finish or a teardown
    signal, then terminates the instance exactly once.
    """

    def __init__(
        self,
        config: RemoteBenchConfig,
        flags: BenchFlags,
        package: str = ".",
        client: EC2Direct | None = None,
        guard: SignalGuard | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        """Initialise the orchestrator.

        Args:
            config: Run configuration.
            flags: Benchmark flags forwarded to the remote binary.
            package: Go package to benchmark.
            client: EC2 client; created from ``config.region`` when omitted.
            guard: Signal guard; a fresh one is created when omitted.
            stdout: Stream for benchmark output. Defaults to ``sys.stdout``.
            stderr: Stream for benchmark errors. Defaults to ``sys.stderr``.
        """
        self.config = config
        self.flags = flags
        self.package = package
        self.client = client
        self.guard = guard or SignalGuard()
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr
        self.error: BaseException | None = None

    @property
    def stop(self) -> threading.Event:
        """Event set when remote work finishes or a teardown signal arrives."""
        return self.guard.stop

    def run(self) -> None:
        """Execute the complete remote benchmarking workflow.

        Raises:
            BuildError: If the local build fails.
            AWSAPIError: If an AWS call fails.
            RuntimeError: If SSH, upload or the benchmark itself fails.
            BenchmarkInterrupted: If a teardown signal was received.
        """
        with self.guard:
            self._run()

    def _local_step(self, step: Callable[..., T], *args: object) -> T:
        """Run a local build step, reporting an interrupt rather than its failure.

        Ctrl+C reaches the whole process group, so `git` and `go` die with the
        same signal and their failure is a consequence of the interrupt.

        Raises:
            BenchmarkInterrupted: If a teardown signal arrived during the step.
            BuildError: If the step failed on its own.
        """
        try:
            result = step(*args)
        except BuildError:
            self.guard.raise_if_fired()
            raise
        self.guard.raise_if_fired()
        return result

    def _run(self) -> None:
        commit_id = self._local_step(git_commit_id)

        client = self.client if self.client is not None else EC2Direct(self.config.region)
        user_name = self.config.user_name or client.get_user_name()
        key_name = self.config.key_name_for(user_name)
        client.ensure_key_pair(key_name, self.config.private_key_path(key_name))
        arch = client.get_instance_arch(self.config.instance_type)
        self.guard.raise_if_fired()

        binary = self._local_step(compile_benchmark_binary, arch, self.package)
        instance = EC2Instance(client, self.config, user_name, key_name)
        try:
            instance.create(arch)
            if not self.stop.is_set():
                worker = threading.Thread(
                    target=self._remote_session,
                    args=(instance, binary, commit_id),
                    name="rbench-remote",
                    daemon=True,
                )
                worker.start()
                while not self.stop.wait(STOP_POLL_SECONDS):
                    pass
        finally:
            instance.terminate()
            binary.unlink(missing_ok=True)

        self.guard.raise_if_fired()
        if self.error is not None:
            raise self.error

    def _remote_session(self, instance: EC2Instance, binary: Path, commit_id: str) -> None:
        """Wait for the instance, upload the binary and run the benchmark."""
        try:
            instance.wait_until_ready()
            instance.upload_binary(binary)
            logger.info("🏃 Running benchmark...")
            self._write_header(instance, commit_id)
            instance.run_benchmark(self.flags, stdout=self.stdout, stderr=self.stderr)
        except Exception as e:  # noqa: BLE001
            self.error = e
        finally:
            self.stop.set()

    def _write_header(self, instance: EC2Instance, commit_id: str) -> None:
        """Write the run description in ``key: value`` form ahead of the results."""
        self.stdout.write(
            f"ec2-user: {instance.user_name}\n"
            f"instance IP: {instance.public_ip}\n"
            f"instance type: {self.config.instance_type}\n"
            f"commit ID: {commit_id}\n"
        )
        self.stdout.flush()


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser; flag names follow ``go test``.

    Returns:
        The configured parser.
    """
    parser = argparse.ArgumentParser(
        prog="rbench",
        description="Benchmark a Go package on a short-lived AWS EC2 instance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        epilog="""
Configuration (.env file or environment, all optional):
  RBENCH_REGION, RBENCH_INSTANCE_TYPE, RBENCH_X86_AMI, RBENCH_ARM_AMI,
  RBENCH_SECURITY_GROUP_IDS, RBENCH_USER_NAME, RBENCH_SSH_USER, RBENCH_SSH_PORT,
  RBENCH_KEY_DIR, RBENCH_REMOTE_DIR, RBENCH_RUNNING_TIMEOUT,
  RBENCH_SSH_PROBE_ATTEMPTS, RBENCH_SSH_PROBE_TIMEOUT, RBENCH_SSH_PROBE_INTERVAL
        """,
    )
    defaults = BenchFlags()
    parser.add_argument("package", nargs="?", default=".", help="Go package to benchmark")
    parser.add_argument(
        "-bench",
        default=defaults.bench,
        help="run only those benchmarks matching a regular expression",
    )
    parser.add_argument(
        "-count", type=int, default=defaults.count, help="run each benchmark n times"
    )
    parser.add_argument(
        "-cpu", type=int, default=defaults.cpu, help="number of parallel CPUs to use"
    )
    parser.add_argument(
        "-benchmem", action="store_true", help="print memory allocation statistics"
    )
    parser.add_argument(
        "-run",
        default=defaults.run,
        help="run only those tests and examples matching the regular expression",
    )
    parser.add_argument("-benchtime", help="run enough iterations of each benchmark to take t")
    parser.add_argument("-timeout", help="panic test binary after duration d")
    parser.add_argument("-type", dest="instance_type", help="ec2 instance type")
    parser.add_argument("-region", help="AWS region")
    parser.add_argument("-env-file", dest="env_file", default=".env", help="configuration file")
    parser.add_argument(
        "-v", dest="test_verbose", action="store_true", help="verbose test output (-test.v)"
    )
    parser.add_argument("-debug", action="store_true", help="enable rbench debug logging")
    return parser


def parse_arguments(
    argv: Sequence[str] | None = None,
) -> tuple[argparse.Namespace, BenchFlags]:
    """Parse the command line.

    Returns:
        The parsed namespace and the benchmark flags to forward.
    """
    args = build_parser().parse_args(argv)
    flags = BenchFlags(
        bench=args.bench,
        count=args.count,
        cpu=args.cpu,
        benchmem=args.benchmem,
        run=args.run,
        benchtime=args.benchtime,
        timeout=args.timeout,
        verbose=args.test_verbose,
    )
    return args, flags


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point for remote benchmarking.

    Raises:
        SystemExit: 1 if any step fails, 130 if the run was interrupted.
    """
    args, flags = parse_arguments(argv)
    set_debug(args.debug)

    try:
        config = RemoteBenchConfig.from_dotenv(args.env_file)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise SystemExit(1) from e
    if args.instance_type:
        config.instance_type = args.instance_type
    if args.region:
        config.region = args.region

    orchestrator = RemoteBenchmarkOrchestrator(config, flags, package=args.package)
    try:
        orchestrator.run()
    except BenchmarkInterrupted as e:
        logger.warning("Benchmark %s", e)
        raise SystemExit(EXIT_INTERRUPTED) from e
    except (BuildError, AWSAPIError, RuntimeError) as e:
        # Known failures are reported without traceback spam
        logger.error("error: %s", e)
        raise SystemExit(1) from e
    except Exception as e:
        logger.exception("Benchmark failed with unexpected error")
        raise SystemExit(1) from e

    logger.info("Process finished successfully.")


if __name__ == "__main__":
    main()
