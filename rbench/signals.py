"""Signal handling that turns OS interrupts into instance teardown."""

from __future__ import annotations

import signal
import threading
from typing import TYPE_CHECKING, Any

from .logger import logger

if TYPE_CHECKING:
    from types import FrameType

TEARDOWN_SIGNALS: tuple[signal.Signals, ...] = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT")
    if hasattr(signal, name)
)


class BenchmarkInterrupted(Exception):  # noqa: N818
    """Raised by the orchestrator once a teardown signal has been received."""

    def __init__(self, signum: int) -> None:
        """Record which signal interrupted the run."""
        super().__init__(f"interrupted by {signal.Signals(signum).name}")
        self.signum = signum


class SignalGuard:
    """Routes teardown signals into a stop event.

    The handler never raises: it records the first signal and sets ``stop``,
    leaving the main thread to notice and run teardown at a point of its own
    choosing. Repeated signals are logged and otherwise ignored.
    """

    def __init__(
        self,
        stop: threading.Event | None = None,
        signals: tuple[signal.Signals, ...] = TEARDOWN_SIGNALS,
    ) -> None:
        """Initialise the guard for ``signals``."""
        self.stop = stop or threading.Event()
        self.signals = signals
        self.signum: int | None = None
        self._previous: dict[signal.Signals, Any] = {}

    @property
    def fired(self) -> bool:
        """Whether a teardown signal has been received."""
        return self.signum is not None

    def install(self) -> None:
        """Install the handlers, remembering the previous ones."""
        for sig in self.signals:
            self._previous[sig] = signal.signal(sig, self.handle)

    def restore(self) -> None:
        """Reinstate the handlers that were active before ``install()``."""
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()

    def handle(self, signum: int, _frame: FrameType | None = None) -> None:
        """Record the signal and set the stop event."""
        name = signal.Signals(signum).name
        if self.fired:
            logger.warning("Received %s, already shutting down", name)
            return
        self.signum = signum
        logger.warning("⏹️ Received %s, cleaning up...", name)
        self.stop.set()

    def raise_if_fired(self) -> None:
        """Raise ``BenchmarkInterrupted`` if a teardown signal has been received.

        Raises:
            BenchmarkInterrupted: If a signal was received.
        """
        if self.signum is not None:
            raise BenchmarkInterrupted(self.signum)

    def __enter__(self) -> SignalGuard:
        self.install()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.restore()
