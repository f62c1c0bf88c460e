"""
cancellation.py - Interrupt handling and the benchmarking spinner

A CancellationToken is shared by the session, the benchmark runner and the
progress indicator. SIGINT/SIGTERM cancel the token; cancelling stops the
spinner and forwards SIGINT to the build currently being measured.
"""

import logging
import signal
import subprocess
import threading
from typing import Any, Callable, Dict, List, Optional

import psutil
from rich.console import Console

from tuner_errors import SessionCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation shared across one tuning session."""

    def __init__(self):
        self._event = threading.Event()
        # Re-entrant: the signal handler may run while the main thread holds it
        self._lock = threading.RLock()
        self._child: Optional[subprocess.Popen] = None
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def add_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def attach(self, process: subprocess.Popen) -> None:
        """Register the measured child so cancel() can forward the interrupt."""
        with self._lock:
            self._child = process
        if self.cancelled:
            self._interrupt_child(process)

    def detach(self) -> None:
        with self._lock:
            self._child = None

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()

        with self._lock:
            callbacks = list(self._callbacks)
            child = self._child

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug(f"Cancellation callback failed: {e}")

        if child is not None:
            self._interrupt_child(child)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise SessionCancelled("Aborted.")

    @staticmethod
    def _interrupt_child(process: subprocess.Popen) -> None:
        """Send SIGINT to the measured process tree (time -> gradlew -> java)."""
        if process.poll() is not None:
            return
        try:
            parent = psutil.Process(process.pid)
            targets = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return

        for proc in targets:
            try:
                logger.debug(f"Interrupting process {proc.pid}")
                proc.send_signal(signal.SIGINT)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass


class ProgressIndicator:
    """
    Spinner shown while measured iterations run.

    Purely cosmetic: it reads no measurement data and is stopped before the
    runner finalizes a candidate's timings.
    """

    def __init__(self, console: Console, enabled: bool = True, message: str = "benchmarking…"):
        self.console = console
        self.enabled = enabled
        self.message = message
        self._status = None
        # Re-entrant: the signal handler may run while the main thread holds it
        self._lock = threading.RLock()

    @property
    def running(self) -> bool:
        return self._status is not None

    def start(self) -> None:
        if not self.enabled:
            return
        with self._lock:
            if self._status is not None:
                return
            self._status = self.console.status(self.message, spinner="dots")
            self._status.start()

    def stop(self) -> None:
        with self._lock:
            status, self._status = self._status, None
        if status is not None:
            status.stop()


def install_signal_handlers(token: CancellationToken) -> Dict[int, Any]:
    """
    Route SIGINT/SIGTERM into the token instead of raising KeyboardInterrupt.

    Returns:
        The handlers that were replaced, for restore_signal_handlers()
    """

    def _handler(signum, frame):
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name} - cancelling tuning session")
        token.cancel()

    previous: Dict[int, Any] = {}
    try:
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.getsignal(signum)
            signal.signal(signum, _handler)
    except (OSError, ValueError):
        # Not on the main thread (e.g., during testing)
        pass
    return previous


def restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for signum, handler in previous.items():
        try:
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        except (OSError, ValueError):
            pass
