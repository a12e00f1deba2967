"""Session-wide cancellation shared by every running subprocess."""

import logging
import subprocess
import threading
from typing import Optional, Set

from ..exceptions import SessionCancelledError

logger = logging.getLogger(__name__)


def terminate_process(process: subprocess.Popen, grace_sec: float = 5.0) -> None:
    """Terminate a child process, escalating to kill after the grace period."""
    if process.poll() is not None:
        return
    try:
        process.terminate()
        process.wait(timeout=grace_sec)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()
    except ProcessLookupError:
        pass


class CancellationToken:
    """
    Cancellation flag plus the set of live child processes.

    ProcessRunner registers each child it starts; cancel() terminates every
    registered child so no subprocess outlives the session.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._processes: Set[subprocess.Popen] = set()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def event(self) -> threading.Event:
        return self._event

    def register(self, process: subprocess.Popen) -> bool:
        """Track a child process. Returns False if the session is already cancelled."""
        with self._lock:
            if self._event.is_set():
                return False
            self._processes.add(process)
            return True

    def unregister(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.discard(process)

    def cancel(self, reason: str = "user interrupt") -> None:
        """Set the flag and terminate every registered child process."""
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            processes = list(self._processes)

        logger.warning(f"Cancelling session ({reason}); terminating {len(processes)} running process(es)")
        for process in processes:
            terminate_process(process)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SessionCancelledError(self.reason or "cancelled")
