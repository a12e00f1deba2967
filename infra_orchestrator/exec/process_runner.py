"""
Process runner for provisioner and configuration-runner invocations.

Runs one external command with a timeout, streams its output line by line to
a log sink as it arrives, and reports exit status and duration. A non-zero
exit is a normal result, not an exception.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from queue import Queue, Empty
from typing import Callable, Dict, List, Optional

from .cancellation import CancellationToken, terminate_process
from ..exceptions import ToolInvocationError

logger = logging.getLogger(__name__)

# Conventional exit code for a command killed by timeout(1)
TIMEOUT_EXIT_CODE = 124
CANCELLED_EXIT_CODE = 130


@dataclass(frozen=True)
class ExecutionContext:
    """Everything a child process needs, passed explicitly instead of via os.environ."""
    cwd: Optional[Path] = None
    env: Dict[str, str] = field(default_factory=dict)
    label: str = ""


@dataclass
class ProcessResult:
    """Outcome of one subprocess invocation."""
    exit_code: int
    stdout: str
    stderr: str
    duration_sec: float
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled

    @property
    def combined_output(self) -> str:
        if self.stderr:
            return self.stdout + self.stderr
        return self.stdout


def _stream_output(pipe, stream_name: str, queue: Queue) -> None:
    """Reader thread: push each line onto the queue until EOF."""
    try:
        for line in iter(pipe.readline, ''):
            queue.put((stream_name, line))
    finally:
        pipe.close()


class ProcessRunner:
    """
    Executes external commands with timeout, streaming and cancellation.

    The calling thread blocks until the process exits, times out or is
    cancelled; this is the only suspension point of a pipeline.
    """

    POLL_INTERVAL_SEC = 0.1
    TERMINATE_GRACE_SEC = 5.0

    def __init__(self, cancellation: Optional[CancellationToken] = None, echo: bool = False):
        """
        Initialize process runner.

        Args:
            cancellation: Session cancellation token (a private one if omitted)
            echo: Also stream output lines to the console logger
        """
        self.cancellation = cancellation or CancellationToken()
        self.echo = echo

    def run(
        self,
        command: List[str],
        timeout_sec: Optional[float] = None,
        context: Optional[ExecutionContext] = None,
        log_path: Optional[Path] = None,
        masker: Optional[Callable[[str], str]] = None,
    ) -> ProcessResult:
        """
        Run a command to completion.

        Args:
            command: argv list (no shell)
            timeout_sec: Kill the process after this many seconds
            context: Working directory, child environment and log label
            log_path: File that receives every output line as it arrives
            masker: Applied to every line before it reaches a log sink

        Returns:
            ProcessResult; never raises for a non-zero exit

        Raises:
            ToolInvocationError: If the command cannot be started at all
        """
        context = context or ExecutionContext()
        mask = masker or (lambda text: text)

        if self.cancellation.cancelled:
            return ProcessResult(
                exit_code=CANCELLED_EXIT_CODE, stdout="", stderr="",
                duration_sec=0.0, cancelled=True,
            )

        log_file = None
        if log_path is not None:
            try:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                log_file = open(log_path, 'a', encoding='utf-8')
            except OSError as e:
                raise ToolInvocationError(f"Cannot open step log {log_path}: {e}", command=list(command))

        stdout_lines: List[str] = []
        stderr_lines: List[str] = []
        timed_out = False
        start_time = time.monotonic()

        try:
            if log_file:
                log_file.write(f"$ {mask(' '.join(command))}\n")
                log_file.flush()

            try:
                process = subprocess.Popen(
                    command,
                    cwd=str(context.cwd) if context.cwd else None,
                    env=context.env or None,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    errors='replace',
                    bufsize=1,
                )
            except OSError as e:
                raise ToolInvocationError(
                    f"Failed to start '{command[0] if command else ''}': {e}",
                    command=command,
                ) from e

            if not self.cancellation.register(process):
                terminate_process(process, self.TERMINATE_GRACE_SEC)

            queue: Queue = Queue()
            readers = [
                threading.Thread(target=_stream_output, args=(process.stdout, 'stdout', queue), daemon=True),
                threading.Thread(target=_stream_output, args=(process.stderr, 'stderr', queue), daemon=True),
            ]
            for reader in readers:
                reader.start()

            deadline = start_time + timeout_sec if timeout_sec else None

            try:
                while process.poll() is None:
                    self._drain(queue, stdout_lines, stderr_lines, log_file, context.label, mask, block=True)
                    if deadline is not None and time.monotonic() >= deadline:
                        timed_out = True
                        logger.warning(f"[{context.label}] timed out after {timeout_sec}s, terminating")
                        terminate_process(process, self.TERMINATE_GRACE_SEC)
                        break
                    if self.cancellation.cancelled:
                        terminate_process(process, self.TERMINATE_GRACE_SEC)
                        break
            finally:
                # Always reap the child, whatever happened in the loop
                terminate_process(process, self.TERMINATE_GRACE_SEC)
                self.cancellation.unregister(process)
                for reader in readers:
                    reader.join(timeout=2)
                self._drain(queue, stdout_lines, stderr_lines, log_file, context.label, mask, block=False)

            exit_code = process.returncode
        finally:
            if log_file:
                log_file.close()

        duration_sec = time.monotonic() - start_time
        cancelled = self.cancellation.cancelled and not timed_out and exit_code != 0

        if timed_out:
            exit_code = TIMEOUT_EXIT_CODE
        elif cancelled:
            exit_code = CANCELLED_EXIT_CODE

        return ProcessResult(
            exit_code=exit_code,
            stdout=''.join(stdout_lines),
            stderr=''.join(stderr_lines),
            duration_sec=duration_sec,
            timed_out=timed_out,
            cancelled=cancelled,
        )

    def _drain(self, queue: Queue, stdout_lines: List[str], stderr_lines: List[str],
               log_file, label: str, mask: Callable[[str], str], block: bool) -> None:
        """Move queued lines into the buffers and the log sinks."""
        while True:
            try:
                if block:
                    stream_name, line = queue.get(timeout=self.POLL_INTERVAL_SEC)
                    block = False
                else:
                    stream_name, line = queue.get_nowait()
            except Empty:
                return

            if stream_name == 'stdout':
                stdout_lines.append(line)
            else:
                stderr_lines.append(line)

            if log_file:
                log_file.write(mask(line))
                log_file.flush()
            if self.echo:
                logger.info(f"[{label}] {mask(line.rstrip())}")
