"""Step definitions: one named unit of work inside a pipeline."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from ..exec.output_capture import CaptureMode
from ..exec.retry import RetryPolicy


@dataclass(frozen=True)
class HandlerOutcome:
    """What an in-process step handler reports back."""
    exit_code: int
    output: str = ""
    outputs: Optional[Dict[str, Any]] = None
    skipped: bool = False


# An in-process step receives the pipeline's substitution variables
StepHandler = Callable[[Dict[str, Any]], HandlerOutcome]


@dataclass(frozen=True)
class Step:
    """
    One unit of work, e.g. "initialize provisioner" or "apply configuration".

    `mutating` marks apply-type actions; in a dry-run pipeline they are
    replaced by `read_only_command` (e.g. `plan` for `apply`) or skipped when
    no read-only equivalent exists.
    """
    name: str
    command: Tuple[str, ...] = ()
    mutating: bool = False
    read_only_command: Optional[Tuple[str, ...]] = None
    timeout_sec: Optional[float] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy.none)
    output_capture: CaptureMode = CaptureMode.TEXT
    handler: Optional[StepHandler] = field(default=None, compare=False)

    def __post_init__(self):
        if not self.name or not isinstance(self.name, str):
            raise ValueError("Step name must be a non-empty string")
        if bool(self.command) == bool(self.handler):
            raise ValueError(f"Step '{self.name}' needs exactly one of command or handler")
        if self.read_only_command is not None and not self.read_only_command:
            raise ValueError(f"Step '{self.name}': read_only_command must not be empty")
        if self.timeout_sec is not None and self.timeout_sec <= 0:
            raise ValueError(f"Step '{self.name}': timeout_sec must be positive")
        # Accept lists from callers but store tuples
        object.__setattr__(self, 'command', tuple(self.command))
        if self.read_only_command is not None:
            object.__setattr__(self, 'read_only_command', tuple(self.read_only_command))

    def command_for(self, dry_run: bool) -> Optional[Tuple[str, ...]]:
        """
        Command to run in the given mode.

        Returns None when the step must not run at all (mutating step in a
        dry run without a read-only equivalent).
        """
        if not dry_run or not self.mutating:
            return self.command
        return self.read_only_command

    def substitutes_in_dry_run(self) -> bool:
        return self.mutating and self.read_only_command is not None
