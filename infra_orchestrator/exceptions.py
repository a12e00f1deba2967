"""Orchestrator exceptions."""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass


@dataclass
class ValidationError:
    """Single configuration validation error."""
    message: str
    path: str = ""


class OrchestratorError(Exception):
    """Base class for orchestrator errors."""

    error_type = "orchestrator_error"

    def to_dict(self) -> Dict[str, Any]:
        """Error record in the {type, message, context} shape used on results."""
        return {
            "type": self.error_type,
            "message": str(self),
            "context": {},
        }


class ConfigurationError(OrchestratorError):
    """Raised when a project file, target or resource shape is malformed.

    Fatal before any execution starts. Carries every validation error found
    so the CLI can print them all at once.
    """

    error_type = "configuration_error"

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors

        messages = []
        for error in errors:
            if error.path:
                messages.append(f"Configuration error at '{error.path}': {error.message}")
            else:
                messages.append(f"Configuration error: {error.message}")

        super().__init__("\n".join(messages))

    @classmethod
    def single(cls, message: str, path: str = "") -> "ConfigurationError":
        return cls([ValidationError(message=message, path=path)])

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["context"] = {
            "errors": [{"message": e.message, "path": e.path} for e in self.errors]
        }
        return result


class ToolInvocationError(OrchestratorError):
    """A provisioner or configuration-runner subprocess could not run or failed.

    Recorded on the step result; never fatal to the session.
    """

    error_type = "tool_invocation_error"

    def __init__(self, message: str, command: Optional[List[str]] = None,
                 exit_code: Optional[int] = None, timed_out: bool = False):
        self.command = command or []
        self.exit_code = exit_code
        self.timed_out = timed_out
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["type"] = "timeout" if self.timed_out else self.error_type
        result["context"] = {
            "command": self.command,
            "exit_code": self.exit_code,
        }
        return result


class SessionCancelledError(OrchestratorError):
    """Raised inside a pipeline once the session has been cancelled."""

    error_type = "session_cancelled"

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"Session cancelled: {reason}")


class ReportWriteError(OrchestratorError):
    """The session report could not be written to disk."""

    error_type = "report_write_error"

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)
