"""
Execution module for the orchestrator.
Handles process execution, output capture, retries and step results.
"""

from .cancellation import CancellationToken
from .output_capture import OutputCapture, CaptureMode, CaptureResult
from .process_runner import ExecutionContext, ProcessResult, ProcessRunner
from .retry import RetryPolicy
from .step_executor import StepExecutor

__all__ = [
    "CancellationToken",
    "OutputCapture",
    "CaptureMode",
    "CaptureResult",
    "ExecutionContext",
    "ProcessResult",
    "ProcessRunner",
    "RetryPolicy",
    "StepExecutor",
]
