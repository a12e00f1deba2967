"""
Step executor module.
Wraps one named step around ProcessRunner calls and records exactly one
StepResult: passed, failed, skipped or cancelled, plus duration.
"""

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .output_capture import OutputCapture
from .process_runner import ExecutionContext, ProcessResult, ProcessRunner
from ..exceptions import ToolInvocationError
from ..security.secrets import SecretsManager
from ..state import StepResult, StepStatus, utc_now
from ..variables.substitution import VariableSubstitutor

if TYPE_CHECKING:
    from ..pipeline.steps import Step

logger = logging.getLogger(__name__)


class StepExecutor:
    """
    Executes steps for one pipeline.

    A failing step never raises: whatever goes wrong becomes a `failed`
    result with the captured output kept for diagnostics. Whether the
    pipeline continues is the pipeline policy's decision.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        logs_dir: Path,
        context: Optional[ExecutionContext] = None,
        secrets_manager: Optional[SecretsManager] = None,
    ):
        """
        Initialize step executor.

        Args:
            runner: Process runner shared with the session's cancellation token
            logs_dir: Directory receiving one <step>.log per step
            context: Working directory and child environment of the target
            secrets_manager: Manager used to mask credentials in output
        """
        self.runner = runner
        self.logs_dir = logs_dir
        self.context = context or ExecutionContext()
        self.secrets_manager = secrets_manager or SecretsManager()
        self.output_capture = OutputCapture()
        self.variable_substitutor = VariableSubstitutor()

    def execute(self, step: "Step", dry_run: bool = False,
                variables: Optional[Dict[str, Any]] = None) -> StepResult:
        """
        Execute a step.

        Args:
            step: Step to execute
            dry_run: Substitute read-only equivalents for mutating steps
            variables: Substitution variables for ${...} placeholders

        Returns:
            The step's single StepResult
        """
        variables = variables or {}

        if self.runner.cancellation.cancelled:
            return StepResult.cancelled(step.name, self.runner.cancellation.reason or "cancelled")

        if step.handler is not None:
            return self._execute_handler(step, variables)

        command = step.command_for(dry_run)
        if command is None:
            logger.info(f"[{self.context.label}] Skipping '{step.name}' in dry run (no read-only equivalent)")
            return StepResult.skipped(step.name, "dry run: mutating step has no read-only equivalent")

        substituted = dry_run and step.substitutes_in_dry_run()

        try:
            argv = self.variable_substitutor.substitute(list(command), variables)
        except ValueError:
            undefined_vars = sorted(self.variable_substitutor.undefined_vars)
            if substituted and undefined_vars and all(self._is_output_reference(v) for v in undefined_vars):
                # Outputs of resources that were never applied do not exist yet
                reason = f"dry run: {', '.join(undefined_vars)} not available before apply"
                logger.info(f"[{self.context.label}] Skipping '{step.name}': {reason}")
                return StepResult.skipped(step.name, reason)
            return StepResult(
                step_name=step.name,
                status=StepStatus.FAILED,
                started_at=utc_now(),
                exit_code=2,
                dry_run_substituted=substituted,
                error={
                    'type': 'undefined_variables',
                    'message': f"Undefined variables in command: {', '.join(undefined_vars)}",
                    'context': {'undefined_vars': undefined_vars},
                },
            )

        return self._execute_command(step, argv, substituted)

    @staticmethod
    def _is_output_reference(var_path: str) -> bool:
        parts = var_path.split('.')
        return len(parts) > 2 and parts[0] in ('steps', 'targets') and parts[2] == 'outputs'

    def _execute_command(self, step: "Step", argv: List[str], substituted: bool) -> StepResult:
        log_path = self.logs_dir / f"{step.name}.log"
        label = f"{self.context.label}/{step.name}" if self.context.label else step.name
        context = ExecutionContext(cwd=self.context.cwd, env=self.context.env, label=label)
        cancel_event = self.runner.cancellation.event

        logger.info(f"[{label}] Running: {self.secrets_manager.mask_text(' '.join(argv))}")

        started_at = utc_now()
        start_time = time.monotonic()
        attempt = 0
        result: Optional[ProcessResult] = None
        error: Optional[Dict[str, Any]] = None

        while True:
            attempt += 1
            try:
                result = self.runner.run(
                    argv,
                    timeout_sec=step.timeout_sec,
                    context=context,
                    log_path=log_path,
                    masker=self.secrets_manager.mask_text,
                )
            except ToolInvocationError as e:
                # The tool could not even start; retrying will not help
                logger.error(f"[{label}] {e}")
                result = None
                error = e.to_dict()
                break

            if result.cancelled:
                break

            if step.retry.should_retry(result.exit_code, attempt):
                logger.warning(
                    f"[{label}] Attempt {attempt}/{step.retry.max_attempts} failed "
                    f"with exit code {result.exit_code}, retrying"
                )
                if not step.retry.wait(attempt, cancel_event):
                    break
                continue
            break

        duration_sec = time.monotonic() - start_time

        if result is None:
            return StepResult(
                step_name=step.name,
                status=StepStatus.FAILED,
                duration_sec=duration_sec,
                started_at=started_at,
                exit_code=127,
                attempts=attempt,
                dry_run_substituted=substituted,
                error=error,
            )

        capture = self.output_capture.capture(result.stdout, result.stderr, step.output_capture)
        output = self.secrets_manager.mask_text(capture.output)
        outputs = self.secrets_manager.mask_dict(capture.outputs) if capture.outputs else capture.outputs

        if result.cancelled or (not result.ok and self.runner.cancellation.cancelled):
            status = StepStatus.CANCELLED
            error = {
                'type': 'session_cancelled',
                'message': f"Cancelled: {self.runner.cancellation.reason or 'cancelled'}",
                'context': {},
            }
        elif not result.ok:
            status = StepStatus.FAILED
            verb = f"timed out after {step.timeout_sec}s" if result.timed_out else f"exited with code {result.exit_code}"
            error = ToolInvocationError(
                f"Command {verb}",
                command=[self.secrets_manager.mask_text(arg) for arg in argv],
                exit_code=result.exit_code,
                timed_out=result.timed_out,
            ).to_dict()
        elif not capture.ok:
            status = StepStatus.FAILED
            error = capture.error
        else:
            status = StepStatus.PASSED

        log = logger.info if status == StepStatus.PASSED else logger.error
        log(f"[{label}] {status.value} in {duration_sec:.1f}s (exit {result.exit_code}, attempts {attempt})")

        return StepResult(
            step_name=step.name,
            status=status,
            duration_sec=duration_sec,
            captured_output=output,
            started_at=started_at,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            attempts=attempt,
            truncated=capture.truncated,
            dry_run_substituted=substituted,
            outputs=outputs,
            error=error,
        )

    def _execute_handler(self, step: "Step", variables: Dict[str, Any]) -> StepResult:
        """Run an in-process step (no subprocess) through the same result machinery."""
        started_at = utc_now()
        start_time = time.monotonic()
        try:
            outcome = step.handler(variables)
        except Exception as e:
            logger.exception(f"[{self.context.label}] Step '{step.name}' raised")
            return StepResult(
                step_name=step.name,
                status=StepStatus.FAILED,
                duration_sec=time.monotonic() - start_time,
                started_at=started_at,
                exit_code=1,
                attempts=1,
                error={'type': 'execution_error', 'message': str(e), 'context': {}},
            )

        if outcome.skipped:
            return StepResult.skipped(step.name, outcome.output or "nothing to run")

        return StepResult(
            step_name=step.name,
            status=StepStatus.PASSED if outcome.exit_code == 0 else StepStatus.FAILED,
            duration_sec=time.monotonic() - start_time,
            captured_output=outcome.output,
            started_at=started_at,
            exit_code=outcome.exit_code,
            attempts=1,
            outputs=outcome.outputs,
            error=None if outcome.exit_code == 0 else {
                'type': 'execution_error',
                'message': outcome.output or f"Step '{step.name}' exited with code {outcome.exit_code}",
                'context': {'exit_code': outcome.exit_code},
            },
        )
