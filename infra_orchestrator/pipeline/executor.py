"""
Pipeline execution for one deployment target.

State machine: pending -> running -> {completed, aborted, cancelled}, and
pending -> blocked when an upstream target did not complete. A pipeline is
single-use; every step gets exactly one recorded result.
"""

import logging
import time
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..exceptions import SessionCancelledError
from ..exec.step_executor import StepExecutor
from ..state import PipelineResult, PipelineState, StepResult, StepStatus, utc_now
from .steps import Step

logger = logging.getLogger(__name__)


class Policy(str, Enum):
    """Error handling policy of a pipeline."""
    FAIL_FAST = "fail_fast"
    CONTINUE_ON_ERROR = "continue_on_error"


class Pipeline:
    """
    Ordered steps scoped to one target (one cloud backend, one environment).

    Steps run strictly in declaration order. Under fail_fast the first
    failure aborts the pipeline and the remaining steps are recorded as
    skipped; under continue_on_error every step is attempted and the
    pipeline is tagged degraded if any failed.
    """

    def __init__(
        self,
        target_id: str,
        steps: Sequence[Step],
        policy: Policy = Policy.FAIL_FAST,
        dry_run: bool = False,
        depends_on: Iterable[str] = (),
    ):
        if not target_id:
            raise ValueError("Pipeline target_id must not be empty")

        names = [step.name for step in steps]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Pipeline '{target_id}': duplicate step names {duplicates}")

        self.target_id = target_id
        self.steps = tuple(steps)
        self.policy = Policy(policy)
        self.dry_run = dry_run
        self.depends_on = tuple(depends_on)

        self.state = PipelineState.PENDING
        self._results: List[StepResult] = []
        self._outputs: Dict[str, Any] = {}
        self._started_at: Optional[str] = None
        self._duration_sec = 0.0
        self._blocked_by: Optional[List[str]] = None

    @property
    def results(self) -> tuple:
        return tuple(self._results)

    @property
    def degraded(self) -> bool:
        return any(r.status == StepStatus.FAILED for r in self._results)

    def run(self, executor: StepExecutor, variables: Optional[Dict[str, Any]] = None) -> PipelineResult:
        """
        Execute every step once.

        Args:
            executor: Step executor bound to this target's context
            variables: Base substitution variables (project, target, targets)

        Returns:
            Read-only PipelineResult snapshot
        """
        if self.state != PipelineState.PENDING:
            raise RuntimeError(f"Pipeline '{self.target_id}' already ran (state: {self.state.value})")

        self.state = PipelineState.RUNNING
        self._started_at = utc_now()
        start_time = time.monotonic()
        cancellation = executor.runner.cancellation

        variables = dict(variables or {})
        step_vars: Dict[str, Any] = {}
        variables['steps'] = step_vars

        logger.info(
            f"Pipeline '{self.target_id}' starting: {len(self.steps)} steps, "
            f"policy={self.policy.value}, dry_run={self.dry_run}"
        )

        try:
            for step in self.steps:
                cancellation.raise_if_cancelled()

                result = executor.execute(step, dry_run=self.dry_run, variables=variables)
                self._record(result)
                step_vars[step.name] = {
                    'status': result.status.value,
                    'exit_code': result.exit_code,
                    'duration_sec': result.duration_sec,
                    'outputs': result.outputs or {},
                }

                if result.status == StepStatus.CANCELLED:
                    raise SessionCancelledError(cancellation.reason or "cancelled")

                if result.status == StepStatus.FAILED:
                    if self.policy == Policy.FAIL_FAST:
                        logger.error(
                            f"Pipeline '{self.target_id}': step '{step.name}' failed. "
                            f"Aborting (policy=fail_fast)"
                        )
                        self._record_remaining(
                            lambda name: StepResult.skipped(name, f"skipped after '{step.name}' failed")
                        )
                        self.state = PipelineState.ABORTED
                        break

                    logger.warning(
                        f"Pipeline '{self.target_id}': step '{step.name}' failed. "
                        f"Continuing (policy=continue_on_error)"
                    )
            else:
                self.state = PipelineState.COMPLETED

        except SessionCancelledError as e:
            logger.warning(f"Pipeline '{self.target_id}' cancelled: {e.reason}")
            self._record_remaining(lambda name: StepResult.cancelled(name, e.reason))
            self.state = PipelineState.CANCELLED

        self._duration_sec = time.monotonic() - start_time
        logger.info(
            f"Pipeline '{self.target_id}' {self.state.value}"
            f"{' (degraded)' if self.degraded else ''} in {self._duration_sec:.1f}s"
        )
        return self.snapshot()

    def block(self, upstream: List[str]) -> PipelineResult:
        """Never run: an upstream target this pipeline depends on did not complete."""
        if self.state != PipelineState.PENDING:
            raise RuntimeError(f"Pipeline '{self.target_id}' already ran (state: {self.state.value})")

        self.state = PipelineState.BLOCKED
        self._blocked_by = list(upstream)
        self._started_at = utc_now()
        self._record_remaining(
            lambda name: StepResult.skipped(name, f"upstream target(s) did not complete: {', '.join(upstream)}")
        )
        logger.error(f"Pipeline '{self.target_id}' blocked by upstream target(s): {', '.join(upstream)}")
        return self.snapshot()

    def snapshot(self) -> PipelineResult:
        return PipelineResult(
            target_id=self.target_id,
            state=self.state,
            policy=self.policy.value,
            dry_run=self.dry_run,
            results=tuple(self._results),
            degraded=self.degraded,
            duration_sec=self._duration_sec,
            started_at=self._started_at,
            outputs=dict(self._outputs),
            blocked_by=self._blocked_by,
        )

    def _record(self, result: StepResult) -> None:
        self._results.append(result)
        if result.outputs:
            self._outputs.update(result.outputs)

    def _record_remaining(self, make_result) -> None:
        for step in self.steps[len(self._results):]:
            self._results.append(make_result(step.name))
