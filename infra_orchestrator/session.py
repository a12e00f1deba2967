"""
Orchestration session: runs every pipeline of one command invocation.

Pipelines are grouped into dependency stages. Each stage runs its pipelines
concurrently, one thread-pool task per pipeline, and their results are merged
only after the stage barrier. A wall-clock ceiling or a user interrupt cancels
the session: running subprocesses are terminated and every step that did not
finish is recorded as cancelled.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .exceptions import ConfigurationError, ValidationError
from .exec.cancellation import CancellationToken
from .exec.process_runner import ExecutionContext, ProcessRunner
from .exec.step_executor import StepExecutor
from .pipeline.executor import Pipeline
from .security.secrets import SecretsManager
from .state import (
    PipelineResult,
    PipelineState,
    SessionResult,
    compute_overall_status,
    generate_session_id,
)
from .variables.substitution import VariableSubstitutor

logger = logging.getLogger(__name__)


@dataclass
class SessionTarget:
    """A pipeline plus the context its subprocesses run in."""
    pipeline: Pipeline
    context: ExecutionContext = field(default_factory=ExecutionContext)
    variables: Dict[str, Any] = field(default_factory=dict)


def dependency_stages(targets: Sequence[SessionTarget]) -> List[List[SessionTarget]]:
    """
    Group targets into stages: every target runs after all of its dependencies.

    Raises:
        ConfigurationError: On duplicate ids, unknown dependencies or cycles
    """
    errors: List[ValidationError] = []
    by_id: Dict[str, SessionTarget] = {}
    for target in targets:
        target_id = target.pipeline.target_id
        if target_id in by_id:
            errors.append(ValidationError(f"Duplicate target id '{target_id}'", 'targets'))
        by_id[target_id] = target

    for target in targets:
        for dependency in target.pipeline.depends_on:
            if dependency not in by_id:
                errors.append(ValidationError(
                    f"Unknown dependency '{dependency}'", f"targets.{target.pipeline.target_id}.depends_on"))
    if errors:
        raise ConfigurationError(errors)

    stages: List[List[SessionTarget]] = []
    placed: set = set()
    remaining = list(targets)
    while remaining:
        ready = [t for t in remaining if all(d in placed for d in t.pipeline.depends_on)]
        if not ready:
            cycle = sorted(t.pipeline.target_id for t in remaining)
            raise ConfigurationError.single(f"Dependency cycle between targets: {cycle}", 'targets')
        stages.append(ready)
        placed.update(t.pipeline.target_id for t in ready)
        remaining = [t for t in remaining if t.pipeline.target_id not in placed]
    return stages


class OrchestrationSession:
    """
    One run of the orchestrator.

    The session owns the cancellation token shared by every subprocess and is
    the only writer of the merged result; pipelines never see each other's
    state except through the upstream outputs handed to them at a barrier.
    """

    def __init__(
        self,
        targets: Sequence[SessionTarget],
        logs_root: Path,
        project: str = "",
        environment: str = "",
        command: str = "deploy",
        dry_run: bool = False,
        test_mode: bool = False,
        max_duration_sec: Optional[float] = None,
        replication_config: Optional[Dict[str, Any]] = None,
        cost_comparison: Optional[Dict[str, Any]] = None,
        secrets_manager: Optional[SecretsManager] = None,
        echo: bool = False,
        max_workers: Optional[int] = None,
        session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ):
        now = now or datetime.now(timezone.utc)
        self.targets = list(targets)
        # Validate the graph before anything runs
        self.stages = dependency_stages(self.targets)

        self.session_id = session_id or generate_session_id(now)
        self.timestamp = now.isoformat()
        self.logs_dir = logs_root / self.session_id
        self.project = project
        self.environment = environment
        self.command = command
        self.dry_run = dry_run
        self.test_mode = test_mode
        self.max_duration_sec = max_duration_sec
        self.replication_config = replication_config
        self.cost_comparison = cost_comparison
        self.secrets_manager = secrets_manager or SecretsManager()
        self.echo = echo
        self.max_workers = max_workers
        self.cancellation = CancellationToken()
        self._substitutor = VariableSubstitutor()
        self._ran = False

    def run(self) -> SessionResult:
        """Run every stage and merge the results. Pipeline failures never raise out of here."""
        if self._ran:
            raise RuntimeError(f"Session {self.session_id} already ran")
        self._ran = True

        logger.info(
            f"Session {self.session_id}: {self.command} {self.project}/{self.environment}, "
            f"{len(self.targets)} pipeline(s) in {len(self.stages)} stage(s), dry_run={self.dry_run}"
        )

        start_time = time.monotonic()
        deadline = start_time + self.max_duration_sec if self.max_duration_sec else None
        results: Dict[str, PipelineResult] = {}

        for index, stage in enumerate(self.stages, 1):
            logger.debug(f"Stage {index}: {[t.pipeline.target_id for t in stage]}")
            stage_results = self._run_stage(stage, results, deadline)
            # Barrier: results become visible to later stages only here
            results.update(stage_results)

        duration_sec = time.monotonic() - start_time
        ordered = tuple(results[t.pipeline.target_id] for t in self.targets)
        overall_status = compute_overall_status(list(ordered))

        logger.info(
            f"Session {self.session_id} finished: {overall_status.value} in {duration_sec:.1f}s"
            f"{' (cancelled: ' + self.cancellation.reason + ')' if self.cancellation.cancelled else ''}"
        )

        return SessionResult(
            session_id=self.session_id,
            timestamp=self.timestamp,
            project=self.project,
            environment=self.environment,
            command=self.command,
            dry_run=self.dry_run,
            test_mode=self.test_mode,
            pipelines=ordered,
            overall_status=overall_status,
            duration_sec=duration_sec,
            cancelled=self.cancellation.cancelled,
            replication_config=self.replication_config,
            rto_measurement=self._rto_measurement(ordered),
            cost_comparison=self.cost_comparison,
        )

    def _run_stage(self, stage: List[SessionTarget], upstream: Dict[str, PipelineResult],
                   deadline: Optional[float]) -> Dict[str, PipelineResult]:
        stage_results: Dict[str, PipelineResult] = {}
        runnable = []
        for target in stage:
            pipeline = target.pipeline
            incomplete = [d for d in pipeline.depends_on if upstream[d].state != PipelineState.COMPLETED]
            if incomplete and not self.cancellation.cancelled:
                stage_results[pipeline.target_id] = pipeline.block(incomplete)
            else:
                runnable.append(target)

        if not runnable:
            return stage_results

        workers = self.max_workers or len(runnable)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"session-{self.session_id}") as pool:
            futures = {
                pool.submit(self._run_pipeline, target, upstream): target.pipeline.target_id
                for target in runnable
            }
            try:
                while True:
                    timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
                    _, pending = wait(futures, timeout=timeout)
                    if not pending:
                        break
                    if deadline is not None and time.monotonic() >= deadline:
                        self.cancellation.cancel(f"wall-clock ceiling of {self.max_duration_sec}s exceeded")
                        deadline = None
            except KeyboardInterrupt:
                self.cancellation.cancel("user interrupt")
                wait(futures)

            for future, target_id in futures.items():
                stage_results[target_id] = future.result()

        return stage_results

    def _run_pipeline(self, target: SessionTarget, upstream: Dict[str, PipelineResult]) -> PipelineResult:
        pipeline = target.pipeline
        runner = ProcessRunner(cancellation=self.cancellation, echo=self.echo)
        executor = StepExecutor(
            runner=runner,
            logs_dir=self.logs_dir / pipeline.target_id,
            context=target.context,
            secrets_manager=self.secrets_manager,
        )
        variables = self._substitutor.build_variables(
            project={
                'name': self.project,
                'environment': self.environment,
                'session_id': self.session_id,
            },
            target=dict(target.variables, id=pipeline.target_id),
            targets={
                target_id: {'outputs': result.outputs, 'state': result.state.value}
                for target_id, result in upstream.items()
                if target_id in pipeline.depends_on
            },
        )
        return pipeline.run(executor, variables)

    @staticmethod
    def _rto_measurement(pipelines: Sequence[PipelineResult]) -> Optional[Dict[str, Any]]:
        for pipeline in pipelines:
            measurement = pipeline.outputs.get('rto_measurement')
            if measurement is not None:
                return measurement
        return None
