"""Result records for steps, pipelines and sessions.

Every record here is created once and never mutated afterwards: a step result
is appended to its pipeline's log, a pipeline result is handed to the session
at the barrier, and the session result is what the report is rendered from.
"""

import random
import string
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, asdict, field


class StepStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class PipelineState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"


class OverallStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_session_id(now: Optional[datetime] = None) -> str:
    """Generate session ID in format: YYYYMMDDTHHMMSSZ-<6char>."""
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime("%Y%m%dT%H%M%SZ")
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{timestamp}-{suffix}"


@dataclass(frozen=True)
class StepResult:
    """Result of a single step execution."""
    step_name: str
    status: StepStatus
    duration_sec: float = 0.0
    captured_output: str = ""
    started_at: Optional[str] = None
    exit_code: Optional[int] = None
    timed_out: bool = False
    attempts: int = 0
    truncated: bool = False
    dry_run_substituted: bool = False
    outputs: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def skipped(cls, step_name: str, reason: str) -> "StepResult":
        return cls(
            step_name=step_name,
            status=StepStatus.SKIPPED,
            started_at=utc_now(),
            error={"type": "skipped", "message": reason, "context": {}},
        )

    @classmethod
    def cancelled(cls, step_name: str, reason: str) -> "StepResult":
        return cls(
            step_name=step_name,
            status=StepStatus.CANCELLED,
            started_at=utc_now(),
            error={"type": "session_cancelled", "message": reason, "context": {}},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, omitting None values."""
        result = {}
        for k, v in asdict(self).items():
            if v is not None:
                result[k] = v
        result["status"] = self.status.value
        result["duration_sec"] = round(self.duration_sec, 3)
        return result


def count_statuses(results: List[StepResult]) -> Dict[str, int]:
    counter = Counter(r.status for r in results)
    return {status.value: counter.get(status, 0) for status in StepStatus}


@dataclass(frozen=True)
class PipelineResult:
    """Read-only snapshot of one executed pipeline."""
    target_id: str
    state: PipelineState
    policy: str
    dry_run: bool
    results: Tuple[StepResult, ...] = ()
    degraded: bool = False
    duration_sec: float = 0.0
    started_at: Optional[str] = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    blocked_by: Optional[List[str]] = None

    @property
    def counts(self) -> Dict[str, int]:
        return count_statuses(list(self.results))

    @property
    def has_failures(self) -> bool:
        return any(r.status == StepStatus.FAILED for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "target_id": self.target_id,
            "state": self.state.value,
            "policy": self.policy,
            "dry_run": self.dry_run,
            "degraded": self.degraded,
            "duration_sec": round(self.duration_sec, 3),
            "started_at": self.started_at,
            "counts": self.counts,
            "outputs": self.outputs,
            "results": [r.to_dict() for r in self.results],
        }
        if self.blocked_by:
            result["blocked_by"] = list(self.blocked_by)
        return result


def compute_overall_status(pipelines: List[PipelineResult]) -> OverallStatus:
    """
    success: no pipeline aborted/cancelled/blocked and no failed result
    partial: something failed, but at least one pipeline ran to completion
    failed:  nothing ran to completion
    """
    if not pipelines:
        return OverallStatus.SUCCESS

    unhealthy = any(p.state != PipelineState.COMPLETED for p in pipelines)
    if not unhealthy and not any(p.has_failures for p in pipelines):
        return OverallStatus.SUCCESS

    if any(p.state == PipelineState.COMPLETED for p in pipelines):
        return OverallStatus.PARTIAL
    return OverallStatus.FAILED


@dataclass(frozen=True)
class SessionResult:
    """Merged result tree of one orchestration session."""
    session_id: str
    timestamp: str
    project: str
    environment: str
    command: str
    dry_run: bool
    test_mode: bool
    pipelines: Tuple[PipelineResult, ...]
    overall_status: OverallStatus
    duration_sec: float = 0.0
    cancelled: bool = False
    replication_config: Optional[Dict[str, Any]] = None
    rto_measurement: Optional[Dict[str, Any]] = None
    cost_comparison: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def summary(self) -> Dict[str, Any]:
        all_results: List[StepResult] = []
        for pipeline in self.pipelines:
            all_results.extend(pipeline.results)
        summary: Dict[str, Any] = count_statuses(all_results)
        summary["total_steps"] = len(all_results)
        summary["total_duration_sec"] = round(self.duration_sec, 3)
        return summary

    def pipeline(self, target_id: str) -> PipelineResult:
        for pipeline in self.pipelines:
            if pipeline.target_id == target_id:
                return pipeline
        raise KeyError(target_id)
