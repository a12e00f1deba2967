"""
Recovery Time Objective measurement.

The timed mode measures the failover for real: the time from the start of
trigger-failover to the end of verify-secondary. The simulated mode draws a
random 30-60 s value and is labeled `simulated` wherever it is reported.
"""

import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..pipeline.steps import HandlerOutcome

logger = logging.getLogger(__name__)

TIMED = 'timed'
SIMULATED = 'simulated'

SIMULATED_MIN_SEC = 30
SIMULATED_MAX_SEC = 60


@dataclass(frozen=True)
class RTOMeasurement:
    """Measured recovery time against its target."""
    target_rto_minutes: int
    actual_rto_seconds: float
    source: str = TIMED

    @property
    def achieved(self) -> bool:
        return self.actual_rto_seconds <= self.target_rto_minutes * 60

    @property
    def rto_achievement(self) -> str:
        return "achieved" if self.achieved else "failed"

    @property
    def rto_percentage(self) -> float:
        return round(self.actual_rto_seconds / (self.target_rto_minutes * 60) * 100, 2)

    @property
    def assessment(self) -> str:
        if self.achieved:
            return "Excellent - Well within target RTO"
        return "Failed - Exceeded target RTO"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_rto_minutes": self.target_rto_minutes,
            "actual_rto_seconds": round(self.actual_rto_seconds, 3),
            "actual_rto_minutes": round(self.actual_rto_seconds / 60, 2),
            "rto_achievement": self.rto_achievement,
            "rto_percentage": self.rto_percentage,
            "assessment": self.assessment,
            "source": self.source,
        }


def assess_rto(target_rto_minutes: int, actual_rto_seconds: float, source: str = TIMED) -> RTOMeasurement:
    """Compare a measured recovery time against the target."""
    if target_rto_minutes <= 0:
        raise ValueError(f"target_rto_minutes must be positive, got {target_rto_minutes}")
    if actual_rto_seconds < 0:
        raise ValueError(f"actual_rto_seconds must be >= 0, got {actual_rto_seconds}")
    return RTOMeasurement(target_rto_minutes, actual_rto_seconds, source)


class RTOMeter:
    """
    Builds the measure-rto handler for a DR pipeline.

    The handler reads the timings of the failover and verification steps from
    the pipeline's `steps` variables, which the pipeline fills in as each step
    finishes.
    """

    def __init__(self, target_rto_minutes: int, mode: str = TIMED,
                 failover_step: str = 'trigger-failover', verify_step: str = 'verify-secondary',
                 rng: Optional[random.Random] = None):
        if mode not in (TIMED, SIMULATED):
            raise ValueError(f"Unknown RTO mode '{mode}'")
        self.target_rto_minutes = target_rto_minutes
        self.mode = mode
        self.failover_step = failover_step
        self.verify_step = verify_step
        self.rng = rng or random.Random()

    def measure(self, variables: Dict[str, Any]) -> HandlerOutcome:
        if self.mode == SIMULATED:
            actual = float(self.rng.randint(SIMULATED_MIN_SEC, SIMULATED_MAX_SEC))
            return self._outcome(assess_rto(self.target_rto_minutes, actual, SIMULATED))

        steps = variables.get('steps', {})
        failover = steps.get(self.failover_step, {})
        verify = steps.get(self.verify_step, {})
        statuses = (failover.get('status'), verify.get('status'))

        if 'failed' in statuses:
            return HandlerOutcome(
                exit_code=1,
                output=f"RTO not measured: failover or verification failed ({statuses[0]}, {statuses[1]})",
            )
        if statuses != ('passed', 'passed'):
            return HandlerOutcome(
                exit_code=0,
                output="RTO not measured: failover and verification did not both run",
                skipped=True,
            )

        actual = failover.get('duration_sec', 0.0) + verify.get('duration_sec', 0.0)
        return self._outcome(assess_rto(self.target_rto_minutes, actual, TIMED))

    def _outcome(self, measurement: RTOMeasurement) -> HandlerOutcome:
        logger.info(
            f"RTO {measurement.rto_achievement}: {measurement.actual_rto_seconds:.1f}s "
            f"against a {measurement.target_rto_minutes} minute target ({measurement.source})"
        )
        return HandlerOutcome(
            exit_code=0 if measurement.achieved else 1,
            output=measurement.assessment,
            outputs={'rto_measurement': measurement.to_dict()},
        )
