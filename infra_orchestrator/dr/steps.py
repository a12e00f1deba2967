"""DR test pipeline: fail the primary, fail over, verify, measure."""

from typing import Iterable, List, Optional, Sequence

from ..loader import DRTestConfig
from ..pipeline.executor import Pipeline, Policy
from ..pipeline.steps import HandlerOutcome, Step
from .rto import RTOMeter

DR_TARGET_ID = 'dr-test'
DR_STEP_TIMEOUT_SEC = 900


def _not_configured(action: str):
    def handler(variables):
        return HandlerOutcome(exit_code=0, output=f"no command configured for {action}", skipped=True)
    return handler


def _action_step(name: str, command: Optional[Sequence[str]], mutating: bool,
                 timeout_sec: Optional[float]) -> Step:
    if not command:
        return Step(name=name, handler=_not_configured(name))
    return Step(name=name, command=tuple(command), mutating=mutating,
                timeout_sec=timeout_sec or DR_STEP_TIMEOUT_SEC)


def dr_test_steps(config: DRTestConfig, meter: RTOMeter) -> List[Step]:
    """
    The DR sequence, in strict order.

    Failing the primary and triggering failover change live infrastructure and
    have no read-only equivalent, so a dry run skips them.
    """
    return [
        _action_step('simulate-primary-failure', config.simulate_failure, True, config.timeout_sec),
        _action_step(meter.failover_step, config.trigger_failover, True, config.timeout_sec),
        _action_step(meter.verify_step, config.verify_secondary, False, config.timeout_sec),
        Step(name='measure-rto', handler=meter.measure),
    ]


def dr_test_pipeline(config: Optional[DRTestConfig], meter: RTOMeter, dry_run: bool = False,
                     depends_on: Iterable[str] = ()) -> Pipeline:
    """DR pipeline run after every target pipeline it depends on has completed."""
    return Pipeline(
        target_id=DR_TARGET_ID,
        steps=dr_test_steps(config or DRTestConfig(), meter),
        policy=Policy.FAIL_FAST,
        dry_run=dry_run,
        depends_on=depends_on,
    )
