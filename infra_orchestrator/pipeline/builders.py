"""
Step builders for the provisioner and the configuration runner.

A target without explicit `steps` gets the default provisioning set:
init, plan, apply, outputs and, with a `configuration` block, configure.
"""

import logging
from typing import Any, Dict, List, Optional

from ..exec.output_capture import CaptureMode
from ..exec.retry import RetryPolicy
from ..loader import TargetConfig
from .executor import Pipeline, Policy
from .steps import Step

logger = logging.getLogger(__name__)

PROVISIONER = 'terraform'
CONFIGURATION_RUNNER = 'ansible-playbook'
PLAN_FILE = 'tfplan'

INIT_TIMEOUT_SEC = 300
PLAN_TIMEOUT_SEC = 600
APPLY_TIMEOUT_SEC = 1800
OUTPUT_TIMEOUT_SEC = 60
CONFIGURE_TIMEOUT_SEC = 1800


def provisioner_vars(target: TargetConfig, project: str, environment: str) -> List[str]:
    """`-var=` arguments shared by plan, apply and destroy."""
    args = [
        f"-var=project_name={project}",
        f"-var=environment={environment}",
    ]
    if target.region:
        args.append(f"-var={target.provider}_region={target.region}")
    for key, value in sorted(target.variables.items()):
        args.append(f"-var={key}={value}")
    return args


def provisioner_steps(target: TargetConfig, project: str, environment: str,
                      binary: str = PROVISIONER) -> List[Step]:
    """Default provisioning steps for one target."""
    var_args = provisioner_vars(target, project, environment)

    steps = [
        Step(
            name='init',
            command=[binary, 'init', '-input=false', '-no-color'],
            timeout_sec=INIT_TIMEOUT_SEC,
            retry=RetryPolicy.for_provisioner_init(),
        ),
        Step(
            name='plan',
            command=[binary, 'plan', '-input=false', '-no-color', *var_args, f'-out={PLAN_FILE}'],
            timeout_sec=PLAN_TIMEOUT_SEC,
        ),
        Step(
            name='apply',
            command=[binary, 'apply', '-input=false', '-no-color', '-auto-approve', PLAN_FILE],
            mutating=True,
            # The plan step already produced the plan; show it instead of applying
            read_only_command=[binary, 'show', '-no-color', PLAN_FILE],
            timeout_sec=APPLY_TIMEOUT_SEC,
        ),
        Step(
            name='outputs',
            command=[binary, 'output', '-json'],
            timeout_sec=OUTPUT_TIMEOUT_SEC,
            output_capture=CaptureMode.JSON,
        ),
    ]

    if target.configuration is not None:
        steps.append(configure_step(target, project, environment))

    return steps


def configure_step(target: TargetConfig, project: str, environment: str,
                   binary: str = CONFIGURATION_RUNNER) -> Step:
    """
    Configuration-runner step against the hosts the provisioner reported.

    The inventory is inline (`-i host1,host2,`); the hosts come from the
    `outputs` step of the same pipeline.
    """
    stage = target.configuration
    command = [binary, '-i', f"${{steps.outputs.outputs.{stage.hosts_output}}},"]
    if stage.user:
        command += ['-u', stage.user]
    if stage.private_key:
        command += ['--private-key', stage.private_key]

    extra_vars = {'project_name': project, 'environment': environment}
    extra_vars.update(stage.extra_vars)
    for key, value in sorted(extra_vars.items()):
        command += ['-e', f"{key}={value}"]
    command.append(stage.playbook)

    return Step(
        name='configure',
        command=command,
        mutating=True,
        read_only_command=command[:-1] + ['--check', stage.playbook],
        timeout_sec=CONFIGURE_TIMEOUT_SEC,
    )


def destroy_steps(target: TargetConfig, project: str, environment: str,
                  binary: str = PROVISIONER) -> List[Step]:
    """Teardown steps: init, then destroy (dry run: `plan -destroy`)."""
    var_args = provisioner_vars(target, project, environment)
    return [
        Step(
            name='init',
            command=[binary, 'init', '-input=false', '-no-color'],
            timeout_sec=INIT_TIMEOUT_SEC,
            retry=RetryPolicy.for_provisioner_init(),
        ),
        Step(
            name='destroy',
            command=[binary, 'destroy', '-input=false', '-no-color', '-auto-approve', *var_args],
            mutating=True,
            read_only_command=[binary, 'plan', '-destroy', '-input=false', '-no-color', *var_args],
            timeout_sec=APPLY_TIMEOUT_SEC,
        ),
    ]


def step_from_config(raw: Dict[str, Any]) -> Step:
    """Build a Step from an explicit (already validated) project-file step."""
    return Step(
        name=raw['name'],
        command=raw['command'],
        mutating=bool(raw.get('mutating', False)),
        read_only_command=raw.get('read_only_command'),
        timeout_sec=raw.get('timeout_sec'),
        retry=RetryPolicy.from_config(raw.get('retries')),
        output_capture=CaptureMode(raw.get('output_capture', 'text')),
    )


def build_pipeline(target: TargetConfig, project: str, environment: str,
                   dry_run: bool = False, teardown: bool = False,
                   policy: Optional[str] = None,
                   depends_on: Optional[List[str]] = None) -> Pipeline:
    """
    Build the pipeline of one target.

    Explicit `steps` replace the default set; `teardown` builds the destroy
    set instead (explicit steps are not used for teardown). `depends_on`
    overrides the target's own dependencies, which teardown reverses.
    """
    if teardown:
        steps = destroy_steps(target, project, environment)
    elif target.steps:
        steps = [step_from_config(raw) for raw in target.steps]
    else:
        steps = provisioner_steps(target, project, environment)

    logger.debug(f"Built {len(steps)} steps for target '{target.id}': {[s.name for s in steps]}")

    return Pipeline(
        target_id=target.id,
        steps=steps,
        policy=Policy(policy or target.policy),
        dry_run=dry_run,
        depends_on=target.depends_on if depends_on is None else depends_on,
    )
