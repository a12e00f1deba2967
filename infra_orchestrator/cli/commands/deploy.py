"""Deploy and destroy commands."""

import logging
from argparse import Namespace

from infra_orchestrator.cost.model import CostModel, summarize_targets
from infra_orchestrator.cost.pricing import PricingTable
from infra_orchestrator.exceptions import ConfigurationError
from infra_orchestrator.pipeline.builders import build_pipeline
from infra_orchestrator.security.secrets import SecretsManager
from infra_orchestrator.session import OrchestrationSession, SessionTarget

from .common import (
    check_prerequisites,
    load_project,
    logs_dir,
    max_duration,
    report_failure,
    reports_dir,
    selected_targets,
    setup_logging,
    target_context,
    target_variables,
    write_report,
)

logger = logging.getLogger(__name__)


def deploy(args: Namespace) -> int:
    """
    Provision (and optionally configure) the selected targets of the project.

    Independent targets deploy in parallel; a target listing `depends_on`
    waits for its upstream targets and sees their outputs.
    """
    secrets_manager = SecretsManager()
    setup_logging(args, secrets_manager)

    project = None
    try:
        project = load_project(args, required=True)
        selected = selected_targets(project, args)
        targets = [
            SessionTarget(
                pipeline=build_pipeline(target, project.project, project.environment, dry_run=args.dry_run),
                context=target_context(target, secrets_manager),
                variables=target_variables(target),
            )
            for target in selected
        ]
        check_prerequisites(targets)
        pricing = PricingTable.load()
        cost_summary = summarize_targets(CostModel(pricing), selected, budget=project.budget)
        session = OrchestrationSession(
            targets=targets,
            logs_root=logs_dir(project),
            project=project.project,
            environment=project.environment,
            command='deploy',
            dry_run=args.dry_run,
            max_duration_sec=max_duration(args, project),
            cost_comparison=cost_summary,
            secrets_manager=secrets_manager,
            echo=args.verbose,
        )
    except ConfigurationError as e:
        return report_failure(e, args, 'deploy', project)

    if args.dry_run:
        logger.info("[DRY RUN] Mutating steps run their read-only equivalents or are skipped")

    result = session.run()
    return write_report(result, args, reports_dir(args, project))


def destroy(args: Namespace) -> int:
    """
    Tear down the selected targets, dependents first.

    With --dry-run each target runs `plan -destroy` instead.
    """
    secrets_manager = SecretsManager()
    setup_logging(args, secrets_manager)

    project = None
    try:
        project = load_project(args, required=True)
        selected = selected_targets(project, args, teardown=True)
        targets = []
        for target in selected:
            dependents = [t.id for t in selected if target.id in t.depends_on]
            targets.append(SessionTarget(
                pipeline=build_pipeline(
                    target, project.project, project.environment,
                    dry_run=args.dry_run, teardown=True, depends_on=dependents,
                ),
                context=target_context(target, secrets_manager),
                variables=target_variables(target),
            ))
        check_prerequisites(targets)
        session = OrchestrationSession(
            targets=targets,
            logs_root=logs_dir(project),
            project=project.project,
            environment=project.environment,
            command='destroy',
            dry_run=args.dry_run,
            max_duration_sec=max_duration(args, project),
            secrets_manager=secrets_manager,
            echo=args.verbose,
        )
    except ConfigurationError as e:
        return report_failure(e, args, 'destroy', project)

    result = session.run()
    return write_report(result, args, reports_dir(args, project))
