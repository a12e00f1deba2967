"""Cost comparison command."""

import logging
from argparse import Namespace
from pathlib import Path
from typing import Optional

from infra_orchestrator.cost.model import CostModel, ResourceShape
from infra_orchestrator.cost.pricing import PricingTable
from infra_orchestrator.exceptions import ConfigurationError
from infra_orchestrator.loader import ProjectConfig
from infra_orchestrator.security.secrets import SecretsManager
from infra_orchestrator.state import OverallStatus, SessionResult, generate_session_id, utc_now

from .common import (
    environment_name,
    load_project,
    project_name,
    report_failure,
    reports_dir,
    setup_logging,
    write_report,
)

logger = logging.getLogger(__name__)


def shape_for(model: CostModel, provider: str, project: Optional[ProjectConfig]) -> ResourceShape:
    """The first project target on this provider that declares resources, else the table default."""
    if project is not None:
        for target in project.targets:
            if target.provider == provider and target.resources:
                return ResourceShape.from_dict(target.resources, f"targets.{target.id}.resources")
    return model.default_shape(provider)


def cost_compare(args: Namespace) -> int:
    """Estimate both providers and compare them; no subprocess is run."""
    setup_logging(args, SecretsManager())

    project = None
    try:
        project = load_project(args, required=False)
        pricing = PricingTable.load(Path(args.pricing) if args.pricing else None)
        model = CostModel(pricing)

        estimates = [
            model.estimate(
                provider,
                shape_for(model, provider, project),
                duration_hours=args.duration,
                include_free_tier=args.free_tier,
            )
            for provider in (args.provider_a, args.provider_b)
        ]

        budget = project.budget if project and project.budget else {
            'warning': args.budget_warning,
            'critical': args.budget_critical,
        }
        comparison = model.compare(estimates[0], estimates[1], budget=budget)
    except ConfigurationError as e:
        return report_failure(e, args, 'cost-compare', project)

    result = SessionResult(
        session_id=generate_session_id(),
        timestamp=utc_now(),
        project=project_name(args, project),
        environment=environment_name(args, project),
        command='cost-compare',
        dry_run=args.dry_run,
        test_mode=False,
        pipelines=(),
        overall_status=OverallStatus.SUCCESS,
        cost_comparison=comparison.to_dict(),
    )
    return write_report(result, args, reports_dir(args, project))
