"""Main CLI entry point for the infrastructure orchestrator."""

import argparse
import sys
from typing import Optional

from infra_orchestrator.loader import ENVIRONMENTS
from infra_orchestrator.report.generator import FORMATS

from .commands import cost_compare, deploy, destroy, dr_test


def add_common_options(parser: argparse.ArgumentParser) -> None:
    """Options every command accepts."""
    parser.add_argument(
        '--config',
        type=str,
        help='Path to the project YAML file (default: infra-orchestrate.yaml)'
    )
    parser.add_argument(
        '--project',
        type=str,
        help='Project name (overrides the project file)'
    )
    parser.add_argument(
        '--environment',
        choices=list(ENVIRONMENTS),
        help='Target environment (overrides the project file)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Run read-only equivalents of mutating steps'
    )
    parser.add_argument(
        '--format',
        choices=list(FORMATS),
        default='json',
        help='Report format written next to the JSON report'
    )
    parser.add_argument(
        '--reports-dir',
        type=str,
        help='Override the reports directory'
    )
    parser.add_argument(
        '--max-duration',
        type=float,
        metavar='SECONDS',
        help='Cancel the session after this many seconds'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--quiet',
        action='store_true',
        help='Suppress non-error output'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output, including tool output'
    )
    parser.add_argument(
        '--log-level',
        choices=['debug', 'info', 'warn', 'error'],
        default='info',
        help='Set log level'
    )


def add_target_selection(parser: argparse.ArgumentParser) -> None:
    """Options choosing which targets a run touches."""
    parser.add_argument(
        '--target',
        action='append',
        metavar='ID',
        help='Only operate on this target and the targets it needs (repeatable)'
    )
    parser.add_argument(
        '--skip-target',
        action='append',
        metavar='ID',
        help='Leave this target untouched (repeatable)'
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the orchestrator CLI."""
    parser = argparse.ArgumentParser(
        prog='infra-orchestrate',
        description='Multi-cloud deployment and disaster-recovery orchestrator'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    deploy_parser = subparsers.add_parser('deploy', help='Provision and configure every target')
    add_common_options(deploy_parser)
    add_target_selection(deploy_parser)

    destroy_parser = subparsers.add_parser('destroy', help='Tear down every target')
    add_common_options(destroy_parser)
    add_target_selection(destroy_parser)

    dr_parser = subparsers.add_parser('dr-test', help='Run a disaster-recovery test')
    add_common_options(dr_parser)
    dr_parser.add_argument(
        '--rto',
        type=int,
        help='Recovery time objective in minutes (default: 60)'
    )
    dr_parser.add_argument(
        '--rpo',
        type=int,
        help='Recovery point objective in minutes (default: 15)'
    )
    dr_parser.add_argument(
        '--replication',
        choices=['sync', 'async'],
        help='Replication method (default: async)'
    )
    dr_parser.add_argument(
        '--primary',
        type=str,
        help='Primary target (default: aws)'
    )
    dr_parser.add_argument(
        '--secondary',
        type=str,
        help='Secondary target (default: oci)'
    )
    dr_parser.add_argument(
        '--simulate-rto',
        action='store_true',
        help='Report a simulated 30-60s RTO instead of timing the failover'
    )

    cost_parser = subparsers.add_parser('cost-compare', help='Compare provider costs')
    add_common_options(cost_parser)
    cost_parser.add_argument(
        '--provider-a',
        default='aws',
        help='First provider (default: aws)'
    )
    cost_parser.add_argument(
        '--provider-b',
        default='oci',
        help='Second provider (default: oci)'
    )
    cost_parser.add_argument(
        '--duration',
        type=float,
        default=720,
        metavar='HOURS',
        help='Period to estimate in hours (default: 720)'
    )
    cost_parser.add_argument(
        '--free-tier',
        action='store_true',
        help='Deduct free-tier allowances'
    )
    cost_parser.add_argument(
        '--pricing',
        type=str,
        help='Path to a pricing table YAML file'
    )
    cost_parser.add_argument(
        '--budget-warning',
        type=float,
        default=50.0,
        help='Monthly budget warning threshold (default: 50)'
    )
    cost_parser.add_argument(
        '--budget-critical',
        type=float,
        default=100.0,
        help='Monthly budget critical threshold (default: 100)'
    )

    return parser


COMMANDS = {
    'deploy': deploy,
    'destroy': destroy,
    'dr-test': dr_test,
    'cost-compare': cost_compare,
}


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    return COMMANDS[parsed_args.command](parsed_args)


if __name__ == '__main__':
    sys.exit(main())
