"""Helpers shared by the CLI commands."""

import logging
import os
import shutil
from argparse import Namespace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from infra_orchestrator.exceptions import ConfigurationError, OrchestratorError, ReportWriteError, ValidationError
from infra_orchestrator.exec.process_runner import ExecutionContext
from infra_orchestrator.loader import ProjectConfig, ProjectLoader, TargetConfig
from infra_orchestrator.report.writer import ReportWriter
from infra_orchestrator.security.secrets import SecretsManager, SecretsMaskingFilter
from infra_orchestrator.session import SessionTarget
from infra_orchestrator.state import OverallStatus, SessionResult, generate_session_id, utc_now

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = 'infra-orchestrate.yaml'
DEFAULT_PROJECT = 'infra-demo'
DEFAULT_ENVIRONMENT = 'dev'

EXIT_CODES = {
    OverallStatus.SUCCESS: 0,
    OverallStatus.FAILED: 1,
    OverallStatus.PARTIAL: 2,
}


def setup_logging(args: Namespace, secrets_manager: SecretsManager) -> None:
    """Configure root logging once and mask credentials in every record."""
    log_level = getattr(logging, args.log_level.upper())
    if args.debug:
        log_level = logging.DEBUG
    elif args.quiet:
        log_level = logging.ERROR
    elif args.verbose:
        log_level = logging.DEBUG

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in root.handlers:
        if not any(isinstance(f, SecretsMaskingFilter) for f in handler.filters):
            handler.addFilter(SecretsMaskingFilter(secrets_manager))


def load_project(args: Namespace, required: bool = True) -> Optional[ProjectConfig]:
    """
    Load the project file named by --config.

    Without --config the default file is used when present; when it is
    absent and the command can run without one, None is returned.
    """
    config_path = Path(args.config) if args.config else Path(DEFAULT_CONFIG)
    if not config_path.exists():
        if required or args.config:
            raise ConfigurationError.single(f"Project file not found: {config_path}", 'config')
        logger.info(f"No project file at {config_path}; using defaults")
        return None

    logger.info(f"Loading project: {config_path}")
    loader = ProjectLoader(config_path.resolve().parent)
    return loader.load(config_path, environment=args.environment, project=args.project)


def project_name(args: Namespace, project: Optional[ProjectConfig]) -> str:
    return project.project if project else (args.project or DEFAULT_PROJECT)


def environment_name(args: Namespace, project: Optional[ProjectConfig]) -> str:
    return project.environment if project else (args.environment or DEFAULT_ENVIRONMENT)


def reports_dir(args: Namespace, project: Optional[ProjectConfig]) -> Path:
    if args.reports_dir:
        return Path(args.reports_dir)
    return project.reports_dir if project else Path('reports')


def logs_dir(project: Optional[ProjectConfig]) -> Path:
    return project.logs_dir if project else Path('logs')


def max_duration(args: Namespace, project: Optional[ProjectConfig]) -> Optional[float]:
    if args.max_duration:
        return args.max_duration
    return project.max_duration_sec if project else None


def report_formats(args: Namespace) -> List[str]:
    return ['json'] if args.format == 'json' else ['json', args.format]


def target_context(target: TargetConfig, secrets_manager: SecretsManager) -> ExecutionContext:
    """
    Child-process context of one target.

    Raises:
        ConfigurationError: If a declared credential is missing from the environment
    """
    secrets = secrets_manager.resolve_secrets(target.credentials, target.child_env())
    if secrets.missing_secrets:
        raise ConfigurationError([
            ValidationError(f"Credential '{name}' is not set in the environment", f"targets.{target.id}.credentials")
            for name in secrets.missing_secrets
        ])
    return ExecutionContext(cwd=target.workdir, env=secrets.child_env, label=target.id)


def target_variables(target: TargetConfig) -> Dict[str, Any]:
    """The `${target.*}` namespace of one target."""
    return {
        'provider': target.provider,
        'region': target.region or '',
        'workdir': str(target.workdir),
        'vars': dict(target.variables),
    }


def select_targets(project: ProjectConfig, ids: Iterable[str], teardown: bool = False) -> List[TargetConfig]:
    """
    The named targets plus everything they need, in project order.

    A deploy needs the targets it depends on; a teardown needs its
    dependents gone first, so those are pulled in instead.

    Raises:
        ConfigurationError: If an id names no target
    """
    ids = [i for i in ids if i]
    known = {t.id for t in project.targets}
    unknown = [i for i in ids if i not in known]
    if unknown:
        raise ConfigurationError([
            ValidationError(f"Unknown target '{target_id}'", 'targets') for target_id in unknown
        ])

    wanted = set()
    pending = list(ids)
    while pending:
        target_id = pending.pop()
        if target_id in wanted:
            continue
        wanted.add(target_id)
        if teardown:
            pending.extend(t.id for t in project.targets if target_id in t.depends_on)
        else:
            pending.extend(project.target(target_id).depends_on)
    return [t for t in project.targets if t.id in wanted]


def selected_targets(project: ProjectConfig, args: Namespace, teardown: bool = False) -> List[TargetConfig]:
    """
    Targets chosen by --target/--skip-target, every target by default.

    Raises:
        ConfigurationError: If an id is unknown or a skipped target is
            needed by a selected one
    """
    only = getattr(args, 'target', None) or [t.id for t in project.targets]
    skipped = getattr(args, 'skip_target', None) or []
    select_targets(project, skipped)

    selected = [t for t in select_targets(project, only, teardown=teardown) if t.id not in skipped]
    errors = []
    for target in selected:
        if teardown:
            needed = [t.id for t in project.targets if target.id in t.depends_on]
        else:
            needed = target.depends_on
        for other in needed:
            if other in skipped:
                errors.append(ValidationError(
                    f"Target '{target.id}' needs skipped target '{other}'", f"targets.{target.id}.depends_on"))
    if errors:
        raise ConfigurationError(errors)
    if not selected:
        raise ConfigurationError.single("No targets selected", 'targets')
    return selected


def executable_available(executable: str, context: ExecutionContext) -> bool:
    """Whether `executable` would start in the given child context."""
    if os.sep in executable:
        path = Path(executable)
        if not path.is_absolute() and context.cwd:
            path = Path(context.cwd) / path
        return path.is_file() and os.access(path, os.X_OK)
    search_path = context.env.get('PATH') if context.env else None
    return shutil.which(executable, path=search_path) is not None


def check_prerequisites(targets: Iterable[SessionTarget]) -> None:
    """
    Fail before anything runs when a step's executable is not installed.

    Raises:
        ConfigurationError: Naming every missing executable, once per target
    """
    errors = []
    for target in targets:
        pipeline = target.pipeline
        missing = []
        for step in pipeline.steps:
            command = step.command_for(pipeline.dry_run) if step.handler is None else None
            # Substituted executables are only known at run time
            if not command or '${' in command[0] or command[0] in missing:
                continue
            if not executable_available(command[0], target.context):
                missing.append(command[0])
                errors.append(ValidationError(
                    f"Executable '{command[0]}' not found (needed by step '{step.name}')",
                    f"targets.{pipeline.target_id}",
                ))
    if errors:
        raise ConfigurationError(errors)


def write_report(result: SessionResult, args: Namespace, directory: Path) -> int:
    """Persist the report and map the session outcome to an exit code."""
    try:
        ReportWriter(directory).write(result, report_formats(args))
    except ReportWriteError as e:
        logger.error(str(e))
        return 1

    summary = result.summary
    logger.info(
        f"Overall status: {result.overall_status.value} "
        f"(passed {summary['passed']}, failed {summary['failed']}, "
        f"skipped {summary['skipped']}, cancelled {summary['cancelled']})"
    )
    return EXIT_CODES[result.overall_status]


def report_failure(error: OrchestratorError, args: Namespace, command: str,
                   project: Optional[ProjectConfig] = None) -> int:
    """
    Log a fatal pre-execution error and leave a best-effort report behind.

    Always returns exit code 1.
    """
    if isinstance(error, ConfigurationError):
        for item in error.errors:
            logger.error(f"Validation error at '{item.path}': {item.message}" if item.path
                         else f"Validation error: {item.message}")
    else:
        logger.error(str(error))

    result = SessionResult(
        session_id=generate_session_id(),
        timestamp=utc_now(),
        project=project_name(args, project),
        environment=environment_name(args, project),
        command=command,
        dry_run=bool(getattr(args, 'dry_run', False)),
        test_mode=command == 'dr-test',
        pipelines=(),
        overall_status=OverallStatus.FAILED,
        error=error.to_dict(),
    )
    try:
        ReportWriter(reports_dir(args, project)).write(result, report_formats(args))
    except ReportWriteError as e:
        logger.error(str(e))
    return 1
