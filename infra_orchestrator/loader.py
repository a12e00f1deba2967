"""Project file loader and strict validation."""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from infra_orchestrator.exceptions import ConfigurationError, ValidationError


ENVIRONMENTS = ('dev', 'staging', 'production')
POLICIES = ('fail_fast', 'continue_on_error')
RETRY_KEYS = {'max_attempts', 'backoff_ms', 'backoff_multiplier', 'retryable_codes'}
TARGET_ID_PATTERN = re.compile(r'^[a-z][a-z0-9_-]*$')
ENV_NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


@dataclass(frozen=True)
class ConfigurationStage:
    """Configuration-runner stage run after provisioning."""
    playbook: str
    hosts_output: str
    user: Optional[str] = None
    private_key: Optional[str] = None
    extra_vars: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TargetConfig:
    """One deployment target: one cloud backend in one environment."""
    id: str
    provider: str
    workdir: Path
    region: Optional[str] = None
    region_env: Optional[str] = None
    credentials: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    policy: str = 'fail_fast'
    depends_on: List[str] = field(default_factory=list)
    variables: Dict[str, str] = field(default_factory=dict)
    configuration: Optional[ConfigurationStage] = None
    steps: Optional[List[Dict[str, Any]]] = None
    resources: Optional[Dict[str, Any]] = None

    def child_env(self) -> Dict[str, str]:
        """Non-secret variables handed to this target's subprocesses."""
        env = dict(self.env)
        if self.region and self.region_env:
            env[self.region_env] = self.region
        return env


@dataclass(frozen=True)
class DRTestConfig:
    """Commands driving the DR test actions."""
    simulate_failure: Optional[List[str]] = None
    trigger_failover: Optional[List[str]] = None
    verify_secondary: Optional[List[str]] = None
    rto_mode: str = 'timed'
    timeout_sec: Optional[float] = None


@dataclass(frozen=True)
class ProjectConfig:
    """Validated project file."""
    project: str
    environment: str
    targets: List[TargetConfig]
    root: Path
    reports_dir: Path
    logs_dir: Path
    max_duration_sec: Optional[float] = None
    replication: Optional[Dict[str, Any]] = None
    dr_test: Optional[DRTestConfig] = None
    budget: Optional[Dict[str, float]] = None

    def target(self, target_id: str) -> TargetConfig:
        for target in self.targets:
            if target.id == target_id:
                return target
        raise KeyError(target_id)


class ProjectLoader:
    """Loads and validates project YAML, collecting every error before raising."""

    SUPPORTED_VERSIONS = {"1"}
    TOP_LEVEL_FIELDS = {
        'version', 'project', 'environment', 'reports_dir', 'logs_dir',
        'max_duration_sec', 'targets', 'replication', 'dr_test', 'budget',
    }
    TARGET_FIELDS = {
        'id', 'provider', 'workdir', 'region', 'region_env', 'credentials', 'env',
        'policy', 'depends_on', 'variables', 'configuration', 'steps', 'resources',
    }
    STEP_FIELDS = {
        'name', 'command', 'mutating', 'read_only_command', 'timeout_sec',
        'retries', 'output_capture',
    }

    def __init__(self, workspace: Path):
        """Initialize loader with workspace root (relative paths resolve against it)."""
        self.workspace = workspace.resolve()
        self.errors: List[ValidationError] = []

    def load(self, project_path: Path, environment: Optional[str] = None,
             project: Optional[str] = None) -> ProjectConfig:
        """
        Load and validate a project file.

        Args:
            project_path: Path to the YAML project file
            environment: CLI override of the file's environment
            project: CLI override of the file's project name

        Raises:
            ConfigurationError: With every validation error found
        """
        self.errors = []
        try:
            with open(project_path, 'r') as f:
                document = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError.single(f"Failed to load project file: {e}", str(project_path))

        if document is None or not isinstance(document, dict):
            raise ConfigurationError.single("Project file must be a YAML mapping", str(project_path))

        return self.validate(document, environment=environment, project=project)

    def validate(self, document: Dict[str, Any], environment: Optional[str] = None,
                 project: Optional[str] = None) -> ProjectConfig:
        """Validate an already-parsed project document."""
        self.errors = []

        version = document.get('version')
        if version is None:
            self._add_error("'version' field is required", 'version')
        elif str(version) not in self.SUPPORTED_VERSIONS:
            self._add_error(f"Unsupported version '{version}'. Supported: {sorted(self.SUPPORTED_VERSIONS)}", 'version')

        for key in document:
            if key not in self.TOP_LEVEL_FIELDS:
                self._add_error(f"Unknown field '{key}'", key)

        project_name = project or document.get('project', 'infra-demo')
        if not isinstance(project_name, str) or not project_name:
            self._add_error("'project' must be a non-empty string", 'project')

        environment = environment or document.get('environment', 'dev')
        if environment not in ENVIRONMENTS:
            self._add_error(f"'environment' must be one of {list(ENVIRONMENTS)}, got '{environment}'", 'environment')

        max_duration = document.get('max_duration_sec')
        if max_duration is not None and (not isinstance(max_duration, (int, float)) or max_duration <= 0):
            self._add_error("'max_duration_sec' must be a positive number", 'max_duration_sec')

        targets = self._validate_targets(document.get('targets'))

        replication = document.get('replication')
        if replication is not None:
            self._validate_replication(replication, {t.id for t in targets})

        dr_test = None
        if 'dr_test' in document:
            dr_test = self._validate_dr_test(document['dr_test'])

        budget = document.get('budget')
        if budget is not None:
            self._validate_budget(budget)

        if self.errors:
            raise ConfigurationError(self.errors)

        return ProjectConfig(
            project=project_name,
            environment=environment,
            targets=targets,
            root=self.workspace,
            reports_dir=self._resolve(document.get('reports_dir', 'reports')),
            logs_dir=self._resolve(document.get('logs_dir', 'logs')),
            max_duration_sec=max_duration,
            replication=replication,
            dr_test=dr_test,
            budget=budget,
        )

    def _validate_targets(self, targets: Any) -> List[TargetConfig]:
        if not targets:
            self._add_error("'targets' field is required and must not be empty", 'targets')
            return []
        if not isinstance(targets, list):
            self._add_error("'targets' must be a list", 'targets')
            return []

        seen = set()
        validated = []
        for i, raw in enumerate(targets):
            path = f"targets[{i}]"
            if not isinstance(raw, dict):
                self._add_error("Target must be a mapping", path)
                continue

            for key in raw:
                if key not in self.TARGET_FIELDS:
                    self._add_error(f"Unknown field '{key}'", f"{path}.{key}")

            target_id = raw.get('id')
            if not isinstance(target_id, str) or not TARGET_ID_PATTERN.match(target_id):
                self._add_error("'id' must be a lowercase identifier", f"{path}.id")
                target_id = f"<target_{i}>"
            elif target_id in seen:
                self._add_error(f"Duplicate target id '{target_id}'", f"{path}.id")
            seen.add(target_id)

            provider = raw.get('provider', target_id)
            if not isinstance(provider, str) or not provider:
                self._add_error("'provider' must be a non-empty string", f"{path}.provider")

            workdir = raw.get('workdir')
            if not isinstance(workdir, str) or not workdir:
                self._add_error("'workdir' is required", f"{path}.workdir")
                workdir = '.'

            policy = raw.get('policy', 'fail_fast')
            if policy not in POLICIES:
                self._add_error(f"'policy' must be one of {list(POLICIES)}", f"{path}.policy")

            credentials = raw.get('credentials', [])
            if not isinstance(credentials, list) or not all(
                    isinstance(c, str) and ENV_NAME_PATTERN.match(c) for c in credentials):
                self._add_error("'credentials' must be a list of environment variable names", f"{path}.credentials")
                credentials = []

            region_env = raw.get('region_env')
            if region_env is not None and (not isinstance(region_env, str) or not ENV_NAME_PATTERN.match(region_env)):
                self._add_error("'region_env' must be an environment variable name", f"{path}.region_env")

            depends_on = raw.get('depends_on', [])
            if not isinstance(depends_on, list) or not all(isinstance(d, str) for d in depends_on):
                self._add_error("'depends_on' must be a list of target ids", f"{path}.depends_on")
                depends_on = []

            env = self._string_map(raw.get('env', {}), f"{path}.env")
            variables = self._string_map(raw.get('variables', {}), f"{path}.variables")

            configuration = None
            if 'configuration' in raw:
                configuration = self._validate_configuration(raw['configuration'], f"{path}.configuration")

            steps = raw.get('steps')
            if steps is not None:
                self._validate_steps(steps, f"{path}.steps")

            resources = raw.get('resources')
            if resources is not None and not isinstance(resources, dict):
                self._add_error("'resources' must be a mapping", f"{path}.resources")
                resources = None

            validated.append(TargetConfig(
                id=target_id,
                provider=provider,
                workdir=self._resolve(workdir),
                region=raw.get('region'),
                region_env=region_env,
                credentials=list(credentials),
                env=env,
                policy=policy,
                depends_on=list(depends_on),
                variables=variables,
                configuration=configuration,
                steps=steps,
                resources=resources,
            ))

        known = {t.id for t in validated}
        for target in validated:
            for dependency in target.depends_on:
                if dependency not in known:
                    self._add_error(f"Unknown dependency '{dependency}'", f"targets.{target.id}.depends_on")
                elif dependency == target.id:
                    self._add_error("Target cannot depend on itself", f"targets.{target.id}.depends_on")

        return validated

    def _validate_configuration(self, raw: Any, path: str) -> Optional[ConfigurationStage]:
        if not isinstance(raw, dict):
            self._add_error("'configuration' must be a mapping", path)
            return None
        playbook = raw.get('playbook')
        hosts_output = raw.get('hosts_output')
        if not isinstance(playbook, str) or not playbook:
            self._add_error("'playbook' is required", f"{path}.playbook")
        if not isinstance(hosts_output, str) or not hosts_output:
            self._add_error("'hosts_output' is required", f"{path}.hosts_output")
        if not isinstance(playbook, str) or not isinstance(hosts_output, str):
            return None
        return ConfigurationStage(
            playbook=playbook,
            hosts_output=hosts_output,
            user=raw.get('user'),
            private_key=raw.get('private_key'),
            extra_vars=self._string_map(raw.get('extra_vars', {}), f"{path}.extra_vars"),
        )

    def _validate_steps(self, steps: Any, path: str) -> None:
        if not isinstance(steps, list) or not steps:
            self._add_error("'steps' must be a non-empty list", path)
            return

        names = set()
        for i, step in enumerate(steps):
            step_path = f"{path}[{i}]"
            if not isinstance(step, dict):
                self._add_error("Step must be a mapping", step_path)
                continue

            for key in step:
                if key not in self.STEP_FIELDS:
                    self._add_error(f"Unknown field '{key}'", f"{step_path}.{key}")

            name = step.get('name')
            if not isinstance(name, str) or not name:
                self._add_error("Step 'name' is required", step_path)
            elif name in names:
                self._add_error(f"Duplicate step name '{name}'", step_path)
            else:
                names.add(name)

            for command_field in ('command', 'read_only_command'):
                if command_field not in step:
                    continue
                command = step[command_field]
                if not isinstance(command, list) or not command or not all(isinstance(c, str) for c in command):
                    self._add_error(f"'{command_field}' must be a non-empty list of strings", f"{step_path}.{command_field}")
            if 'command' not in step:
                self._add_error("'command' is required", step_path)

            timeout = step.get('timeout_sec')
            if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
                self._add_error("'timeout_sec' must be a positive number", f"{step_path}.timeout_sec")

            capture = step.get('output_capture', 'text')
            if capture not in ('text', 'json'):
                self._add_error("'output_capture' must be 'text' or 'json'", f"{step_path}.output_capture")

            retries = step.get('retries')
            if retries is not None:
                if isinstance(retries, bool) or not isinstance(retries, (int, dict)):
                    self._add_error("'retries' must be an integer or a mapping", f"{step_path}.retries")
                elif isinstance(retries, int) and retries < 1:
                    self._add_error("'retries' must be >= 1", f"{step_path}.retries")
                elif isinstance(retries, dict):
                    self._validate_retries(retries, f"{step_path}.retries")

    def _validate_retries(self, retries: Dict[str, Any], path: str) -> None:
        for key in sorted(set(retries) - RETRY_KEYS):
            self._add_error(f"Unknown retries key '{key}'", f"{path}.{key}")

        def is_int(value):
            return isinstance(value, int) and not isinstance(value, bool)

        if 'max_attempts' in retries:
            value = retries['max_attempts']
            if not is_int(value) or value < 1:
                self._add_error("'max_attempts' must be an integer >= 1", f"{path}.max_attempts")
        if 'backoff_ms' in retries:
            value = retries['backoff_ms']
            if not is_int(value) or value < 0:
                self._add_error("'backoff_ms' must be an integer >= 0", f"{path}.backoff_ms")
        if 'backoff_multiplier' in retries:
            value = retries['backoff_multiplier']
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                self._add_error("'backoff_multiplier' must be a positive number", f"{path}.backoff_multiplier")
        if 'retryable_codes' in retries:
            codes = retries['retryable_codes']
            if not isinstance(codes, list) or not all(is_int(c) for c in codes):
                self._add_error("'retryable_codes' must be a list of integers", f"{path}.retryable_codes")

    def _validate_replication(self, replication: Any, target_ids: set) -> None:
        if not isinstance(replication, dict):
            self._add_error("'replication' must be a mapping", 'replication')
            return
        for key in ('primary', 'secondary'):
            value = replication.get(key)
            if value is not None and target_ids and value not in target_ids:
                self._add_error(f"'{key}' must name a target, got '{value}'", f"replication.{key}")

    def _validate_dr_test(self, raw: Any) -> Optional[DRTestConfig]:
        if not isinstance(raw, dict):
            self._add_error("'dr_test' must be a mapping", 'dr_test')
            return None

        commands = {}
        for key in ('simulate_failure', 'trigger_failover', 'verify_secondary'):
            command = raw.get(key)
            if command is not None and (
                    not isinstance(command, list) or not command or not all(isinstance(c, str) for c in command)):
                self._add_error(f"'{key}' must be a non-empty list of strings", f"dr_test.{key}")
                command = None
            commands[key] = command

        rto_mode = raw.get('rto_mode', 'timed')
        if rto_mode not in ('timed', 'simulated'):
            self._add_error("'rto_mode' must be 'timed' or 'simulated'", 'dr_test.rto_mode')

        timeout = raw.get('timeout_sec')
        if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
            self._add_error("'timeout_sec' must be a positive number", 'dr_test.timeout_sec')

        return DRTestConfig(rto_mode=rto_mode, timeout_sec=timeout, **commands)

    def _validate_budget(self, budget: Any) -> None:
        if not isinstance(budget, dict):
            self._add_error("'budget' must be a mapping", 'budget')
            return
        for key in ('warning', 'critical'):
            value = budget.get(key)
            if value is None or isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                self._add_error(f"'{key}' must be a non-negative number", f"budget.{key}")
        if not self.errors and budget['warning'] > budget['critical']:
            self._add_error("'warning' must not exceed 'critical'", 'budget')

    def _string_map(self, value: Any, path: str) -> Dict[str, str]:
        if not isinstance(value, dict):
            self._add_error("Must be a mapping of strings", path)
            return {}
        result = {}
        for key, item in value.items():
            if isinstance(item, (dict, list)) or item is None:
                self._add_error(f"Value for '{key}' must be a scalar", f"{path}.{key}")
                continue
            if isinstance(item, bool):
                item = 'true' if item else 'false'
            result[str(key)] = str(item)
        return result

    def _resolve(self, path: str) -> Path:
        candidate = Path(path).expanduser()
        if candidate.is_absolute():
            return candidate
        return self.workspace / candidate

    def _add_error(self, message: str, path: str = ""):
        self.errors.append(ValidationError(message=message, path=path))
