"""
Credential resolution and masking.

Provider credentials are read by name from the orchestrator's environment and
handed to provisioner/configuration-runner subprocesses through an explicit
child environment. The orchestrator never mutates os.environ and never logs
credential values:
- Empty strings count as present
- Missing credentials are reported by name only
- Known values are masked in captured output and log records
- Target env overrides win over inherited values when keys collide
"""

import os
import re
import threading
from typing import Any, Dict, List, Mapping, Optional, Set
from dataclasses import dataclass, field


@dataclass
class SecretsContext:
    """Resolved credentials for one target."""
    declared_secrets: List[str]  # Names of env vars declared as credentials
    missing_secrets: List[str]  # Declared but absent from the environment
    child_env: Dict[str, str] = field(default_factory=dict)  # Final environment for child processes


class SecretsManager:
    """
    Resolves credentials and masks their values.

    One manager is shared by every pipeline in a session so a value resolved
    for one target is masked everywhere, including in log records.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        """
        Initialize secrets manager.

        Args:
            environ: Source environment (default: os.environ), injectable for tests
        """
        self._environ = environ if environ is not None else os.environ
        self._masked_values: Set[str] = set()
        self._lock = threading.Lock()

    def resolve_secrets(
        self,
        declared_secrets: Optional[List[str]] = None,
        target_env: Optional[Dict[str, str]] = None
    ) -> SecretsContext:
        """
        Resolve credentials for a target.

        Args:
            declared_secrets: Environment variable names required as credentials
            target_env: Non-secret target variables (region, provider flags)

        Returns:
            SecretsContext with the child environment and any missing names
        """
        context = SecretsContext(
            declared_secrets=list(declared_secrets or []),
            missing_secrets=[],
        )

        # Start with the inherited base environment
        context.child_env = dict(self._environ)

        secret_values = []
        for secret_name in context.declared_secrets:
            if secret_name in self._environ:
                value = self._environ[secret_name]
                context.child_env[secret_name] = value
                secret_values.append(value)
            else:
                context.missing_secrets.append(secret_name)

        # Target env wins on conflicts
        if target_env:
            for key, value in target_env.items():
                context.child_env[key] = str(value)
                if key in context.declared_secrets:
                    secret_values.append(str(value))

        with self._lock:
            for value in secret_values:
                if value:  # Don't mask empty strings
                    self._masked_values.add(value)

        return context

    def mask_text(self, text: str) -> str:
        """
        Mask known credential values in text with '***'.

        Longer values are replaced first so a secret that contains another
        secret is not partially revealed.
        """
        if not text or not self._masked_values:
            return text

        with self._lock:
            values = sorted(self._masked_values, key=len, reverse=True)

        masked = text
        for secret_value in values:
            if secret_value in masked:
                masked = re.sub(re.escape(secret_value), '***', masked)

        return masked

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively mask credential values in a dictionary."""
        if not data or not self._masked_values:
            return data

        masked: Dict[str, Any] = {}
        for key, value in data.items():
            masked[key] = self._mask_value(value)
        return masked

    def _mask_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.mask_text(value)
        if isinstance(value, dict):
            return self.mask_dict(value)
        if isinstance(value, list):
            return [self._mask_value(item) for item in value]
        return value

    def clear_masked_values(self):
        """Clear the set of values to mask (useful for testing)."""
        with self._lock:
            self._masked_values.clear()


class SecretsMaskingFilter:
    """
    Logging filter for masking credentials in log records.

    Attached to the root handlers by the CLI so streamed tool output never
    leaks a credential to the console or log files.
    """

    def __init__(self, secrets_manager: SecretsManager):
        self.secrets_manager = secrets_manager

    def filter(self, record):
        """Mask the message and string args; always pass the record through."""
        if hasattr(record, 'msg'):
            record.msg = self.secrets_manager.mask_text(str(record.msg))

        if hasattr(record, 'args') and record.args:
            if isinstance(record.args, dict):
                record.args = self.secrets_manager.mask_dict(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self.secrets_manager.mask_text(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        return True
