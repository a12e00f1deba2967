"""Cross-cloud replication settings used by DR tests and reports."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..exceptions import ConfigurationError, ValidationError

METHODS = ('sync', 'async')

DEFAULT_METHOD = 'async'
DEFAULT_RPO_MINUTES = 15
DEFAULT_RTO_MINUTES = 60


@dataclass(frozen=True)
class ReplicationConfig:
    """Replication between a primary and a secondary target."""
    method: str = DEFAULT_METHOD
    rpo_minutes: int = DEFAULT_RPO_MINUTES
    rto_minutes: int = DEFAULT_RTO_MINUTES
    primary: str = 'aws'
    secondary: str = 'oci'

    def __post_init__(self):
        errors = []
        if self.method not in METHODS:
            errors.append(ValidationError(f"method must be one of {list(METHODS)}, got '{self.method}'", 'replication.method'))
        for name in ('rpo_minutes', 'rto_minutes'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                errors.append(ValidationError(f"{name} must be a positive integer", f"replication.{name}"))
        if not self.primary or not self.secondary:
            errors.append(ValidationError("primary and secondary are required", 'replication'))
        elif self.primary == self.secondary:
            errors.append(ValidationError("primary and secondary must differ", 'replication'))
        if errors:
            raise ConfigurationError(errors)

    @property
    def frequency(self) -> str:
        if self.method == 'sync':
            return "real-time"
        return f"every {self.rpo_minutes} minutes"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], **overrides: Any) -> "ReplicationConfig":
        """Build from a project-file mapping; non-None overrides (CLI flags) win."""
        values = dict(data or {})
        values.update({k: v for k, v in overrides.items() if v is not None})
        unknown = set(values) - {'method', 'rpo_minutes', 'rto_minutes', 'primary', 'secondary'}
        if unknown:
            raise ConfigurationError.single(f"Unknown replication fields: {sorted(unknown)}", 'replication')
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "rpo_minutes": self.rpo_minutes,
            "rto_minutes": self.rto_minutes,
            "primary": self.primary,
            "secondary": self.secondary,
            "frequency": self.frequency,
        }
