"""
Retry policy helpers for step execution.
Replaces per-call-site retry loops (e.g. `terraform init` retried 3 times)
with one policy applied uniformly by the StepExecutor.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Union


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for step retry behavior.

    Attributes:
        max_attempts: Total number of attempts (1 = no retries)
        backoff_ms: Delay before the first retry in milliseconds
        backoff_multiplier: Factor applied to the delay after each retry
        retryable_codes: Exit codes that trigger a retry (empty = any non-zero)
    """
    max_attempts: int = 1
    backoff_ms: int = 1000
    backoff_multiplier: float = 1.0
    retryable_codes: FrozenSet[int] = field(default_factory=frozenset)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_ms < 0:
            raise ValueError(f"backoff_ms must be >= 0, got {self.backoff_ms}")

    @classmethod
    def none(cls) -> 'RetryPolicy':
        """Single attempt, no retries."""
        return cls(max_attempts=1)

    @classmethod
    def for_provisioner_init(cls) -> 'RetryPolicy':
        """
        Provisioner initialization downloads plugins and modules and is the
        flakiest step: 3 attempts, 2 seconds apart.
        """
        return cls(max_attempts=3, backoff_ms=2000)

    @classmethod
    def from_config(cls, retries_config: Optional[Union[int, Dict[str, Any]]] = None) -> 'RetryPolicy':
        """
        Build a policy from a project-file `retries` value.

        Accepts either an integer shorthand (number of attempts) or a dict
        with max_attempts/backoff_ms/backoff_multiplier/retryable_codes.
        """
        if not retries_config:
            return cls.none()

        if isinstance(retries_config, int):
            return cls(max_attempts=retries_config)

        return cls(
            max_attempts=retries_config.get('max_attempts', 1),
            backoff_ms=retries_config.get('backoff_ms', 1000),
            backoff_multiplier=retries_config.get('backoff_multiplier', 1.0),
            retryable_codes=frozenset(retries_config.get('retryable_codes', [])),
        )

    def should_retry(self, exit_code: int, attempt: int) -> bool:
        """
        Determine if a retry should be attempted.

        Args:
            exit_code: Exit code from the last execution
            attempt: Number of attempts made so far (1-based)

        Returns:
            True if should retry, False otherwise
        """
        if exit_code == 0:
            return False

        # Check if we have attempts left
        if attempt >= self.max_attempts:
            return False

        if self.retryable_codes:
            return exit_code in self.retryable_codes
        return True

    def delay_ms(self, attempt: int) -> float:
        """Delay before the retry that follows `attempt` (1-based)."""
        return self.backoff_ms * (self.backoff_multiplier ** (attempt - 1))

    def wait(self, attempt: int, cancel_event: Optional[threading.Event] = None) -> bool:
        """
        Wait for the configured delay between retries.

        Returns False if the wait was interrupted by cancellation.
        """
        delay = self.delay_ms(attempt) / 1000.0
        if delay <= 0:
            return not (cancel_event and cancel_event.is_set())
        if cancel_event is None:
            time.sleep(delay)
            return True
        return not cancel_event.wait(delay)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "backoff_ms": self.backoff_ms,
            "backoff_multiplier": self.backoff_multiplier,
            "retryable_codes": sorted(self.retryable_codes),
        }
