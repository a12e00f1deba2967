"""
Tests for the retry policy applied uniformly by the step executor.
"""

import threading
import time

import pytest

from infra_orchestrator.exec.retry import RetryPolicy


class TestRetryPolicy:
    """Test the RetryPolicy class logic."""

    def test_default_is_single_attempt(self):
        policy = RetryPolicy.none()

        assert policy.max_attempts == 1
        assert policy.should_retry(1, 1) is False

    def test_provisioner_init_policy(self):
        """Initialization gets 3 attempts, 2 seconds apart."""
        policy = RetryPolicy.for_provisioner_init()

        assert policy.max_attempts == 3
        assert policy.backoff_ms == 2000
        assert policy.should_retry(1, 1) is True
        assert policy.should_retry(1, 2) is True
        assert policy.should_retry(1, 3) is False

    def test_success_is_never_retried(self):
        policy = RetryPolicy(max_attempts=5)
        assert policy.should_retry(0, 1) is False

    def test_retryable_codes_restrict_retries(self):
        policy = RetryPolicy(max_attempts=3, retryable_codes=frozenset({124}))

        assert policy.should_retry(124, 1) is True
        assert policy.should_retry(1, 1) is False

    def test_backoff_multiplier(self):
        policy = RetryPolicy(max_attempts=4, backoff_ms=100, backoff_multiplier=2.0)

        assert policy.delay_ms(1) == 100
        assert policy.delay_ms(2) == 200
        assert policy.delay_ms(3) == 400

    def test_from_config_integer_shorthand(self):
        policy = RetryPolicy.from_config(3)
        assert policy.max_attempts == 3

    def test_from_config_mapping(self):
        policy = RetryPolicy.from_config({
            'max_attempts': 2,
            'backoff_ms': 50,
            'retryable_codes': [1, 124],
        })

        assert policy.max_attempts == 2
        assert policy.backoff_ms == 50
        assert policy.retryable_codes == frozenset({1, 124})

    def test_from_config_empty_means_no_retries(self):
        assert RetryPolicy.from_config(None) == RetryPolicy.none()

    def test_invalid_attempts_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_wait_sleeps_for_delay(self):
        policy = RetryPolicy(max_attempts=2, backoff_ms=100)

        start = time.monotonic()
        assert policy.wait(1) is True
        elapsed = time.monotonic() - start

        assert elapsed >= 0.09

    def test_wait_interrupted_by_cancellation(self):
        policy = RetryPolicy(max_attempts=2, backoff_ms=10_000)
        event = threading.Event()
        event.set()

        start = time.monotonic()
        assert policy.wait(1, event) is False
        assert time.monotonic() - start < 1

    def test_to_dict(self):
        policy = RetryPolicy(max_attempts=2, retryable_codes=frozenset({3, 1}))
        assert policy.to_dict()['retryable_codes'] == [1, 3]
