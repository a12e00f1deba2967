"""
Tests for credential resolution and masking.
"""

import logging

from infra_orchestrator.security.secrets import SecretsManager, SecretsMaskingFilter


class TestSecretsManager:

    def test_credentials_come_from_the_environment(self):
        manager = SecretsManager(environ={'AWS_SECRET_ACCESS_KEY': 'abc123', 'PATH': '/bin'})

        context = manager.resolve_secrets(['AWS_SECRET_ACCESS_KEY'])

        assert context.missing_secrets == []
        assert context.child_env['AWS_SECRET_ACCESS_KEY'] == 'abc123'
        assert context.child_env['PATH'] == '/bin'

    def test_missing_credentials_reported_by_name(self):
        manager = SecretsManager(environ={})

        context = manager.resolve_secrets(['OCI_PRIVATE_KEY', 'AWS_SECRET_ACCESS_KEY'])

        assert context.missing_secrets == ['OCI_PRIVATE_KEY', 'AWS_SECRET_ACCESS_KEY']

    def test_empty_value_counts_as_present(self):
        manager = SecretsManager(environ={'TOKEN': ''})

        context = manager.resolve_secrets(['TOKEN'])

        assert context.missing_secrets == []
        assert manager.mask_text("token is ''") == "token is ''"

    def test_target_env_wins(self):
        manager = SecretsManager(environ={'AWS_REGION': 'us-east-1'})

        context = manager.resolve_secrets([], {'AWS_REGION': 'eu-west-1'})

        assert context.child_env['AWS_REGION'] == 'eu-west-1'

    def test_source_environment_untouched(self):
        environ = {'A': '1'}
        manager = SecretsManager(environ=environ)

        manager.resolve_secrets(['A'], {'B': '2'})

        assert environ == {'A': '1'}

    def test_longer_values_masked_first(self):
        manager = SecretsManager(environ={'SHORT': 'pass', 'LONG': 'password123'})
        manager.resolve_secrets(['SHORT', 'LONG'])

        assert manager.mask_text("key=password123 alt=pass") == "key=*** alt=***"

    def test_mask_dict_is_recursive(self):
        manager = SecretsManager(environ={'KEY': 's3cr3t'})
        manager.resolve_secrets(['KEY'])

        masked = manager.mask_dict({'a': 's3cr3t', 'b': {'c': ['x s3cr3t']}, 'n': 3})

        assert masked == {'a': '***', 'b': {'c': ['x ***']}, 'n': 3}


class TestSecretsMaskingFilter:

    def test_filter_masks_message_and_args(self):
        manager = SecretsManager(environ={'KEY': 's3cr3t'})
        manager.resolve_secrets(['KEY'])
        record = logging.LogRecord('test', logging.INFO, __file__, 1,
                                   "token s3cr3t and %s", ('s3cr3t',), None)

        assert SecretsMaskingFilter(manager).filter(record) is True
        assert record.getMessage() == "token *** and ***"
