"""Security module for credential handling and masking."""

from .secrets import SecretsManager, SecretsContext, SecretsMaskingFilter

__all__ = ['SecretsManager', 'SecretsContext', 'SecretsMaskingFilter']
