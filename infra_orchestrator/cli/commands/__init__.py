"""CLI command handlers."""

from .cost_compare import cost_compare
from .deploy import deploy, destroy
from .dr_test import dr_test

__all__ = ['cost_compare', 'deploy', 'destroy', 'dr_test']
