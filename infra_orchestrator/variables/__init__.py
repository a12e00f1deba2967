"""
Variable substitution module.
Resolves ${...} placeholders in step commands from project, target and
upstream step/pipeline outputs.
"""

from .substitution import VariableSubstitutor

__all__ = ['VariableSubstitutor']
