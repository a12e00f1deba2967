"""
Pipeline module: ordered steps for one deployment target.
"""

from .steps import HandlerOutcome, Step, StepHandler
from .executor import Pipeline, Policy

__all__ = [
    "HandlerOutcome",
    "Pipeline",
    "Policy",
    "Step",
    "StepHandler",
]
