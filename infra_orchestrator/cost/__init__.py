"""
Cost estimation across cloud providers.
"""

from .model import (
    BudgetStatus,
    CostComparison,
    CostEstimate,
    CostModel,
    ResourceShape,
    check_budget,
    summarize_targets,
)
from .pricing import DEFAULT_PRICING_PATH, PricingTable

__all__ = [
    "BudgetStatus",
    "CostComparison",
    "CostEstimate",
    "CostModel",
    "DEFAULT_PRICING_PATH",
    "PricingTable",
    "ResourceShape",
    "check_budget",
    "summarize_targets",
]
