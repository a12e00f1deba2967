"""
Cost model.

Estimates are pure functions of a resource shape and the pricing table: raw
monthly costs first, then an optional free-tier deduction stage, then the
period total for the requested duration.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..exceptions import ConfigurationError, ValidationError
from .pricing import PricingTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceShape:
    """What a target runs, in pricing terms."""
    instance_class: str
    instance_count: int = 1
    storage_gb: float = 0
    storage_class: Optional[str] = None
    load_balancer: bool = False
    nat_gateway: bool = False
    egress_gb: float = 0

    FIELDS = ('instance_class', 'instance_count', 'storage_gb', 'storage_class',
              'load_balancer', 'nat_gateway', 'egress_gb')

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = 'resources') -> "ResourceShape":
        """Validate a mapping from a project file or the pricing table's default shape."""
        errors = []
        for key in data:
            if key not in cls.FIELDS:
                errors.append(ValidationError(f"Unknown field '{key}'", f"{path}.{key}"))

        if not isinstance(data.get('instance_class'), str) or not data.get('instance_class'):
            errors.append(ValidationError("'instance_class' is required", f"{path}.instance_class"))

        count = data.get('instance_count', 1)
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            errors.append(ValidationError("'instance_count' must be a non-negative integer", f"{path}.instance_count"))

        for key in ('storage_gb', 'egress_gb'):
            value = data.get(key, 0)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                errors.append(ValidationError(f"'{key}' must be a non-negative number", f"{path}.{key}"))

        for key in ('load_balancer', 'nat_gateway'):
            if not isinstance(data.get(key, False), bool):
                errors.append(ValidationError(f"'{key}' must be true or false", f"{path}.{key}"))

        if errors:
            raise ConfigurationError(errors)
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, key) for key in self.FIELDS if getattr(self, key) is not None}


@dataclass(frozen=True)
class CostEstimate:
    """Derived cost of one shape on one provider."""
    provider: str
    shape: ResourceShape
    breakdown: Dict[str, float]
    free_tier_deduction: float
    duration_hours: float
    hours_per_month: float
    pricing_version: str
    include_free_tier: bool = False

    @property
    def monthly_total(self) -> float:
        return sum(self.breakdown.values())

    @property
    def period_total(self) -> float:
        return self.monthly_total / self.hours_per_month * self.duration_hours

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "shape": self.shape.to_dict(),
            "breakdown": {k: round(v, 2) for k, v in self.breakdown.items()},
            "monthly_total": round(self.monthly_total, 2),
            "free_tier_deduction": round(self.free_tier_deduction, 2),
            "include_free_tier": self.include_free_tier,
            "duration_hours": self.duration_hours,
            "period_total": round(self.period_total, 2),
            "annual_total": round(self.monthly_total * 12, 2),
            "pricing_version": self.pricing_version,
        }


class BudgetStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


def check_budget(monthly_total: float, warning: float, critical: float) -> BudgetStatus:
    """Classify a monthly cost against the budget thresholds."""
    if monthly_total >= critical:
        return BudgetStatus.CRITICAL
    if monthly_total >= warning:
        return BudgetStatus.WARNING
    return BudgetStatus.OK


@dataclass(frozen=True)
class CostComparison:
    """Provider A against provider B; positive differences mean B is cheaper."""
    estimate_a: CostEstimate
    estimate_b: CostEstimate
    budget: Optional[Dict[str, float]] = field(default=None)

    @property
    def absolute_diff(self) -> float:
        return round(self.estimate_a.monthly_total - self.estimate_b.monthly_total, 2)

    @property
    def percentage_diff(self) -> float:
        a = self.estimate_a.monthly_total
        if a == 0:
            return 0.0
        return round((a - self.estimate_b.monthly_total) / a * 100, 1)

    @property
    def cheaper(self) -> Optional[str]:
        if self.absolute_diff > 0:
            return self.estimate_b.provider
        if self.absolute_diff < 0:
            return self.estimate_a.provider
        return None

    @property
    def annual_savings(self) -> float:
        return round(abs(self.absolute_diff) * 12, 2)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "provider_a": self.estimate_a.to_dict(),
            "provider_b": self.estimate_b.to_dict(),
            "absolute_diff": self.absolute_diff,
            "percentage_diff": self.percentage_diff,
            "cheaper": self.cheaper,
            "annual_savings": self.annual_savings,
        }
        if self.budget is not None:
            warning, critical = self.budget['warning'], self.budget['critical']
            result["budget"] = {
                "warning": warning,
                "critical": critical,
                self.estimate_a.provider: check_budget(self.estimate_a.monthly_total, warning, critical).value,
                self.estimate_b.provider: check_budget(self.estimate_b.monthly_total, warning, critical).value,
            }
        return result


class CostModel:
    """Estimates and compares costs over one pricing table."""

    def __init__(self, pricing: PricingTable):
        self.pricing = pricing

    def default_shape(self, provider: str) -> ResourceShape:
        return ResourceShape.from_dict(self.pricing.default_shape(provider), f"providers.{provider}.default_shape")

    def estimate(self, provider: str, shape: ResourceShape, duration_hours: float = 720,
                 include_free_tier: bool = False) -> CostEstimate:
        """
        Estimate the cost of a shape.

        Args:
            provider: Provider name in the pricing table
            shape: Resources to price
            duration_hours: Period the period_total covers
            include_free_tier: Apply the provider's free-tier deduction

        Raises:
            ConfigurationError: Unknown provider, instance or storage class
        """
        if duration_hours <= 0:
            raise ConfigurationError.single("duration must be positive", 'duration')

        unit_compute = self.pricing.compute_monthly(provider, shape.instance_class)
        unit_storage = self.pricing.storage_per_gb(provider, shape.storage_class)
        unit_egress = self.pricing.egress_per_gb(provider)
        load_balancer = self.pricing.network_monthly(provider, 'load_balancer') if shape.load_balancer else 0.0
        nat_gateway = self.pricing.network_monthly(provider, 'nat_gateway') if shape.nat_gateway else 0.0

        raw = {
            'compute': unit_compute * shape.instance_count,
            'storage': unit_storage * shape.storage_gb,
            'network': load_balancer + nat_gateway + unit_egress * shape.egress_gb,
        }

        deductions = {'compute': 0.0, 'storage': 0.0, 'network': 0.0}
        if include_free_tier:
            free = self.pricing.free_tier(provider)
            if shape.instance_class in free.get('compute_classes', []):
                deductions['compute'] = unit_compute * min(shape.instance_count, free.get('compute_instances', 0))
            deductions['storage'] = unit_storage * min(shape.storage_gb, free.get('storage_gb', 0))
            deductions['network'] = unit_egress * min(shape.egress_gb, free.get('egress_gb', 0))
            if shape.load_balancer and free.get('load_balancers', 0) > 0:
                deductions['network'] += load_balancer

        breakdown = {key: max(0.0, raw[key] - deductions[key]) for key in raw}
        deducted = sum(raw.values()) - sum(breakdown.values())

        return CostEstimate(
            provider=provider,
            shape=shape,
            breakdown=breakdown,
            free_tier_deduction=deducted,
            duration_hours=duration_hours,
            hours_per_month=self.pricing.hours_per_month,
            pricing_version=self.pricing.version,
            include_free_tier=include_free_tier,
        )

    def compare(self, a: CostEstimate, b: CostEstimate,
                budget: Optional[Dict[str, float]] = None) -> CostComparison:
        comparison = CostComparison(estimate_a=a, estimate_b=b, budget=budget)
        logger.info(
            f"Cost comparison: {a.provider} ${a.monthly_total:.2f}/month vs "
            f"{b.provider} ${b.monthly_total:.2f}/month "
            f"(diff ${comparison.absolute_diff:.2f}, {comparison.percentage_diff:.1f}%)"
        )
        return comparison


def summarize_targets(model: CostModel, targets, duration_hours: float = 720,
                      include_free_tier: bool = False,
                      budget: Optional[Dict[str, float]] = None) -> Optional[Dict[str, Any]]:
    """
    Cost section of a deploy report: one estimate per target that declares
    `resources`, plus a comparison when exactly two targets do.
    """
    estimates = []
    for target in targets:
        if not target.resources:
            continue
        shape = ResourceShape.from_dict(target.resources, f"targets.{target.id}.resources")
        estimates.append((target.id, model.estimate(target.provider, shape, duration_hours, include_free_tier)))

    if not estimates:
        return None

    summary: Dict[str, Any] = {
        "estimates": {target_id: estimate.to_dict() for target_id, estimate in estimates},
        "monthly_total": round(sum(e.monthly_total for _, e in estimates), 2),
    }
    if len(estimates) == 2:
        summary["comparison"] = model.compare(estimates[0][1], estimates[1][1], budget).to_dict()
    if budget is not None:
        summary["budget_status"] = check_budget(
            summary["monthly_total"], budget['warning'], budget['critical']).value
    return summary
