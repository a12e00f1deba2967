"""Versioned pricing table loaded from YAML."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PRICING_PATH = Path(__file__).parent / 'data' / 'pricing.yaml'
DEFAULT_HOURS_PER_MONTH = 720


class PricingTable:
    """
    Read-only price list per provider.

    Loaded once per run; the cost model never mutates it. Free-tier
    allowances live next to the prices but are only applied by the model's
    deduction stage.
    """

    def __init__(self, document: Dict[str, Any], source: str = "<memory>"):
        self.source = source
        errors = self._validate(document)
        if errors:
            raise ConfigurationError(errors)

        self.version = str(document['version'])
        self.currency = document.get('currency', 'USD')
        self.hours_per_month = document.get('hours_per_month', DEFAULT_HOURS_PER_MONTH)
        self._providers: Dict[str, Dict[str, Any]] = document['providers']

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "PricingTable":
        path = path or DEFAULT_PRICING_PATH
        try:
            with open(path, 'r') as f:
                document = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError.single(f"Failed to load pricing table: {e}", str(path))
        if not isinstance(document, dict):
            raise ConfigurationError.single("Pricing table must be a YAML mapping", str(path))

        table = cls(document, source=str(path))
        logger.debug(f"Loaded pricing table {table.version} from {path}")
        return table

    @property
    def providers(self) -> List[str]:
        return sorted(self._providers)

    def provider(self, name: str) -> Dict[str, Any]:
        try:
            return self._providers[name]
        except KeyError:
            raise ConfigurationError.single(
                f"Unknown provider '{name}'. Known: {self.providers}", 'provider'
            )

    def compute_monthly(self, provider: str, instance_class: str) -> float:
        """Monthly price of one instance: the listed monthly price, else hourly x hours_per_month."""
        prices = self.provider(provider)['compute'].get(instance_class)
        if prices is None:
            known = sorted(self.provider(provider)['compute'])
            raise ConfigurationError.single(
                f"Unknown instance class '{instance_class}' for {provider}. Known: {known}",
                'resources.instance_class',
            )
        if 'monthly' in prices:
            return float(prices['monthly'])
        return float(prices['hourly']) * self.hours_per_month

    def storage_per_gb(self, provider: str, storage_class: Optional[str] = None) -> float:
        storage = self.provider(provider)['storage']
        storage_class = storage_class or storage['default']
        prices = storage['classes'].get(storage_class)
        if prices is None:
            raise ConfigurationError.single(
                f"Unknown storage class '{storage_class}' for {provider}. Known: {sorted(storage['classes'])}",
                'resources.storage_class',
            )
        return float(prices['monthly_per_gb'])

    def network_monthly(self, provider: str, item: str) -> float:
        """Monthly price of a network item (load_balancer, nat_gateway)."""
        prices = self.provider(provider)['network'].get(item)
        if prices is None:
            raise ConfigurationError.single(f"{provider} has no price for '{item}'", f"resources.{item}")
        if 'monthly' in prices:
            return float(prices['monthly'])
        return float(prices['hourly']) * self.hours_per_month

    def egress_per_gb(self, provider: str) -> float:
        return float(self.provider(provider)['network'].get('egress_per_gb', 0.0))

    def free_tier(self, provider: str) -> Dict[str, Any]:
        return self.provider(provider).get('free_tier', {})

    def default_shape(self, provider: str) -> Dict[str, Any]:
        shape = self.provider(provider).get('default_shape')
        if shape is None:
            raise ConfigurationError.single(f"No default resource shape for {provider}", 'resources')
        return dict(shape)

    def _validate(self, document: Dict[str, Any]) -> List[ValidationError]:
        errors = []
        if 'version' not in document:
            errors.append(ValidationError("'version' is required", 'version'))

        hours = document.get('hours_per_month', DEFAULT_HOURS_PER_MONTH)
        if not isinstance(hours, (int, float)) or hours <= 0:
            errors.append(ValidationError("'hours_per_month' must be positive", 'hours_per_month'))

        providers = document.get('providers')
        if not isinstance(providers, dict) or not providers:
            errors.append(ValidationError("'providers' must be a non-empty mapping", 'providers'))
            return errors

        for name, provider in providers.items():
            path = f"providers.{name}"
            if not isinstance(provider, dict):
                errors.append(ValidationError("Provider must be a mapping", path))
                continue
            compute = provider.get('compute')
            if not isinstance(compute, dict) or not compute:
                errors.append(ValidationError("'compute' must be a non-empty mapping", f"{path}.compute"))
            else:
                for cls_name, prices in compute.items():
                    if not isinstance(prices, dict) or not ('monthly' in prices or 'hourly' in prices):
                        errors.append(ValidationError("Needs an 'hourly' or 'monthly' price", f"{path}.compute.{cls_name}"))
            storage = provider.get('storage')
            if not isinstance(storage, dict) or storage.get('default') not in (storage.get('classes') or {}):
                errors.append(ValidationError("'storage' needs 'classes' and a 'default' among them", f"{path}.storage"))
            if not isinstance(provider.get('network'), dict):
                errors.append(ValidationError("'network' must be a mapping", f"{path}.network"))

        return errors
