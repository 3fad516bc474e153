"""Provider descriptor registry.

A static, read-only table of the providers the gateway can route to, the
model ids each one accepts, and per-model cost rates (USD per 1000 tokens).
The registry is built once at startup and passed explicitly into the
dispatcher, so tests can hand in their own descriptors.
"""
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


class ProviderNotFoundError(KeyError):
    """Raised by ``ProviderRegistry.lookup`` for an unknown provider id."""


@dataclass(frozen=True)
class ModelRates:
    input: float = 0.0
    output: float = 0.0


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static description of one provider."""

    name: str
    models: tuple[str, ...]
    rates: Mapping[str, ModelRates] = field(default_factory=dict)
    context_budgets: Mapping[str, int] = field(default_factory=dict)

    def supports(self, model_id: str) -> bool:
        return model_id in self.models

    def rates_for(self, model_id: str) -> Optional[ModelRates]:
        return self.rates.get(model_id)

    def context_budget(self, model_id: str) -> Optional[int]:
        return self.context_budgets.get(model_id)


class ProviderRegistry:
    def __init__(self, descriptors: Iterable[ProviderDescriptor]):
        table = {d.name.lower(): d for d in descriptors}
        self._descriptors: Mapping[str, ProviderDescriptor] = MappingProxyType(table)

    @classmethod
    def from_config(cls, providers_config: dict) -> "ProviderRegistry":
        """Build a registry from the ``providers`` section of settings.yaml."""
        descriptors = []
        for name, cfg in (providers_config or {}).items():
            models = []
            rates = {}
            budgets = {}
            for model_cfg in (cfg or {}).get("models", []):
                model_id = model_cfg["id"]
                models.append(model_id)
                if "input" in model_cfg or "output" in model_cfg:
                    rates[model_id] = ModelRates(
                        input=float(model_cfg.get("input", 0.0)),
                        output=float(model_cfg.get("output", 0.0)),
                    )
                if model_cfg.get("context_budget"):
                    budgets[model_id] = int(model_cfg["context_budget"])
            descriptors.append(
                ProviderDescriptor(
                    name=name,
                    models=tuple(models),
                    rates=MappingProxyType(rates),
                    context_budgets=MappingProxyType(budgets),
                )
            )
        logger.debug("Loaded %d provider descriptors", len(descriptors))
        return cls(descriptors)

    def lookup(self, provider_id: str) -> ProviderDescriptor:
        descriptor = self._descriptors.get((provider_id or "").lower())
        if descriptor is None:
            raise ProviderNotFoundError(f"Unknown provider: {provider_id!r}")
        return descriptor

    def validate_model(self, provider_id: str, model_id: str) -> bool:
        try:
            return self.lookup(provider_id).supports(model_id)
        except ProviderNotFoundError:
            return False

    def rates_for(self, provider_id: str, model_id: str) -> Optional[ModelRates]:
        try:
            return self.lookup(provider_id).rates_for(model_id)
        except ProviderNotFoundError:
            return None

    def providers(self) -> list[str]:
        return list(self._descriptors)

    def list_models(self) -> list[dict]:
        """Flatten the table for listing endpoints."""
        models = []
        for descriptor in self._descriptors.values():
            for model_id in descriptor.models:
                rates = descriptor.rates_for(model_id)
                models.append({
                    "id": model_id,
                    "provider": descriptor.name,
                    "input_per_1k": rates.input if rates else None,
                    "output_per_1k": rates.output if rates else None,
                    "context_budget": descriptor.context_budget(model_id),
                })
        return models

    def __contains__(self, provider_id: str) -> bool:
        return (provider_id or "").lower() in self._descriptors
