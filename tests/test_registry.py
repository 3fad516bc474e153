import pytest

from gateway.services.registry import (
    ModelRates,
    ProviderDescriptor,
    ProviderNotFoundError,
    ProviderRegistry,
)


class TestLookup:
    def test_lookup_known_provider(self, registry):
        descriptor = registry.lookup("openai")
        assert descriptor.name == "openai"
        assert "gpt-4" in descriptor.models

    def test_lookup_is_case_insensitive(self, registry):
        assert registry.lookup("OpenAI") is registry.lookup("openai")

    def test_unknown_provider_raises(self, registry):
        with pytest.raises(ProviderNotFoundError):
            registry.lookup("cohere")

    def test_contains(self, registry):
        assert "anthropic" in registry
        assert "huggingface" not in registry


class TestValidateModel:
    def test_valid_pair(self, registry):
        assert registry.validate_model("openai", "gpt-3.5-turbo") is True

    def test_model_from_other_provider(self, registry):
        assert registry.validate_model("openai", "claude-3-opus-20240229") is False

    def test_unknown_provider_is_false(self, registry):
        assert registry.validate_model("cohere", "command") is False


class TestRates:
    def test_rates_loaded_per_1k(self, registry):
        assert registry.rates_for("openai", "gpt-3.5-turbo") == ModelRates(0.0015, 0.002)

    def test_model_without_rates(self, registry):
        assert registry.rates_for("local", "llama3") is None

    def test_context_budget(self, registry):
        assert registry.lookup("openai").context_budget("gpt-4") == 8192
        assert registry.lookup("local").context_budget("llama3") is None


class TestListing:
    def test_list_models_flattens_table(self, registry):
        models = registry.list_models()
        ids = [m["id"] for m in models]
        assert "gpt-4" in ids
        assert "llama3" in ids
        llama = next(m for m in models if m["id"] == "llama3")
        assert llama["provider"] == "local"
        assert llama["input_per_1k"] is None

    def test_providers(self, registry):
        assert set(registry.providers()) == {"openai", "anthropic", "google", "perplexity", "local"}

    def test_registry_is_read_only(self, registry):
        with pytest.raises(TypeError):
            registry._descriptors["new"] = ProviderDescriptor("new", ())

    def test_built_from_descriptors(self):
        registry = ProviderRegistry([ProviderDescriptor("Custom", ("m1",))])
        assert registry.validate_model("custom", "m1")

    def test_empty_config(self):
        assert ProviderRegistry.from_config({}).providers() == []


class TestShippedConfig:
    def test_settings_yaml_loads(self):
        from gateway.config import Settings
        registry = ProviderRegistry.from_config(Settings().providers_config)
        assert registry.validate_model("openai", "gpt-3.5-turbo")
        assert registry.rates_for("openai", "gpt-3.5-turbo") == ModelRates(0.0015, 0.002)
        assert "local" in registry
