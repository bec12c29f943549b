"""
Unit tests for the source registry
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from core.exceptions import DuplicateSourceError, RegistryFrozenError, UnknownSourceError
from ingestion.registry import FALLBACK_SOURCE_KEY, SourceRegistry, build_default_registry
from ingestion.sources.manatee_pao import MANATEE_PAO_CONFIG, ManateePaoAdapter
from ingestion.sources.sarasota_pao import SARASOTA_PAO_CONFIG


def manatee_factory(config):
    return ManateePaoAdapter(config)


@pytest.fixture
def registry():
    registry = SourceRegistry(default_source=MANATEE_PAO_CONFIG.source_key)
    registry.register(MANATEE_PAO_CONFIG.source_key, MANATEE_PAO_CONFIG, manatee_factory)
    return registry


class TestSourceRegistry:

    def test_register_and_list_in_order(self, registry):
        registry.register(SARASOTA_PAO_CONFIG.source_key, SARASOTA_PAO_CONFIG, lambda config: None)

        assert registry.keys() == ["fl-manatee-pa", "fl-sarasota-pa"]
        assert [summary.source_key for summary in registry.list()] == registry.keys()
        assert len(registry) == 2
        assert "fl-sarasota-pa" in registry

    def test_duplicate_key_rejected(self, registry):
        with pytest.raises(DuplicateSourceError):
            registry.register(MANATEE_PAO_CONFIG.source_key, MANATEE_PAO_CONFIG, manatee_factory)

    def test_frozen_registry_rejects_registration(self, registry):
        registry.freeze()
        assert registry.frozen

        with pytest.raises(RegistryFrozenError):
            registry.register(SARASOTA_PAO_CONFIG.source_key, SARASOTA_PAO_CONFIG, lambda config: None)

    def test_config_key_must_match(self, registry):
        with pytest.raises(ValueError):
            registry.register("fl-other-pa", SARASOTA_PAO_CONFIG, lambda config: None)

    def test_unknown_source(self, registry):
        with pytest.raises(UnknownSourceError) as exc_info:
            registry.get("tx-harris-ad")

        assert exc_info.value.context["source_key"] == "tx-harris-ad"
        assert exc_info.value.context["registered"] == ["fl-manatee-pa"]

    def test_adapter_created_once(self, registry):
        adapter = registry.get("fl-manatee-pa")

        assert isinstance(adapter, ManateePaoAdapter)
        assert registry.get("fl-manatee-pa") is adapter

    def test_resolve_source_key(self, registry):
        assert registry.resolve_source_key(None) == "fl-manatee-pa"
        assert registry.resolve_source_key("") == "fl-manatee-pa"
        assert registry.resolve_source_key("fl-sarasota-pa") == "fl-sarasota-pa"
        assert registry.resolve_source_key("tx-harris-ad") == "tx-harris-ad"

    def test_unregistered_default_falls_back(self):
        registry = SourceRegistry(default_source="fl-nowhere-pa")
        assert registry.resolve_source_key() == FALLBACK_SOURCE_KEY


class TestDefaultRegistry:

    def test_builtin_sources(self):
        registry = build_default_registry()

        assert registry.keys() == ["fl-manatee-pa", "fl-sarasota-pa", "fl-stellar-realist"]
        assert registry.frozen
        assert registry.default_source == "fl-manatee-pa"


class TestRegistryClose:

    @pytest.mark.asyncio
    async def test_close_only_touches_created_adapters(self):
        adapter = MagicMock()
        adapter.close = AsyncMock()
        unused_factory = MagicMock()

        registry = SourceRegistry()
        registry.register(MANATEE_PAO_CONFIG.source_key, MANATEE_PAO_CONFIG, lambda config: adapter)
        registry.register(SARASOTA_PAO_CONFIG.source_key, SARASOTA_PAO_CONFIG, unused_factory)
        registry.get(MANATEE_PAO_CONFIG.source_key)

        await registry.close()

        adapter.close.assert_awaited_once()
        unused_factory.assert_not_called()
