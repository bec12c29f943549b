"""
Source registry: source key -> (config, adapter factory).

Built once at process start by build_default_registry, frozen, and then
passed by reference to the pipeline and the API. Adapters are created
lazily on first use and cached.
"""

from typing import Callable, Dict, List, Optional
import logging

from core.config import settings as default_settings
from core.exceptions import DuplicateSourceError, RegistryFrozenError, UnknownSourceError
from ingestion.base import SourceAdapter
from schemas.source import SourceConfig, SourceSummary

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[SourceConfig], SourceAdapter]

FALLBACK_SOURCE_KEY = "fl-manatee-pa"


class SourceRegistry:
    """
    Ordered mapping of registered sources.

    Insertion order is preserved for list(); lookups of unknown keys raise
    UnknownSourceError.
    """

    def __init__(self, default_source: Optional[str] = None):
        self._configs: Dict[str, SourceConfig] = {}
        self._factories: Dict[str, AdapterFactory] = {}
        self._adapters: Dict[str, SourceAdapter] = {}
        self._frozen = False
        self.default_source = default_source or FALLBACK_SOURCE_KEY

    def register(self, key: str, config: SourceConfig, adapter_factory: AdapterFactory) -> None:
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register {key!r}: registry is frozen",
                context={"source_key": key},
            )
        if key in self._configs:
            raise DuplicateSourceError(
                f"Source {key!r} is already registered",
                context={"source_key": key},
            )
        if config.source_key != key:
            raise ValueError(f"Config key {config.source_key!r} does not match {key!r}")

        self._configs[key] = config
        self._factories[key] = adapter_factory
        logger.debug(f"Registered source {key} ({config.name})")

    def freeze(self) -> "SourceRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def has(self, key: Optional[str]) -> bool:
        return key in self._configs

    def keys(self) -> List[str]:
        return list(self._configs)

    def get_config(self, key: str) -> SourceConfig:
        try:
            return self._configs[key]
        except KeyError:
            raise UnknownSourceError(
                f"Unknown source: {key}",
                context={"source_key": key, "registered": self.keys()},
            ) from None

    def get(self, key: str) -> SourceAdapter:
        """Adapter for ``key``, created through its factory on first use."""
        config = self.get_config(key)
        adapter = self._adapters.get(key)
        if adapter is None:
            adapter = self._factories[key](config)
            self._adapters[key] = adapter
        return adapter

    def list(self) -> List[SourceSummary]:
        return [SourceSummary.from_config(config) for config in self._configs.values()]

    def resolve_source_key(self, key: Optional[str] = None) -> str:
        """
        ``key`` when given; otherwise the default source.

        An unknown explicit key is returned as-is so the caller gets an
        UnknownSourceError instead of silently ingesting from another source.
        """
        if key:
            return key
        if self.has(self.default_source):
            return self.default_source
        return FALLBACK_SOURCE_KEY

    async def close(self) -> None:
        """Close every adapter created so far."""
        for key, adapter in self._adapters.items():
            logger.debug(f"Closing adapter {key}")
            await adapter.close()

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        return len(self._configs)


def build_default_registry(
    app_settings=None,
    browser=None,
    http_client=None,
    mls_browser=None,
) -> SourceRegistry:
    """
    Register the built-in sources and freeze.

    Args:
        app_settings: Settings instance (defaults to core.config.settings)
        browser: BrowserDriver shared by the browser-driven assessor sources
        http_client: httpx.AsyncClient for static HTML sources
        mls_browser: BrowserDriver carrying the pre-authenticated MLS session;
            the MLS adapter builds its own from settings when omitted
    """
    from ingestion.sources.manatee_pao import MANATEE_PAO_CONFIG, ManateePaoAdapter
    from ingestion.sources.sarasota_pao import SARASOTA_PAO_CONFIG, SarasotaPaoAdapter
    from ingestion.sources.stellar_realist import STELLAR_REALIST_CONFIG, StellarRealistAdapter

    app_settings = app_settings or default_settings
    registry = SourceRegistry(default_source=app_settings.PARCEL_DEFAULT_SOURCE)

    registry.register(
        MANATEE_PAO_CONFIG.source_key,
        MANATEE_PAO_CONFIG,
        lambda config: ManateePaoAdapter(config, browser=browser),
    )
    registry.register(
        SARASOTA_PAO_CONFIG.source_key,
        SARASOTA_PAO_CONFIG,
        lambda config: SarasotaPaoAdapter(config, client=http_client),
    )
    registry.register(
        STELLAR_REALIST_CONFIG.source_key,
        STELLAR_REALIST_CONFIG,
        lambda config: StellarRealistAdapter(config, browser=mls_browser),
    )

    logger.info(f"Source registry ready: {', '.join(registry.keys())}")
    return registry.freeze()
