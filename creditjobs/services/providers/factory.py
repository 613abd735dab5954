"""
Factory for creating provider adapters from explicit configuration.
"""
import logging
from functools import lru_cache

from creditjobs.core.config import settings as app_settings
from creditjobs.services.providers.a2e import A2EAdapter
from creditjobs.services.providers.atlascloud import AtlasCloudAdapter
from creditjobs.services.providers.base import ProviderAdapter
from creditjobs.services.providers.fal import FalAdapter
from creditjobs.services.providers.replicate import ReplicateAdapter

logger = logging.getLogger(__name__)


class ProviderAdapterFactory:
    """Factory for creating provider adapters."""

    PROVIDERS = {
        "replicate": ReplicateAdapter,
        "a2e": A2EAdapter,
        "atlascloud": AtlasCloudAdapter,
        "fal": FalAdapter,
    }

    @classmethod
    def create(cls, provider_name: str, config: dict) -> ProviderAdapter:
        """
        Create adapter instance by name.

        Raises:
            ValueError: If provider name is unknown
        """
        adapter_class = cls.PROVIDERS.get(provider_name.lower())
        if not adapter_class:
            available = ", ".join(cls.PROVIDERS.keys())
            raise ValueError(f"Unknown provider: {provider_name}. Available providers: {available}")

        adapter = adapter_class(config)
        if not adapter.is_available():
            logger.warning("provider_not_configured", extra={"provider": provider_name})
        return adapter

    @classmethod
    def create_from_settings(cls, settings, provider_name: str) -> ProviderAdapter:
        """Build the adapter config for `provider_name` from application settings."""
        transport = {
            "max_attempts": settings.provider_http_max_attempts,
            "backoff_seconds": settings.provider_http_backoff_seconds,
            "respect_retry_after": settings.provider_http_respect_retry_after,
        }
        if provider_name == "replicate":
            config = {
                "api_token": settings.replicate_api_token,
                "api_url": settings.replicate_api_url,
                "timeout": settings.replicate_timeout,
            }
        elif provider_name == "a2e":
            config = {
                "api_key": settings.a2e_api_key,
                "api_url": settings.a2e_api_url,
                "timeout": settings.a2e_timeout,
            }
        elif provider_name == "atlascloud":
            config = {
                "api_key": settings.atlascloud_api_key,
                "api_url": settings.atlascloud_api_url,
                "timeout": settings.atlascloud_timeout,
            }
        elif provider_name == "fal":
            config = {
                "api_key": settings.fal_api_key,
                "queue_url": settings.fal_queue_url,
                "timeout": settings.fal_timeout,
            }
        else:
            raise ValueError(f"Provider {provider_name} not supported in settings")

        return cls.create(provider_name, {**config, **transport})

    @classmethod
    def registry_from_settings(cls, settings) -> dict[str, ProviderAdapter]:
        """One adapter per known provider, keyed by name."""
        return {name: cls.create_from_settings(settings, name) for name in cls.PROVIDERS}

    @classmethod
    def get_available_providers(cls) -> list[str]:
        return list(cls.PROVIDERS.keys())


@lru_cache
def default_registry() -> dict[str, ProviderAdapter]:
    """Process-wide adapters (one pooled HTTP client each) built from settings."""
    return ProviderAdapterFactory.registry_from_settings(app_settings)
