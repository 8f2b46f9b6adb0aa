"""Factory for creating extraction providers based on configuration.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22

The process shares one provider instance (and therefore one HTTP connection
pool and credential) through ``get_extraction_provider``.
"""

import logging
import threading

from invoice_ai.extraction.base import ExtractionProvider
from invoice_ai.extraction.ollama_provider import OllamaExtractionProvider
from invoice_ai.extraction.openai_provider import OpenAIExtractionProvider
from invoice_ai.shared.config import Settings, get_settings
from invoice_ai.shared.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available extraction providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[ExtractionProvider]] = {
        "openai": OpenAIExtractionProvider,
        "ollama": OllamaExtractionProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[ExtractionProvider]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier (must match Settings.extraction_provider)
            provider_class: Provider class implementing ExtractionProvider interface
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered extraction provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[ExtractionProvider]:
        """Get provider class by name.

        Args:
            name: Provider identifier

        Returns:
            Provider class implementing ExtractionProvider

        Raises:
            ConfigurationError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ConfigurationError(
                f"Unknown extraction provider: '{name}'. Available providers: {available}"
            )
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers.keys())


def create_extraction_provider(settings: Settings) -> ExtractionProvider:
    """Create an extraction provider based on configuration.

    Reads settings.extraction_provider and instantiates the appropriate provider.
    Logs a warning if the provider is not available (e.g., missing API key);
    the credential itself is only required on the first extraction call.

    Args:
        settings: Application settings with extraction_provider field

    Returns:
        Configured extraction provider instance

    Raises:
        ConfigurationError: If configured provider is unknown
    """
    provider_name = settings.extraction_provider
    provider_class = ProviderRegistry.get_provider_class(provider_name)
    provider = provider_class(settings)

    if not provider.is_available():
        logger.warning(
            f"Extraction provider '{provider_name}' is not fully available. "
            f"Check configuration (e.g., API keys, server URL)."
        )

    logger.info(f"Created extraction provider: {provider_name}")
    return provider


_provider: ExtractionProvider | None = None
_provider_lock = threading.Lock()


def get_extraction_provider(settings: Settings | None = None) -> ExtractionProvider:
    """Get the process-wide extraction provider, creating it on first use.

    Args:
        settings: Settings used only when the provider does not exist yet

    Returns:
        Shared ExtractionProvider instance
    """
    global _provider
    if _provider is None:
        with _provider_lock:
            if _provider is None:
                _provider = create_extraction_provider(settings or get_settings())
    return _provider


def reset_extraction_provider() -> None:
    """Drop the shared provider so the next call builds a new one (tests only)."""
    global _provider
    with _provider_lock:
        _provider = None
