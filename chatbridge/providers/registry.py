"""Provider registry: builds and caches one adapter per configured provider name."""

import logging

from chatbridge.config.settings import Settings, get_settings
from chatbridge.domain.errors import ErrorKind, ProviderError
from chatbridge.providers.base import ChatProvider, OpenAICompatibleProvider, ProviderConfig
from chatbridge.providers.deepseek import DeepSeekProvider
from chatbridge.providers.openai import OpenAIProvider

_PROVIDER_CLASSES: dict[str, type[OpenAICompatibleProvider]] = {
    "openai": OpenAIProvider,
    "deepseek": DeepSeekProvider,
}


def build_provider_config(name: str, settings: Settings) -> ProviderConfig:
    """Snapshot the settings for one provider into an immutable config."""
    if name == "openai":
        return ProviderConfig(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            default_model=settings.openai_model,
            default_temperature=settings.default_temperature,
            default_max_tokens=settings.default_max_tokens,
            organization=settings.openai_organization,
            timeout=settings.request_timeout,
        )
    if name == "deepseek":
        return ProviderConfig(
            api_key=settings.deepseek_api_key,
            base_url=settings.deepseek_base_url,
            default_model=settings.deepseek_model,
            default_temperature=settings.default_temperature,
            default_max_tokens=settings.default_max_tokens,
            timeout=settings.request_timeout,
        )
    raise _unknown_provider(name)


def _unknown_provider(name: str) -> ProviderError:
    return ProviderError(
        ErrorKind.INVALID_REQUEST,
        provider_message=f"Unknown provider: {name}",
    )


class ProviderRegistry:
    """Owns the adapters built for one application.

    Adapters are created on first use and reused afterwards; aclose() shuts
    down their connection pools.
    """

    def __init__(self, settings: Settings | None = None, logger: logging.Logger | None = None):
        self._settings = settings or get_settings()
        self._logger = logger
        self._providers: dict[str, ChatProvider] = {}

    @property
    def default_name(self) -> str:
        return self._settings.default_provider

    @property
    def configured_names(self) -> list[str]:
        """Providers callable right now: those with an API key, then any registered adapters."""
        names = self._settings.provider_names
        names.extend(name for name in self._providers if name not in names)
        return names

    def get(self, name: str | None = None) -> ChatProvider:
        """Get or create the adapter for ``name`` (default provider when None)."""
        name = name or self.default_name
        if name in self._providers:
            return self._providers[name]

        provider_cls = _PROVIDER_CLASSES.get(name)
        if provider_cls is None:
            raise _unknown_provider(name)

        config = build_provider_config(name, self._settings)
        self._providers[name] = provider_cls(config, logger=self._logger)
        return self._providers[name]

    def register(self, name: str, provider: ChatProvider) -> None:
        """Install a prebuilt adapter (custom transport, test double)."""
        self._providers[name] = provider

    async def aclose(self) -> None:
        """Gracefully shut down all provider connections."""
        for provider in self._providers.values():
            await provider.close()
        self._providers.clear()
