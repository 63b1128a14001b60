"""OpenAI provider implementation."""

from chatbridge.providers.base import OpenAICompatibleProvider


class OpenAIProvider(OpenAICompatibleProvider):
    """Sends chat completions to the OpenAI API (or an OpenAI-compatible base URL)."""

    name = "openai"

    def _build_headers(self) -> dict:
        headers = super()._build_headers()
        if self._config.organization:
            headers["OpenAI-Organization"] = self._config.organization
        return headers
