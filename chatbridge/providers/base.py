"""Provider capability and the shared OpenAI-compatible adapter."""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from contextlib import aclosing
from dataclasses import dataclass

import httpx

from chatbridge.domain.errors import ErrorKind, ProviderError
from chatbridge.domain.identity import ensure_conversation_id
from chatbridge.domain.models import (
    ChatCompletionRequest,
    ChatCompletionResult,
    FinishReason,
    StreamDelta,
    Usage,
)
from chatbridge.logging.audit import RequestTimer, get_logger
from chatbridge.streaming.sse import iter_deltas


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable per-adapter configuration, fixed at construction."""

    api_key: str
    base_url: str
    default_model: str
    default_temperature: float = 0.7
    default_max_tokens: int = 2000
    organization: str = ""
    timeout: float | None = None


class ChatProvider(ABC):
    """Uniform completion capability implemented once per upstream provider."""

    name: str = ""

    @abstractmethod
    async def complete(self, request: ChatCompletionRequest) -> ChatCompletionResult:
        """Run a blocking chat completion.

        Raises:
            ProviderError: every failure, classified.
        """
        ...

    @abstractmethod
    def stream(self, request: ChatCompletionRequest) -> AsyncGenerator[StreamDelta, None]:
        """Stream a chat completion as text deltas.

        Each call performs one upstream request. Closing the generator early
        releases the upstream connection.
        """
        ...

    async def close(self) -> None:
        """Cleanup resources. Override if provider holds connections."""
        pass


class OpenAICompatibleProvider(ChatProvider):
    """Adapter for APIs that speak the OpenAI chat-completions wire format."""

    def __init__(
        self,
        config: ProviderConfig,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        self._config = config
        self._client = client
        self._logger = logger or get_logger(f"providers.{self.name}")

    @property
    def config(self) -> ProviderConfig:
        return self._config

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout))
        return self._client

    @property
    def _completions_url(self) -> str:
        return f"{self._config.base_url.rstrip('/')}/chat/completions"

    @property
    def _models_url(self) -> str:
        return f"{self._config.base_url.rstrip('/')}/models"

    def _build_headers(self) -> dict:
        if not self._config.api_key:
            raise ProviderError(
                ErrorKind.AUTHENTICATION_ERROR,
                provider_message=f"{self.name} API key is not configured",
                provider=self.name,
            )
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._config.api_key}",
        }

    def _build_payload(self, request: ChatCompletionRequest, stream: bool) -> dict:
        return {
            "model": request.model or self._config.default_model,
            "messages": [m.to_wire() for m in request.build_messages()],
            "temperature": (
                request.temperature if request.temperature is not None
                else self._config.default_temperature
            ),
            "max_tokens": request.max_tokens or self._config.default_max_tokens,
            "stream": stream,
        }

    def _error_from_response(self, response: httpx.Response) -> ProviderError:
        """Classify a non-2xx response, reading its body best-effort."""
        try:
            body = response.json()
        except ValueError:
            body = response.text
        return ProviderError.from_status(response.status_code, body=body, provider=self.name)

    def _parse_response(self, data, request: ChatCompletionRequest, model: str) -> ChatCompletionResult:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices[0], dict):
            raise ProviderError(
                ErrorKind.EMPTY_RESPONSE,
                http_status=200,
                provider_message=f"No response from {self.name} API",
                provider=self.name,
            )

        choice = choices[0]
        message = choice.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise ProviderError(
                ErrorKind.EMPTY_RESPONSE,
                http_status=200,
                provider_message=f"{self.name} choice carried no message content",
                provider=self.name,
            )

        return ChatCompletionResult(
            message=content,
            conversation_id=ensure_conversation_id(request.conversation_id),
            # The provider's declared model wins over what was requested
            model=data.get("model") or model,
            usage=Usage.from_wire(data.get("usage")),
            finish_reason=FinishReason.parse(choice.get("finish_reason")),
        )

    async def complete(self, request: ChatCompletionRequest) -> ChatCompletionResult:
        request.validate()
        headers = self._build_headers()
        payload = self._build_payload(request, stream=False)

        client = await self._get_client()
        with RequestTimer() as timer:
            try:
                response = await client.post(self._completions_url, json=payload, headers=headers)
            except httpx.HTTPError as e:
                raise ProviderError.from_transport(e, provider=self.name) from e

        if not response.is_success:
            error = self._error_from_response(response)
            self._logger.warning(
                "Upstream request failed",
                extra={"log_data": {
                    "provider": self.name,
                    "model": payload["model"],
                    "error_kind": error.kind.value,
                    "upstream_status": response.status_code,
                    "latency_ms": timer.elapsed_ms,
                }},
            )
            raise error

        try:
            data = response.json()
        except ValueError:
            raise ProviderError(
                ErrorKind.EMPTY_RESPONSE,
                http_status=response.status_code,
                provider_message=f"{self.name} returned a non-JSON body",
                provider=self.name,
            )

        result = self._parse_response(data, request, payload["model"])
        self._logger.info(
            "Completion received",
            extra={"log_data": {
                "provider": self.name,
                "model": result.model,
                "upstream_status": response.status_code,
                "latency_ms": timer.elapsed_ms,
                "finish_reason": result.finish_reason.value if result.finish_reason else None,
                "total_tokens": result.usage.total_tokens if result.usage else None,
            }},
        )
        return result

    async def stream(self, request: ChatCompletionRequest) -> AsyncGenerator[StreamDelta, None]:
        request.validate()
        headers = self._build_headers()
        payload = self._build_payload(request, stream=True)

        client = await self._get_client()
        try:
            # Leaving this block closes the upstream response, including when
            # the consumer closes this generator early.
            async with client.stream("POST", self._completions_url, json=payload, headers=headers) as response:
                if not response.is_success:
                    await response.aread()
                    error = self._error_from_response(response)
                    self._logger.warning(
                        "Upstream stream failed",
                        extra={"log_data": {
                            "provider": self.name,
                            "model": payload["model"],
                            "error_kind": error.kind.value,
                            "upstream_status": response.status_code,
                        }},
                    )
                    raise error

                deltas = iter_deltas(response.aiter_bytes(), logger=self._logger)
                async with aclosing(deltas):
                    async for delta in deltas:
                        yield delta
        except httpx.HTTPError as e:
            raise ProviderError.from_transport(e, provider=self.name) from e

    async def validate_api_key(self) -> bool:
        """Check the configured key against the provider's model listing."""
        try:
            headers = self._build_headers()
        except ProviderError:
            return False
        client = await self._get_client()
        try:
            response = await client.get(self._models_url, headers=headers)
        except httpx.HTTPError as e:
            self._logger.warning(
                "API key validation failed",
                extra={"log_data": {"provider": self.name, "error": str(e)}},
            )
            return False
        return response.is_success

    async def list_models(self) -> list[str]:
        """Ids of the models the provider exposes to this key."""
        headers = self._build_headers()
        client = await self._get_client()
        try:
            response = await client.get(self._models_url, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError.from_transport(e, provider=self.name) from e

        if not response.is_success:
            raise self._error_from_response(response)
        try:
            data = response.json()
        except ValueError:
            raise ProviderError(
                ErrorKind.EMPTY_RESPONSE,
                http_status=response.status_code,
                provider_message=f"{self.name} returned a non-JSON model list",
                provider=self.name,
            )
        models = data.get("data", []) if isinstance(data, dict) else []
        return [m["id"] for m in models if isinstance(m, dict) and "id" in m]

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
