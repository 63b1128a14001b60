"""Chat service: the entry point transport layers (GraphQL, REST) call into.

Pipeline: Validate -> Select provider -> Complete/Stream -> Record exchange -> Log
"""

import dataclasses
import logging
from collections.abc import AsyncGenerator
from contextlib import aclosing
from datetime import datetime, timezone

from chatbridge.config.settings import Settings, get_settings
from chatbridge.domain.errors import ErrorKind, ProviderError
from chatbridge.domain.identity import ensure_conversation_id, new_message_id
from chatbridge.domain.models import (
    ChatCompletionRequest,
    ChatExchange,
    ChatRole,
    ConversationMessage,
    StreamDelta,
)
from chatbridge.logging.audit import RequestTimer, generate_request_id, get_logger, request_id_var
from chatbridge.providers.registry import ProviderRegistry


class ChatService:

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
    ):
        self._settings = settings or get_settings()
        self._registry = registry or ProviderRegistry(self._settings)
        self._logger = logger or get_logger("service")

    def _prepare(self, request: ChatCompletionRequest) -> ChatCompletionRequest:
        """Apply caller-side limits and trim the message."""
        request.validate()
        limit = self._settings.max_message_length
        if len(request.message) > limit:
            raise ProviderError(
                ErrorKind.INVALID_REQUEST,
                provider_message=f"message is too long ({len(request.message)} > {limit} characters)",
            )
        return dataclasses.replace(request, message=request.message.strip())

    def create_conversation(self) -> str:
        return ensure_conversation_id(None)

    async def send_message(self, request: ChatCompletionRequest, provider: str | None = None) -> ChatExchange:
        """Run one blocking completion and return it as a conversation exchange."""
        token = request_id_var.set(generate_request_id())
        try:
            return await self._send(request, provider)
        finally:
            request_id_var.reset(token)

    async def _send(self, request: ChatCompletionRequest, provider: str | None) -> ChatExchange:
        request = self._prepare(request)
        adapter = self._registry.get(provider)

        with RequestTimer() as timer:
            try:
                result = await adapter.complete(request)
            except ProviderError as e:
                self._log_failure("Chat completion failed", adapter.name, request, e)
                raise

        now = datetime.now(timezone.utc)
        exchange = ChatExchange(
            conversation_id=result.conversation_id,
            result=result,
            messages=(
                ConversationMessage(
                    id=new_message_id(), role=ChatRole.USER, content=request.message, timestamp=now,
                ),
                ConversationMessage(
                    id=new_message_id(), role=ChatRole.ASSISTANT, content=result.message,
                    timestamp=now, usage=result.usage,
                ),
            ),
        )

        self._logger.info(
            "Chat completion succeeded",
            extra={"log_data": {
                "provider": adapter.name,
                "model": result.model,
                "conversation_id": result.conversation_id,
                "message_length": len(request.message),
                "response_length": len(result.message),
                "total_tokens": result.usage.total_tokens if result.usage else 0,
                "has_system_prompt": bool(request.system_prompt),
                "latency_ms": timer.elapsed_ms,
            }},
        )
        return exchange

    async def stream_message(
        self, request: ChatCompletionRequest, provider: str | None = None
    ) -> AsyncGenerator[StreamDelta, None]:
        """Validate and stream deltas from the selected provider."""
        # Restored by value: the generator may be finalized outside the context it ran in
        previous_id = request_id_var.get()
        request_id_var.set(generate_request_id())
        try:
            request = self._prepare(request)
            adapter = self._registry.get(provider)

            chars = 0
            with RequestTimer() as timer:
                try:
                    async with aclosing(adapter.stream(request)) as deltas:
                        async for delta in deltas:
                            chars += len(delta)
                            yield delta
                except ProviderError as e:
                    self._log_failure("Chat stream failed", adapter.name, request, e, stream=True)
                    raise

            self._logger.info(
                "Stream completed",
                extra={"log_data": {
                    "provider": adapter.name,
                    "conversation_id": request.conversation_id,
                    "stream": True,
                    "response_length": chars,
                    "latency_ms": timer.elapsed_ms,
                }},
            )
        finally:
            request_id_var.set(previous_id)

    def _log_failure(
        self, message: str, provider: str, request: ChatCompletionRequest, error: ProviderError, **fields
    ) -> None:
        self._logger.error(
            message,
            extra={"log_data": {
                "provider": provider,
                "conversation_id": request.conversation_id,
                "error_kind": error.kind.value,
                "upstream_status": error.http_status,
                "retryable": error.retryable,
                "message_length": len(request.message),
                **fields,
            }},
        )

    async def aclose(self) -> None:
        await self._registry.aclose()
