"""Tests for chatbridge/service.py — chat service pipeline."""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from chatbridge.config.settings import get_settings
from chatbridge.domain.errors import ErrorKind, ProviderError
from chatbridge.domain.models import ChatCompletionRequest, ChatRole
from chatbridge.logging.audit import request_id_var
from chatbridge.providers.deepseek import DeepSeekProvider
from chatbridge.providers.registry import ProviderRegistry
from chatbridge.service import ChatService
from tests.conftest import ChunkedStream, completion_body, sse_frames


@pytest.fixture
def service_factory(override_settings, make_provider):
    """Factory fixture: a ChatService whose default provider talks to ``handler``."""
    def _make(handler, **extra_settings):
        override_settings(OPENAI_API_KEY="sk-test", **extra_settings)
        settings = get_settings()
        registry = ProviderRegistry(settings)
        registry.register("openai", make_provider(handler))
        logger = MagicMock()
        return ChatService(registry=registry, settings=settings, logger=logger), logger

    return _make


class TestSendMessage:

    async def test_exchange_recorded(self, service_factory):
        service, logger = service_factory(lambda r: httpx.Response(200, json=completion_body()))

        exchange = await service.send_message(ChatCompletionRequest(message="  Hello  "))

        assert exchange.result.message == "Hi there!"
        assert exchange.conversation_id == exchange.result.conversation_id
        user, assistant = exchange.messages
        assert user.role == ChatRole.USER
        assert user.content == "Hello"
        assert assistant.role == ChatRole.ASSISTANT
        assert assistant.content == "Hi there!"
        assert assistant.usage.total_tokens == 8
        assert user.id != assistant.id
        assert user.id.startswith("msg_")

        logger.info.assert_called_once()
        log_data = logger.info.call_args.kwargs["extra"]["log_data"]
        assert log_data["provider"] == "openai"
        assert log_data["total_tokens"] == 8

    async def test_message_trimmed_before_sending(self, service_factory):
        sent = []

        def handler(request):
            sent.append(request)
            return httpx.Response(200, json=completion_body())

        service, _ = service_factory(handler)
        await service.send_message(ChatCompletionRequest(message="\n Hello \n"))
        assert json.loads(sent[0].content)["messages"][-1]["content"] == "Hello"

    async def test_conversation_id_preserved(self, service_factory):
        service, _ = service_factory(lambda r: httpx.Response(200, json=completion_body()))
        exchange = await service.send_message(ChatCompletionRequest(message="Hi", conversation_id="conv-42"))
        assert exchange.conversation_id == "conv-42"

    async def test_message_too_long(self, service_factory):
        sent = []
        service, _ = service_factory(lambda r: sent.append(r), MAX_MESSAGE_LENGTH="10")
        with pytest.raises(ProviderError) as exc_info:
            await service.send_message(ChatCompletionRequest(message="x" * 11))
        assert exc_info.value.kind == ErrorKind.INVALID_REQUEST
        assert "too long" in exc_info.value.provider_message
        assert sent == []

    async def test_blank_message(self, service_factory):
        service, _ = service_factory(lambda r: httpx.Response(200, json=completion_body()))
        with pytest.raises(ProviderError) as exc_info:
            await service.send_message(ChatCompletionRequest(message="   "))
        assert exc_info.value.kind == ErrorKind.INVALID_REQUEST

    async def test_provider_error_logged_and_reraised(self, service_factory):
        service, logger = service_factory(lambda r: httpx.Response(429, json={"error": {"message": "slow"}}))
        with pytest.raises(ProviderError) as exc_info:
            await service.send_message(ChatCompletionRequest(message="Hi"))
        assert exc_info.value.kind == ErrorKind.RATE_LIMITED

        logger.error.assert_called_once()
        log_data = logger.error.call_args.kwargs["extra"]["log_data"]
        assert log_data["error_kind"] == "RateLimited"
        assert log_data["retryable"] is True

    async def test_explicit_provider(self, service_factory, make_provider):
        service, _ = service_factory(lambda r: httpx.Response(500))
        service._registry.register("deepseek", make_provider(
            lambda r: httpx.Response(200, json=completion_body(content="from deepseek", model="deepseek-chat")),
            provider_cls=DeepSeekProvider,
        ))
        exchange = await service.send_message(ChatCompletionRequest(message="Hi"), provider="deepseek")
        assert exchange.result.message == "from deepseek"
        assert exchange.result.model == "deepseek-chat"

    async def test_fresh_request_id_per_call(self, service_factory):
        seen = []

        def handler(request):
            seen.append(request_id_var.get())
            return httpx.Response(200, json=completion_body())

        service, _ = service_factory(handler)
        before = request_id_var.get()
        await service.send_message(ChatCompletionRequest(message="one"))
        await service.send_message(ChatCompletionRequest(message="two"))

        assert all(seen)
        assert seen[0] != seen[1]
        assert request_id_var.get() == before

    async def test_request_id_restored_after_failure(self, service_factory):
        service, _ = service_factory(lambda r: httpx.Response(500))
        before = request_id_var.get()
        with pytest.raises(ProviderError):
            await service.send_message(ChatCompletionRequest(message="Hi"))
        assert request_id_var.get() == before


class TestStreamMessage:

    async def test_stream(self, service_factory):
        service, logger = service_factory(lambda r: httpx.Response(200, content=sse_frames(["Hel", "lo, ", "world"])))

        deltas = [d async for d in service.stream_message(ChatCompletionRequest(message="Hi"))]

        assert deltas == ["Hel", "lo, ", "world"]
        log_data = logger.info.call_args.kwargs["extra"]["log_data"]
        assert log_data["stream"] is True
        assert log_data["response_length"] == len("Hello, world")

    async def test_stream_sets_request_id(self, service_factory):
        seen = []

        def handler(request):
            seen.append(request_id_var.get())
            return httpx.Response(200, content=sse_frames(["x"]))

        service, _ = service_factory(handler)
        before = request_id_var.get()
        async for _ in service.stream_message(ChatCompletionRequest(message="Hi")):
            pass
        async for _ in service.stream_message(ChatCompletionRequest(message="Hi")):
            pass

        assert all(seen)
        assert seen[0] != seen[1]
        assert request_id_var.get() == before

    async def test_stream_upstream_error_logged_and_reraised(self, service_factory):
        service, logger = service_factory(lambda r: httpx.Response(429, json={"error": {"message": "slow"}}))
        with pytest.raises(ProviderError) as exc_info:
            async for _ in service.stream_message(ChatCompletionRequest(message="Hi")):
                pass
        assert exc_info.value.kind == ErrorKind.RATE_LIMITED

        logger.error.assert_called_once()
        log_data = logger.error.call_args.kwargs["extra"]["log_data"]
        assert log_data["error_kind"] == "RateLimited"
        assert log_data["upstream_status"] == 429
        assert log_data["retryable"] is True
        assert log_data["stream"] is True
        logger.info.assert_not_called()

    async def test_stream_dropped_mid_way_logged(self, service_factory):
        first = sse_frames(["partial"], include_role=False).split(b"\n\n")[0] + b"\n\n"
        stream = ChunkedStream([first, httpx.ReadError("connection reset")])
        service, logger = service_factory(lambda r: httpx.Response(200, stream=stream))

        received = []
        with pytest.raises(ProviderError) as exc_info:
            async for delta in service.stream_message(ChatCompletionRequest(message="Hi")):
                received.append(delta)

        assert received == ["partial"]
        assert exc_info.value.kind == ErrorKind.UNAVAILABLE
        log_data = logger.error.call_args.kwargs["extra"]["log_data"]
        assert log_data["error_kind"] == "Unavailable"
        assert log_data["provider"] == "openai"

    async def test_stream_validation(self, service_factory):
        service, _ = service_factory(lambda r: httpx.Response(200, content=sse_frames(["x"])))
        with pytest.raises(ProviderError):
            async for _ in service.stream_message(ChatCompletionRequest(message="")):
                pass


class TestConversations:

    def test_create_conversation(self, service_factory):
        service, _ = service_factory(lambda r: httpx.Response(200))
        first = service.create_conversation()
        assert first.startswith("conv_")
        assert first != service.create_conversation()

    async def test_aclose(self, service_factory):
        service, _ = service_factory(lambda r: httpx.Response(200))
        await service.aclose()
        assert service._registry._providers == {}
