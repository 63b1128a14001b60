"""Uniform request/result types shared by every provider adapter."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from chatbridge.domain.errors import ErrorKind, ProviderError

# A single incremental fragment of streamed assistant text.
StreamDelta = str


class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    FUNCTION_CALL = "function_call"

    @classmethod
    def parse(cls, value) -> "FinishReason | None":
        """Map a provider finish_reason string; unknown or missing values become None."""
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class ChatMessage:
    role: ChatRole
    content: str

    def __post_init__(self):
        # Accept plain role strings ("user") from callers
        try:
            role = ChatRole(self.role)
        except ValueError:
            raise ProviderError(
                ErrorKind.INVALID_REQUEST,
                provider_message=f"unsupported message role: {self.role!r}",
            ) from None
        if not isinstance(self.content, str):
            raise ProviderError(ErrorKind.INVALID_REQUEST, provider_message="message content must be a string")
        object.__setattr__(self, "role", role)

    @classmethod
    def coerce(cls, value) -> "ChatMessage":
        """Build a message from a ``{"role": ..., "content": ...}`` mapping."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, dict) or "role" not in value or "content" not in value:
            raise ProviderError(
                ErrorKind.INVALID_REQUEST,
                provider_message="history entries need a role and content",
            )
        return cls(role=value["role"], content=value["content"])

    def to_wire(self) -> dict:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class ChatCompletionRequest:
    """A provider-agnostic chat request.

    Fields left as None are filled from the adapter's configured defaults.
    ``history`` holds earlier turns in conversation order; it is sent between
    the system prompt and the current message.
    """

    message: str
    conversation_id: str | None = None
    system_prompt: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    history: tuple[ChatMessage, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "history", tuple(ChatMessage.coerce(m) for m in self.history))

    def validate(self) -> None:
        """Reject requests no provider could answer.

        Raises:
            ProviderError: kind=InvalidRequest describing the offending field.
        """
        if not isinstance(self.message, str) or not self.message.strip():
            raise ProviderError(ErrorKind.INVALID_REQUEST, provider_message="message must be a non-empty string")
        if self.temperature is not None and (
            not isinstance(self.temperature, (int, float)) or isinstance(self.temperature, bool)
            or not 0 <= self.temperature <= 2
        ):
            raise ProviderError(ErrorKind.INVALID_REQUEST, provider_message="temperature must be between 0 and 2")
        if self.max_tokens is not None and (
            not isinstance(self.max_tokens, int) or isinstance(self.max_tokens, bool) or self.max_tokens <= 0
        ):
            raise ProviderError(ErrorKind.INVALID_REQUEST, provider_message="max_tokens must be a positive integer")

    def build_messages(self) -> list[ChatMessage]:
        """System prompt first, then history in order, then the current user message."""
        messages = []
        if self.system_prompt:
            messages.append(ChatMessage(role=ChatRole.SYSTEM, content=self.system_prompt))
        messages.extend(self.history)
        messages.append(ChatMessage(role=ChatRole.USER, content=self.message))
        return messages

    @property
    def prompt_text(self) -> str:
        """All text sent to the provider, used for token estimation."""
        return "".join(m.content for m in self.build_messages())


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    estimated: bool = False  # True when counted by heuristic, not by the provider

    @classmethod
    def from_wire(cls, data) -> "Usage | None":
        """Read a provider usage block; None when absent or not made of counts."""
        if not isinstance(data, dict):
            return None
        prompt = _token_count(data.get("prompt_tokens"))
        completion = _token_count(data.get("completion_tokens"))
        if prompt is None or completion is None:
            return None
        total = data.get("total_tokens")
        if total is None:
            total = prompt + completion
        else:
            total = _token_count(total)
            if total is None:
                return None
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def _token_count(value) -> int | None:
    # Missing counts are zero; anything but a non-negative whole number is invalid
    if value is None:
        return 0
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or value < 0:
        return None
    return value


@dataclass(frozen=True)
class ChatCompletionResult:
    message: str
    conversation_id: str
    model: str
    usage: Usage | None = None
    finish_reason: FinishReason | None = None


@dataclass(frozen=True)
class ConversationMessage:
    """One stored turn of a conversation, as handed to an external store."""

    id: str
    role: ChatRole
    content: str
    timestamp: datetime
    usage: Usage | None = None


@dataclass(frozen=True)
class ChatExchange:
    """A completed request/response pair within a conversation."""

    conversation_id: str
    result: ChatCompletionResult
    messages: tuple[ConversationMessage, ...] = field(default_factory=tuple)
