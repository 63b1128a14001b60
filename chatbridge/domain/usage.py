"""Token usage accounting.

Providers report exact token counts on blocking responses but usually omit
them from streams. When counts are missing they are estimated at roughly four
characters per token. Estimates are flagged with ``Usage.estimated`` and are
an approximation only; callers needing exact counts should use the blocking
path.
"""

import math
from collections.abc import AsyncIterator

from chatbridge.domain.identity import ensure_conversation_id
from chatbridge.domain.models import ChatCompletionRequest, ChatCompletionResult, StreamDelta, Usage

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def reconcile(usage: Usage | None, prompt_text: str, completion_text: str) -> Usage:
    """Return provider usage unchanged, or an estimate when it was omitted."""
    if usage is not None:
        return usage

    prompt_tokens = estimate_tokens(prompt_text)
    completion_tokens = estimate_tokens(completion_text)
    return Usage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        estimated=True,
    )


async def collect_stream(
    deltas: AsyncIterator[StreamDelta],
    request: ChatCompletionRequest,
    model: str,
) -> ChatCompletionResult:
    """Drain a delta stream into the same result shape as a blocking call."""
    parts = [delta async for delta in deltas]
    text = "".join(parts)
    return ChatCompletionResult(
        message=text,
        conversation_id=ensure_conversation_id(request.conversation_id),
        model=model,
        usage=reconcile(None, request.prompt_text, text),
    )
