"""Conversation and message identifiers."""

import time
import uuid

CONVERSATION_PREFIX = "conv"
MESSAGE_PREFIX = "msg"


def _generate_id(prefix: str) -> str:
    # Nanosecond timestamp + 48 random bits: distinct even within one clock tick
    return f"{prefix}_{time.time_ns()}_{uuid.uuid4().hex[:12]}"


def ensure_conversation_id(supplied: str | None = None) -> str:
    """Return the caller's conversation id unchanged, or generate a new one.

    No collision checking is done on supplied ids.
    """
    if supplied:
        return supplied
    return _generate_id(CONVERSATION_PREFIX)


def new_message_id() -> str:
    return _generate_id(MESSAGE_PREFIX)
