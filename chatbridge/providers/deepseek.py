"""DeepSeek provider implementation.

DeepSeek serves the OpenAI chat-completions schema at its own base URL, so
only the name and configured defaults differ from the OpenAI adapter.
"""

from chatbridge.providers.base import OpenAICompatibleProvider


class DeepSeekProvider(OpenAICompatibleProvider):
    name = "deepseek"
