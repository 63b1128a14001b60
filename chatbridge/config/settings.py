"""Application settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Provider selection ("openai" | "deepseek")
    default_provider: str = "openai"

    # OpenAI
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_organization: str = ""
    openai_model: str = "gpt-4o"

    # DeepSeek
    deepseek_api_key: str = ""
    deepseek_base_url: str = "https://api.deepseek.com/v1"
    deepseek_model: str = "deepseek-chat"

    # Request defaults applied when the caller omits them
    default_temperature: float = 0.7
    default_max_tokens: int = 2000
    max_message_length: int = 10000  # characters, enforced by ChatService

    # Upstream HTTP. None = no deadline; callers impose their own.
    request_timeout: float | None = None

    # Logging
    log_level: str = "INFO"
    log_file: str = ""  # Empty = stdout only

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def provider_names(self) -> list[str]:
        """Providers that have an API key configured."""
        names = []
        if self.openai_api_key:
            names.append("openai")
        if self.deepseek_api_key:
            names.append("deepseek")
        return names


@lru_cache
def get_settings() -> Settings:
    return Settings()
