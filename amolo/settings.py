"""
Runtime configuration read from the environment
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = "You are AMOLO.AI, a powerful global AI assistant built from Africa."


class Settings(BaseSettings):
    app_name: str = "AMOLO.AI Backend"
    app_version: str = "1.0.0"

    openai_api_key: Optional[str] = None
    openai_api_url: str = "https://api.openai.com/v1/chat/completions"
    default_model: str = "gpt-4o-mini"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_history_messages: int = 10
    request_timeout: float = 60.0

    allowed_origins: str = "http://localhost:3000"
    port: int = 3000
    environment: str = "production"
    log_level: str = "INFO"

    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60
    trust_proxy: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


def get_settings() -> Settings:
    return Settings()
