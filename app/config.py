from typing import Optional

from pydantic_settings import BaseSettings

DEFAULT_LIVE_ACK_MESSAGE = "Thanks for your message! An agent will respond shortly."


class Settings(BaseSettings):
    database_url: str = "sqlite:///./chatwidget.db"
    store_backend: str = "sql"  # sql, memory
    debug: bool = False
    log_level: str = "INFO"

    # Simulated typing delay before a reply is emitted
    typing_delay_min_ms: int = 1000
    typing_delay_max_ms: int = 1500

    live_ack_message: str = DEFAULT_LIVE_ACK_MESSAGE

    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    ai_default_model: str = "gpt-3.5-turbo"
    ai_timeout_seconds: float = 30.0

    cors_allow_origins: str = "*"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    return settings
