from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the chat server."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    google_api_key: str | None = Field(default=None, alias="GOOGLE_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash", alias="GEMINI_MODEL")
    llm_temperature: float = Field(default=0.7, alias="MODEL_TEMPERATURE")
    llm_max_output_tokens: int = Field(default=4096, alias="MODEL_MAX_OUTPUT_TOKENS")

    # Replaces the bundled prompt sections when set
    system_prompt: str | None = Field(default=None, alias="SYSTEM_PROMPT")

    # Number of trailing messages the agent sees per turn
    history_max_messages: int = Field(default=10, alias="HISTORY_MAX_MESSAGES")

    firebase_service_account_key: str | None = Field(
        default=None, alias="FIREBASE_SERVICE_ACCOUNT_KEY"
    )
    store_backend: Literal["firestore", "memory"] = Field(default="firestore", alias="STORE_BACKEND")
    # "header" trusts X-User-Id and is only meant for local development
    auth_backend: Literal["firebase", "header"] = Field(default="firebase", alias="AUTH_BACKEND")

    # Max envelopes buffered per stream before the relay waits on the client
    stream_high_water_mark: int = Field(default=1024, alias="STREAM_HIGH_WATER_MARK")

    # Tools
    google_books_api_key: str | None = Field(default=None, alias="GOOGLE_BOOKS_API_KEY")
    web_search_max_results: int = Field(default=5, alias="WEB_SEARCH_MAX_RESULTS")
    tool_http_timeout: float = Field(default=15.0, alias="TOOL_HTTP_TIMEOUT")
    transcript_max_chars: int = Field(default=12000, alias="TRANSCRIPT_MAX_CHARS")

    # FastAPI configuration
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8080, alias="APP_PORT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS")


@lru_cache
def get_settings() -> Settings:
    """Return memoized settings so multiple imports share a single instance."""

    return Settings()  # type: ignore[arg-type]
