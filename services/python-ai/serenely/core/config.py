"""
Central configuration. Every runtime knob is read from the environment or `.env`.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # --- Environment ---
    env: str = Field(default="development", alias="ENV")
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    debug: bool = Field(default=False, alias="DEBUG")

    # --- Storage ---
    storage_backend: Literal["sql", "memory"] = Field(default="sql", alias="STORAGE_BACKEND")
    database_url: str = Field(default="sqlite+aiosqlite:///./serenely.db", alias="DATABASE_URL")

    # --- LLM ---
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    llm_model: str = Field(default="gpt-5.1", alias="LLM_MODEL")
    llm_fallback_model: str = Field(default="gpt-5.1-mini", alias="LLM_FALLBACK_MODEL")
    llm_temperature: float = Field(default=0.7, alias="LLM_TEMPERATURE")
    llm_timeout_seconds: float = Field(default=60.0, alias="LLM_TIMEOUT_SECONDS")

    # --- Session ---
    daily_message_limit: int = Field(default=30, alias="DAILY_MESSAGE_LIMIT")
    app_language: Literal["uk", "en"] = Field(default="uk", alias="APP_LANGUAGE")

    # --- API ---
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")


@lru_cache
def get_settings() -> Settings:
    return Settings()
