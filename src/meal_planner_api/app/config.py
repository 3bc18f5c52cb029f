"""Application settings."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "meal-planner-api"
    database_url: str = ""
    table_name: str = Field(default="meal_plans", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    openai_api_key: str = ""
    llm_model: str = "gpt-4.1-nano"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout_s: float = Field(default=120.0, ge=0.5)
    llm_max_retries: int = Field(default=1, ge=0)
    llm_backoff_s: float = Field(default=0.2, ge=0.0)
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=32768, ge=1)
    poll_interval_s: float = Field(default=1.0, gt=0.0)
    wait_default_timeout_s: float = Field(default=30.0, ge=0.0)
    wait_max_timeout_s: float = Field(default=300.0, ge=0.0)
    pipeline_workers: int = Field(default=16, ge=1)
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    model_config = SettingsConfigDict(
        env_prefix="MEAL_PLANNER_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
