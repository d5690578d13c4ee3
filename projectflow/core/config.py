from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )
    database_url: str = Field(default="sqlite:///./projectflow.db")
    log_level: str = Field(default="INFO")

    # Recurring task generation
    recurrence_days_ahead: int = Field(default=30, ge=0)
    recurrence_max_instances: int = Field(default=100, ge=1)
    recurrence_preview_count: int = Field(default=5, ge=1)
    template_delete_policy: Literal["orphan", "cascade"] = Field(default="orphan")

    cors_origins: list[str] = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
