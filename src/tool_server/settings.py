"""Mock tool server configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(ENV_FILE, override=False)


class ToolServerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SUPPORT_TOOLS_", env_file=str(ENV_FILE), extra="ignore")

    host: str = "0.0.0.0"
    port: int = 7001
    log_level: str = "INFO"

    # Endpoints listed here answer HTTP 503, to exercise client-side resilience.
    failing_endpoints: list[str] = Field(default_factory=list)


@lru_cache(maxsize=1)
def get_settings() -> ToolServerSettings:
    return ToolServerSettings()
