"""Support server configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(ENV_FILE, override=False)


class SupportSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SUPPORT_MAS_", env_file=str(ENV_FILE), extra="ignore")

    host: str = "0.0.0.0"
    port: int = 7002
    log_level: str = "INFO"

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "SUPPORT_MAS_OPENAI_API_KEY"),
    )
    openai_model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    openai_timeout_s: float = 20.0
    mock_llm: bool = False
    llm_max_attempts: int = Field(default=2, ge=1)

    # "inproc" serves tool calls from the bundled mock tool server.
    tool_api_base_url: str = "http://localhost:7001"
    tool_timeout_s: float = Field(default=30.0, gt=0)
    tool_max_attempts: int = Field(default=2, ge=1)
    max_tool_iterations: int = Field(default=5, ge=1)

    tool_failure_threshold: int = Field(default=3, ge=1)
    tool_reset_timeout_s: float = 15.0
    llm_failure_threshold: int = Field(default=5, ge=1)
    llm_reset_timeout_s: float = 30.0
    circuit_success_threshold: int = Field(default=2, ge=1)
    circuit_monitoring_window_s: float = 60.0

    session_rate_limit: int = Field(default=30, ge=1)
    session_rate_window_s: float = 60.0

    trace_level: Literal["minimal", "standard", "verbose"] = "standard"
    trace_persist: bool = False
    trace_dir: str = "traces"

    config_path: str | None = None


@lru_cache(maxsize=1)
def get_settings() -> SupportSettings:
    return SupportSettings()
