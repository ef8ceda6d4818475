from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"), env_file_encoding="utf-8"
    )

    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    anthropic_max_retries: int = 0
    max_tokens: int = 4096
    thinking_budget_tokens: int = 5000
    max_tool_rounds: int = 10
    tool_timeout_seconds: float = 30.0
    max_tool_output_kb: int = 30
    fpl_api_base: str = "https://fantasy.premierleague.com/api"
    fpl_timeout_seconds: float = 10.0
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
