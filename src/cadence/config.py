from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Cadence"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8788
    log_level: str = "INFO"

    database_url: str = "sqlite:///./data/cadence.db"
    database_echo: bool = False
    data_dir: Path = Path("./data")

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model_extractor: str = "gpt-5-mini"
    openai_model_writer: str = "gpt-5-mini"
    openai_timeout_sec: int = 60

    local_llm_enabled: bool = True
    local_llm_base_url: str = "http://localhost:11434/v1"
    local_llm_api_key: str = "local"
    local_llm_model: str = "qwen2.5:14b-instruct"
    local_llm_timeout_sec: int = 90

    llm_router_default: str = "openai"
    llm_router_extract_provider: str = "openai"
    llm_router_writer_provider: str = "openai"

    max_upload_bytes: int = 10 * 1024 * 1024
    extraction_max_chars: int = 60000
    improve_text_min_chars: int = 10
    improve_text_max_chars: int = 10000

    duplicate_execution_policy: str = "append"
    template_history_limit: int = 100

    cors_origins: str = "http://127.0.0.1:8788"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("duplicate_execution_policy")
    @classmethod
    def validate_duplicate_policy(cls, value: str) -> str:
        allowed = {"append", "reject"}
        if value not in allowed:
            raise ValueError(f"duplicate_execution_policy must be one of {sorted(allowed)}")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
