"""Join settings from the environment (JOIN_* variables or a .env file).

get_settings() is cached, so the environment is read once per process.
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="JOIN_", env_file=".env", case_sensitive=False, extra="ignore")

    # Evaluator
    build_side: str = "right"

    # Display
    display_max_width: int = 24

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    @field_validator("build_side", "log_format", "log_level", mode="before")
    @classmethod
    def normalize(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("build_side")
    @classmethod
    def check_build_side(cls, v: str) -> str:
        if v not in ("right", "left", "auto"):
            raise ValueError(f"build_side must be one of right, left, auto; got {v!r}")
        return v

    @field_validator("log_format")
    @classmethod
    def check_log_format(cls, v: str) -> str:
        if v not in ("text", "json"):
            raise ValueError(f"log_format must be text or json; got {v!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level {v!r}")
        return v

    @field_validator("display_max_width")
    @classmethod
    def check_width(cls, v: int) -> int:
        if v < 2:
            raise ValueError("display_max_width must be at least 2")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
