import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class Settings(BaseSettings):
    """
    Central configuration for the habit patterns backend.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    env: str = Field(default="local", alias="ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    mongo_uri: str = Field(default="mongodb://localhost:27017", alias="MONGO_URI")
    mongo_database_name: str = Field(default="habits", alias="MONGO_DATABASE_NAME")
    mongo_habit_collection_name: str = Field(default="habits", alias="MONGO_HABIT_COLLECTION_NAME")

    # Without a key the pattern agent is skipped and rule-based insights are served
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key for the pattern agent",
        alias="OPENAI_API_KEY_HABITAI_PATTERNS",
    )
    openai_pattern_model: str = Field(default="gpt-4o", alias="OPENAI_PATTERN_MODEL")
    pattern_agent_timeout_seconds: float = Field(default=15.0, alias="PATTERN_AGENT_TIMEOUT_SECONDS")

    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root.addHandler(handler)
