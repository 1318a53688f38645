"""Environment-driven configuration with Pydantic v2."""

from typing import List, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=3002, env="PORT", ge=1024, le=65535)
    debug: bool = Field(default=False, env="DEBUG")
    workers: int = Field(default=1, env="WORKERS", ge=1, le=8)

    # Security
    cors_origins: List[str] = Field(default=["http://localhost:5173"], env="CORS_ORIGINS")

    # Database Configuration (cache backing store)
    database_url: str = Field(default="sqlite+aiosqlite:///./data/dashboard.db", env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")
    database_pool_size: int = Field(default=10, env="DATABASE_POOL_SIZE", ge=1, le=100)
    database_max_overflow: int = Field(default=20, env="DATABASE_MAX_OVERFLOW", ge=0, le=100)

    # Cache Configuration
    cache_ttl_seconds: int = Field(default=300, env="CACHE_TTL_SECONDS", ge=1)
    cache_stale_threshold_seconds: int = Field(default=60, env="CACHE_STALE_THRESHOLD_SECONDS", ge=0)

    # Cache Cleanup
    cache_cleanup_enabled: bool = Field(default=True, env="CACHE_CLEANUP_ENABLED")
    cache_cleanup_interval_minutes: int = Field(default=60, env="CACHE_CLEANUP_INTERVAL_MINUTES", ge=1)

    # Agent (Anthropic via LangChain)
    anthropic_api_key: Optional[str] = Field(default=None, env="ANTHROPIC_API_KEY")
    agent_model: str = Field(default="claude-sonnet-4-20250514", env="AGENT_MODEL")
    agent_temperature: float = Field(default=0.1, env="AGENT_TEMPERATURE", ge=0.0, le=1.0)
    agent_timeout: int = Field(default=60, env="AGENT_TIMEOUT", ge=5, le=600)

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @property
    def is_sqlite(self) -> bool:
        """Check if the backing store is SQLite."""
        return self.database_url.startswith("sqlite")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
        "env_nested_delimiter": "__",
    }
