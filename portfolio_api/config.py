from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Literal

class Settings(BaseSettings):
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "portfolioManagement"
    storage_backend: Literal["memory", "mongodb"] = Field(default="memory", description="Persistence backend selected at startup")

    host: str = "0.0.0.0"
    port: int = 5001
    api_base_path: str = "/api/v1"

    # Rate limiting (sliding window per client address)
    rate_limit_window_ms: int = Field(default=15 * 60 * 1000, gt=0, description="Rate limit window in milliseconds")
    rate_limit_max_requests: int = Field(default=100, gt=0, description="Requests allowed per client per window")

    max_body_bytes: int = Field(default=10 * 1024 * 1024, gt=0, description="Maximum accepted request body size")

    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    seed_demo_data: bool = Field(default=False, description="Preload demo holdings into the in-memory backend")
    enable_database_tracing: bool = Field(default=False, description="Wrap MongoDB calls in OpenTelemetry spans")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("api_base_path")
    @classmethod
    def normalize_base_path(cls, value: str) -> str:
        value = "/" + value.strip().strip("/")
        return "" if value == "/" else value

    @field_validator("environment", mode="before")
    @classmethod
    def normalize_environment(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    def is_development(self) -> bool:
        return self.environment == "development"

    def is_production(self) -> bool:
        return self.environment == "production"

settings = Settings()
