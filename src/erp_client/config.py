"""Pipeline configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineConfig(BaseSettings):
    """Runtime config for the resilient request pipeline."""

    model_config = SettingsConfigDict(env_prefix="ERP_CLIENT_")

    base_url: str = "http://localhost:3001/api/v1"
    refresh_path: str = "/auth/refresh-token"
    request_timeout: float = 10.0
    refresh_timeout: float = 10.0
    proactive_refresh: bool = False
    expiry_leeway_seconds: int = 60
    invalid_token_codes: list[str] = Field(
        default_factory=lambda: ["token_revoked", "token_invalid"]
    )
    queue_enabled: bool = True
    queue_max_attempts: int = 5
    queue_backoff_seconds: int = 60
