from __future__ import annotations

from uuid import uuid4

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BRIGADE_", env_file=".env", extra="ignore")

    app_name: str = "brigade"
    env: str = "dev"

    # Instance ID, also the default actor for invalidation signals
    instance_id: str = Field(default_factory=lambda: str(uuid4())[:8])
    actor_id: str | None = Field(default=None, validation_alias="BRIGADE_ACTOR_ID")

    # Document store
    store_backend: str = Field(default="memory", validation_alias="BRIGADE_STORE_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    redis_key_prefix: str = Field(default="brigade", validation_alias="BRIGADE_REDIS_PREFIX")

    # Cache freshness
    cache_duration: float = Field(default=300.0, validation_alias="BRIGADE_CACHE_DURATION")
    heartbeat_interval: float = Field(default=30.0, validation_alias="BRIGADE_HEARTBEAT_INTERVAL")
    modified_field: str = Field(default="updatedAt", validation_alias="BRIGADE_MODIFIED_FIELD")

    # Change feed reconnection
    retry_delay_base: float = Field(default=1.0, validation_alias="BRIGADE_RETRY_DELAY_BASE")
    retry_delay_max: float = Field(default=30.0, validation_alias="BRIGADE_RETRY_DELAY_MAX")
    retry_delay_multiplier: float = Field(
        default=2.0, validation_alias="BRIGADE_RETRY_MULTIPLIER"
    )
    retry_max_exponent: int = Field(default=3, validation_alias="BRIGADE_RETRY_MAX_EXPONENT")
    retry_jitter: float = Field(default=0.5, validation_alias="BRIGADE_RETRY_JITTER")

    # Invalidation signals
    invalidation_collection: str = Field(
        default="cache_invalidation", validation_alias="BRIGADE_INVALIDATION_COLLECTION"
    )
    invalidation_window: int = Field(default=50, validation_alias="BRIGADE_INVALIDATION_WINDOW")

    # Observability
    enable_metrics: bool = Field(default=False, validation_alias="BRIGADE_ENABLE_METRICS")
    log_level: str = "INFO"
    log_json: bool = Field(default=False, validation_alias="BRIGADE_LOG_JSON")

    @property
    def default_actor(self) -> str:
        """Actor recorded on signals when the caller does not name one."""
        return self.actor_id or f"{self.app_name}-{self.instance_id}"


settings = Settings()
