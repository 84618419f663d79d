"""Application configuration via pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    debug: bool = False
    log_level: str = "INFO"
    # API key (optional): if set, required on /events routes
    api_key: str = ""
    ingest_rate_limit: str = "600/minute"

    # Webhook handshakes
    twitter_consumer_secret: str = ""
    instagram_verify_token: str = ""
    meta_app_secret: str = ""  # signs Instagram/Facebook/Threads deliveries
    verify_webhook_signatures: bool = False

    # Event store (in-memory when unset)
    database_url: str = ""
    dedupe_raw_event_ids: bool = False

    # User directory
    user_directory_url: str = ""
    user_directory_token: str = ""
    # "platform:platform_id=user_id" pairs, comma separated
    user_directory_seed: str = ""
    attribution_timeout_seconds: float = 0.5

    # Validation
    max_event_age_days: int = 365
    batch_max_size: int = 1000
    batch_concurrency: int = 16

    # Rollup counters
    rollup_queue_size: int = 10000
    rollup_max_attempts: int = 5
    rollup_retry_base_seconds: float = 0.5
    rollup_drain_timeout_seconds: float = 5.0
    # event ids remembered by the in-memory sink for deduplication
    rollup_dedupe_window: int = 100_000


settings = Settings()
