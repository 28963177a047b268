from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "CardKeeper"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/cardkeeper"

    # Ephemeral cache store
    cache_max_entries: int = 256
    cache_max_value_bytes: int = 100_000
    inventory_cache_ttl_seconds: int = 6 * 60 * 60
    usage_cache_ttl_seconds: int = 6 * 60 * 60

    # Usage scan: rows per batch and wall-clock budget for one rebuild
    usage_scan_batch_size: int = 10_000
    usage_scan_time_budget_seconds: float = 240.0

    # Archival
    archive_threshold_days: int = 90
    archive_max_active_rows: int = 20_000
    archive_trim_batch: int = 5_000

    # Health check
    low_stock_threshold: int = 10

    # Alerts go to the log; a webhook is added when configured
    alert_webhook_url: str = ""

    # Scheduler configuration (cron syntax, consumed by the deployment scheduler)
    archive_schedule: str = "0 3 * * *"
    health_check_schedule: str = "0 7 * * 1"


settings = Settings()


# =============================================================================
# CACHE KEYS
# =============================================================================

# Bump the version suffix when the serialized payload shape changes
INVENTORY_CACHE_KEY = "inventory:v1"
USED_CARD_KEYS_CACHE_KEY = "used_card_keys:v1"
