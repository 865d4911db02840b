"""Driver configuration.

Values come from the environment (pydantic-settings), so a deployment can
point every connection at a different server or cache without code changes.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ClickHouse
    clickhouse_dsn: str = "clickhouse://default@localhost:8123/?dbname=default"
    clickhouse_timeout: float = 5.0
    clickhouse_retry: int = 0
    clickhouse_pool_size: int = 10

    # Query result cache / request coalescing
    query_cache_enabled: bool = True
    query_cache_duration: int = 3600
    share_duration: int = 0  # 0 disables coalescing
    share_poll_interval: float = 0.05
    redis_url: Optional[str] = None

    # Bulk loading
    csv_cache_dir: str = "/dev/shm/"
    batch_files_timeout: float = 60.0

    # Logging
    app_log_level: str = "INFO"
    app_log_redaction_patterns: list[str] = [
        "password",
        "token",
        "secret",
        "authorization",
        "cookie",
    ]

    otel_service_name: str = "ckdb"
    app_environment: str = "production"


settings = Settings()

__all__ = ["Settings", "settings"]
