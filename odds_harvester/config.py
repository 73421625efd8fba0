from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Source site
    base_url: str = "https://www.jra.go.jp/"
    keiba_url: str = "https://www.jra.go.jp/keiba/"
    probe_url: str = "https://www.jra.go.jp/"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    page_timeout_ms: int = 30_000
    table_settle_ms: int = 2_000

    # Race calendar time zone; all local-time policy is evaluated here
    race_timezone: str = "Asia/Tokyo"

    # Browser
    headless: bool = True
    chrome_bin: str | None = None
    browser_args: list[str] = Field(
        default=[
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
            "--disable-software-rasterizer",
        ]
    )
    max_browser_contexts: int = 5
    context_idle_timeout_minutes: int = 10
    context_wait_seconds: float = 5.0
    context_sweep_seconds: int = 60
    browser_reset_interval_hours: int = 12
    browser_error_threshold: int = 5
    probe_before_collect: bool = True

    # Collection
    max_concurrent_collections: int = 3
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    final_odds_window_minutes: int = 5
    collection_start_hour: int = 9
    race_job_minutes: str = "*/5"

    # Overnight suppression (18:00 the day before → 09:00 race day, local)
    overnight_suppression: bool = False
    overnight_start_hour: int = 18
    overnight_end_hour: int = 9

    # Maintenance schedule (local race-calendar time)
    race_days: list[int] = Field(default=[4, 5, 6, 0])  # Fri, Sat, Sun, Mon
    discovery_hour: int = 8
    discovery_minute: int = 55
    check_start_hour: int = 9
    check_end_hour: int = 17
    check_interval_minutes: int = 5
    check_batch_size: int = 3
    registration_pause_seconds: float = 5.0
    scheduled_reset_hours: int = 6
    health_check_hour: int = 3
    cleanup_day_of_week: str = "sun"
    cleanup_hour: int = 17
    retention_days: int = 14

    # Supervisor
    max_consecutive_failures: int = 5
    initial_restart_delay_seconds: float = 30.0
    max_restart_delay_seconds: float = 30 * 60.0

    # Database
    db_path: str = "odds_harvester.db"

    # Logging
    log_level: str = "INFO"
