from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from fastapi import Depends
from typing_extensions import Annotated


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = "Task Tracker API"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    log_json: bool = False

    database_url: str = "sqlite+aiosqlite:///./tasktracker.db"
    database_echo: bool = False

    cache_namespace: str = "tasktracker:"
    cache_maxsize: int = 4096
    cache_default_ttl_seconds: int = 300  # 5 minutes
    tasks_list_ttl_seconds: int = 60
    dashboard_stats_ttl_seconds: int = 120
    analytics_ttl_seconds: int = 120
    categories_ttl_seconds: int = 300
    lookup_ttl_seconds: int = 600
    calendar_ttl_seconds: int = 86400
    user_ttl_seconds: int = 600

    rate_limit_window_seconds: int = 60
    rate_limit_default: int = 100
    rate_limit_task: int = 200
    rate_limit_analytics: int = 50

    notification_dedup_hours: int = 24
    default_completion_window_hours: int = 7 * 24
    upcoming_threshold_days: int = 1

    overdue_sweep_enabled: bool = True
    overdue_sweep_interval_seconds: int = 30


@lru_cache
def get_settings() -> Settings:
    return Settings()


SettingsDep = Annotated[Settings, Depends(get_settings)]
