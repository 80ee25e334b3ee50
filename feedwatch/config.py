"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is malformed.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 3000
    log_level: str = "INFO"
    sentry_dsn: str = ""

    # Storage: "auto" picks Redis when redis_url is set, local JSON files otherwise
    storage_backend: str = "auto"
    redis_url: str = ""
    data_dir: str = "data"

    # Filter queue
    queue_stuck_timeout_ms: int = 300000
    queue_cleanup_max_age_ms: int = 3600000
    queue_max_lease_resets: int = 5
    queue_claim_lock_ttl_seconds: int = 30
    queue_sweeper_enabled: bool = False
    queue_sweep_interval_seconds: int = 300

    # Security
    cron_secret: str = ""
    worker_auth_token: str = ""

    # LM Studio (OpenAI-compatible)
    lm_studio_url: str = "http://localhost:1234"
    lm_studio_model: str = "deepseek/deepseek-r1-0528-qwen3-8b"
    lm_studio_timeout_ms: int = 60000
    lm_studio_api_key: str = "lm-studio"

    # Reddit
    reddit_search_url: str = "https://www.reddit.com/search/.json"
    reddit_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    reddit_timeframe: str = "hour"
    reddit_timeout_seconds: float = 30.0
    reddit_max_retries: int = 3
    reddit_retry_delay_seconds: float = 1.0
    proxy_user: str = ""
    proxy_pass: str = ""
    proxy_host: str = "82.26.109.10:5712"
    default_keyword: str = "slack"

    # Filter worker process
    feed_api_url: str = "http://localhost:3000"
    worker_id: str = ""
    worker_poll_interval_seconds: float = 5.0
    worker_max_consecutive_errors: int = 5
    worker_error_backoff_seconds: float = 30.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def proxy_url(self) -> Optional[str]:
        if not (self.proxy_user and self.proxy_pass):
            return None
        return f"http://{self.proxy_user}:{self.proxy_pass}@{self.proxy_host}"

    @property
    def use_redis(self) -> bool:
        if self.storage_backend == "redis":
            return True
        if self.storage_backend == "local":
            return False
        return bool(self.redis_url)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
