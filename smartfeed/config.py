"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.

Feed tuning lives in the nested `policy` section, e.g. POLICY__AD_INTERVAL=7.
"""
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

from smartfeed.engine.policy import FeedPolicy


class Settings(BaseSettings):
    # ── TiDB (MySQL-protocol compatible) ───────────────────────────────────
    tidb_host: str = "tidb"
    tidb_port: int = 4000
    tidb_user: str = "root"
    tidb_password: str = ""
    tidb_database: str = "social_feed"

    @property
    def tidb_url(self) -> str:
        return (
            f"mysql+aiomysql://{self.tidb_user}:{self.tidb_password}"
            f"@{self.tidb_host}:{self.tidb_port}/{self.tidb_database}"
        )

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_socket_timeout: float = 0.5
    feed_cache_prefix: str = "smart_feed"

    # ── Kafka ──────────────────────────────────────────────────────────────
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_topic_feed_analytics: str = "feed-analytics"
    kafka_topic_user_events: str = "user-events"
    kafka_consumer_group: str = "feed-refresh-worker"

    # ── Ad server ──────────────────────────────────────────────────────────
    ad_server_url: str = "http://ad-server:8002"
    ad_server_timeout: float = 0.5

    # ── Feed engine ────────────────────────────────────────────────────────
    feed_cache_backend: Literal["memory", "redis"] = "memory"
    feed_cache_ttl_seconds: float = 120.0
    feed_cache_max_entries: int = 10_000
    cache_timeout_seconds: float = 0.5
    cache_sweep_interval_seconds: float = 60.0
    preferences_ttl_seconds: float = 300.0
    preferences_max_users: int = 10_000
    generation_timeout_seconds: float = 3.0
    analytics_backend: Literal["database", "kafka"] = "database"
    analytics_queue_size: int = 10_000

    # Refresh worker: concurrent regenerations across users
    refresh_concurrency: int = 8

    policy: FeedPolicy = Field(default_factory=FeedPolicy)

    # ── Observability ──────────────────────────────────────────────────────
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "smartfeed-api"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"


settings = Settings()
