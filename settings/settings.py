import logging

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings

from app.environment import EnvironmentName
from settings.log import LoggingSettings


class DatabaseSettings(BaseSettings):
    host: str = Field(alias="DATABASE_HOST", default="postgresql://localhost:5432")
    name: str = Field(alias="DATABASE_NAME", default="cloud_connections")
    min_pool_size: int = Field(alias="DATABASE_MIN_POOL_SIZE", default=5)
    max_pool_size: int = Field(alias="DATABASE_MAX_POOL_SIZE", default=20)

    @property
    def async_host(self) -> str:
        """Return the host URL with async driver for SQLAlchemy async engine."""
        return self.host.replace("postgresql://", "postgresql+asyncpg://", 1)


class RedisSettings(BaseSettings):
    url: str = Field(alias="REDIS_URL", default="redis://localhost:6379/0")
    key_prefix: str = Field(alias="REDIS_KEY_PREFIX", default="cloud_health")


class TokenRefreshSettings(BaseSettings):
    proactive_threshold_minutes: int = Field(alias="TOKEN_PROACTIVE_THRESHOLD_MINUTES", default=15)
    lock_ttl: int = Field(alias="TOKEN_REFRESH_LOCK_TTL", default=30)
    lock_wait_timeout: float = Field(alias="TOKEN_REFRESH_LOCK_WAIT_TIMEOUT", default=5.0)
    lock_retry_delay: float = Field(alias="TOKEN_REFRESH_LOCK_RETRY_DELAY", default=0.1)
    max_attempts_per_hour: int = Field(alias="TOKEN_REFRESH_MAX_ATTEMPTS_PER_HOUR", default=10)
    proactive_lookahead_minutes: int = Field(alias="TOKEN_PROACTIVE_LOOKAHEAD_MINUTES", default=60)
    refresh_timeout_margin: float = Field(alias="TOKEN_REFRESH_TIMEOUT_MARGIN", default=5.0)

    @property
    def refresh_timeout(self) -> float:
        """Provider call timeout; always shorter than the lock TTL it runs under."""
        return max(self.lock_ttl - self.refresh_timeout_margin, self.lock_ttl / 2)


class HealthSettings(BaseSettings):
    live_validations_per_window: int = Field(alias="HEALTH_LIVE_VALIDATIONS_PER_WINDOW", default=6)
    live_validation_window: int = Field(alias="HEALTH_LIVE_VALIDATION_WINDOW", default=60)
    freshness_window: int = Field(alias="HEALTH_FRESHNESS_WINDOW", default=300)
    recent_success_window: int = Field(alias="HEALTH_RECENT_SUCCESS_WINDOW", default=3600)
    probe_timeout: float = Field(alias="HEALTH_PROBE_TIMEOUT", default=15.0)
    connectivity_tests_per_hour: int = Field(alias="HEALTH_CONNECTIVITY_TESTS_PER_HOUR", default=20)
    healthy_cache_ttl: int = Field(alias="HEALTH_HEALTHY_CACHE_TTL", default=30)
    unhealthy_cache_ttl: int = Field(alias="HEALTH_UNHEALTHY_CACHE_TTL", default=10)
    record_retention_days: int = Field(alias="HEALTH_RECORD_RETENTION_DAYS", default=30)


class RecoverySettings(BaseSettings):
    pending_batch_size: int = Field(alias="RECOVERY_PENDING_BATCH_SIZE", default=10)
    pending_batch_delay: int = Field(alias="RECOVERY_PENDING_BATCH_DELAY", default=30)
    pending_retry_limit: int = Field(alias="RECOVERY_PENDING_RETRY_LIMIT", default=50)
    retry_cooldown: int = Field(alias="RECOVERY_RETRY_COOLDOWN", default=300)
    max_recovery_attempts: int = Field(alias="RECOVERY_MAX_ATTEMPTS", default=3)


class NotificationSettings(BaseSettings):
    webhook_url: str | None = Field(alias="NOTIFICATION_WEBHOOK_URL", default=None)
    webhook_timeout: int = Field(alias="NOTIFICATION_WEBHOOK_TIMEOUT", default=10)
    max_retries: int = Field(alias="NOTIFICATION_MAX_RETRIES", default=3)
    escalation_threshold: int = Field(alias="NOTIFICATION_ESCALATION_THRESHOLD", default=3)
    failure_counter_ttl: int = Field(alias="NOTIFICATION_FAILURE_COUNTER_TTL", default=3600)
    expiring_token_lookahead_hours: int = Field(alias="NOTIFICATION_EXPIRING_TOKEN_LOOKAHEAD_HOURS", default=24)
    unhealthy_failure_threshold: int = Field(alias="NOTIFICATION_UNHEALTHY_FAILURE_THRESHOLD", default=3)


class MonitorSettings(BaseSettings):
    interval: int = Field(alias="MONITOR_INTERVAL", default=300)
    metrics_port: int | None = Field(alias="MONITOR_METRICS_PORT", default=None)


class SentrySettings(BaseSettings):
    dsn: str | None = Field(alias="SENTRY_DSN", default=None)

    @property
    def is_enabled(self) -> bool:
        return bool(self.dsn)


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "extra": "allow"}

    environment: EnvironmentName = Field(alias="ENVIRONMENT")
    token_encryption_key: str = Field(alias="TOKEN_ENCRYPTION_KEY")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    token_refresh: TokenRefreshSettings = Field(default_factory=TokenRefreshSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    recovery: RecoverySettings = Field(default_factory=RecoverySettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)

    @field_validator("environment", mode="before")
    def set_environment(cls, value: str, info: ValidationInfo) -> EnvironmentName:
        try:
            return EnvironmentName(value)
        except ValueError:
            logging.getLogger(__name__).warning(f"Invalid environment: {value}")
            return EnvironmentName.DEVELOPMENT
