import logging
import logging.config
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from app.environment import EnvironmentName
from settings import settings

SERVICE_NAME = "storage-health"

JSON_FORMAT = "%(asctime)s %(levelname)s %(processName)s %(taskName)s %(name)s %(funcName)s %(lineno)d %(message)s"
PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Client libraries are chatty at INFO; the monitor runs them on every cycle.
QUIET_LOGGERS = ("asyncio", "aiohttp", "redis", "sqlalchemy.engine", "alembic.runtime.migration", "urllib3")


class StorageHealthJsonFormatter(JsonFormatter):
    """JSON lines tagged with the service and environment, indented for local development."""

    def __init__(self, *args: Any, **kwargs: Any):
        kwargs.setdefault("static_fields", {"service": SERVICE_NAME, "environment": settings.environment.value})
        super().__init__(*args, **kwargs)
        self._pretty = settings.environment == EnvironmentName.DEVELOPMENT and settings.logging.use_pretty_json
        if self._pretty:
            self.json_indent = 2

    def format(self, record: logging.LogRecord) -> str:
        result = super().format(record)
        if self._pretty:
            result = result.replace("\\n", "\n\t\t")
        return result


def build_logging_config(json_output: bool) -> dict[str, Any]:
    formatter = "json" if json_output else "plain"
    handler = {"handlers": ["stdout"], "propagate": False}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"format": JSON_FORMAT, "class": "logging_config.StorageHealthJsonFormatter"},
            "plain": {"format": PLAIN_FORMAT},
        },
        "handlers": {
            "stdout": {"formatter": formatter, "class": "logging.StreamHandler", "stream": "ext://sys.stdout"},
        },
        "loggers": {
            "": {**handler, "level": settings.logging.level},
            **{name: {**handler, "level": logging.WARNING} for name in QUIET_LOGGERS},
        },
    }


def setup_logging() -> None:
    """Setup root logger; JSON lines unless LOGGING_USE_CONFIG is off."""
    logging.config.dictConfig(build_logging_config(json_output=settings.logging.use_config is True))
    logging.captureWarnings(True)
    logging.disable(logging.NOTSET)
