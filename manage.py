#!/usr/bin/env python3
"""
Cloud storage connection health manager

Runs the periodic health monitor and exposes one-off maintenance commands for a single
user/provider connection.

Usage:
    python manage.py monitor [--interval SECONDS]
    python manage.py check --user-id ID --provider NAME
    python manage.py recover --user-id ID --provider NAME
    python manage.py status --user-id ID --provider NAME
    python manage.py cleanup [--days N]
    python manage.py clear-limits --user-id ID --provider NAME

Environment Variables:
    DATABASE_HOST / DATABASE_NAME: PostgreSQL connection
    REDIS_URL: Redis instance holding locks, rate limits and throttles
    TOKEN_ENCRYPTION_KEY: Fernet key for stored credentials
    MONITOR_METRICS_PORT: serve Prometheus refresh metrics from the monitor when set
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import sentry_sdk
from dotenv import load_dotenv
from prometheus_client import start_http_server

load_dotenv(override=True)
from app.container import ApplicationContainer  # noqa: E402
from app.db import fastapi_sqlalchemy_context  # noqa: E402
from logging_config import setup_logging  # noqa: E402
from settings import settings  # noqa: E402
from workers.health_monitor import HealthMonitor  # noqa: E402

setup_logging()

logger = logging.getLogger(__name__)

if settings.sentry.is_enabled:
    sentry_sdk.init(dsn=settings.sentry.dsn, environment=settings.environment.value)

# Global container instance
container = ApplicationContainer()

CONNECTION_MODES = ("check", "recover", "status", "clear-limits")


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _shutdown() -> None:
    await container.controllers.notification_sink().close_session()
    await container.controllers.cache().close()


async def run_monitor(interval: int | None = None) -> None:
    monitor = HealthMonitor(
        token_repo=container.repos.token(),
        connection_health_repo=container.repos.connection_health(),
        refresh_coordinator=container.controllers.refresh_coordinator(),
        resolver=container.controllers.status_resolver(),
        recovery_orchestrator=container.controllers.recovery_orchestrator(),
        notifier=container.controllers.notifier(),
        health_controller=container.controllers.health_controller(),
        session_scope=fastapi_sqlalchemy_context,
    )
    if settings.monitor.metrics_port:
        start_http_server(settings.monitor.metrics_port, registry=container.controllers.metrics().registry)
        logger.info(f"Serving refresh metrics on port {settings.monitor.metrics_port}")
    try:
        await monitor.run_forever(interval)
    finally:
        await _shutdown()


async def check_connection(user_id: int, provider: str) -> None:
    async with fastapi_sqlalchemy_context():
        status = await container.controllers.status_resolver().determine_consolidated_status(user_id, provider)
    logger.info(f"Consolidated status for user_id={user_id} provider={provider}: {status.value}")
    _print({"user_id": user_id, "provider": provider, "consolidated_status": status.value})


async def recover_connection(user_id: int, provider: str) -> None:
    async with fastapi_sqlalchemy_context():
        result = await container.controllers.recovery_orchestrator().attempt_automatic_recovery(user_id, provider)
    _print(result.to_dict())


async def show_status(user_id: int, provider: str) -> None:
    health_controller = container.controllers.health_controller()
    async with fastapi_sqlalchemy_context():
        summary = await health_controller.get_health_summary(user_id, provider)
    summary["rate_limits"] = await health_controller.get_rate_limit_status(user_id, provider)
    summary["notifications"] = await container.controllers.notification_throttler().status(user_id, provider)
    summary["token_refresh"] = health_controller.get_refresh_metrics(provider).get(provider)
    _print(summary)


async def cleanup_records(days: int | None = None) -> None:
    async with fastapi_sqlalchemy_context():
        deleted = await container.controllers.health_controller().cleanup_old_health_records(days)
    _print({"deleted": deleted})


async def clear_limits(user_id: int, provider: str) -> None:
    health_controller = container.controllers.health_controller()
    await health_controller.clear_rate_limits(user_id, provider)
    await health_controller.clear_caches(user_id, provider)
    _print({"user_id": user_id, "provider": provider, "cleared": True})


async def run_command(args: argparse.Namespace) -> None:
    try:
        if args.mode == "check":
            await check_connection(args.user_id, args.provider)
        elif args.mode == "recover":
            await recover_connection(args.user_id, args.provider)
        elif args.mode == "status":
            await show_status(args.user_id, args.provider)
        elif args.mode == "cleanup":
            await cleanup_records(args.days)
        elif args.mode == "clear-limits":
            await clear_limits(args.user_id, args.provider)
    finally:
        await _shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cloud storage connection health manager")
    parser.add_argument(
        "mode", nargs="?", choices=["monitor", *CONNECTION_MODES, "cleanup"], default="monitor", help="Operation to run"
    )
    parser.add_argument("--user-id", type=int, help="User owning the connection")
    parser.add_argument("--provider", help="Provider name, e.g. google-drive")
    parser.add_argument("--interval", type=int, help="Seconds between monitor cycles")
    parser.add_argument("--days", type=int, help="Retention in days for cleanup")
    return parser


def main() -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if args.mode in CONNECTION_MODES and (args.user_id is None or not args.provider):
        parser.error(f"{args.mode} requires --user-id and --provider")

    try:
        if args.mode == "monitor":
            asyncio.run(run_monitor(args.interval))
        else:
            asyncio.run(run_command(args))

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception:
        logger.exception("Command failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
