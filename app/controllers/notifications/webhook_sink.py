import asyncio
import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

import aiohttp

from app.exceptions import ConfigurationError, NotificationDeliveryError
from settings import settings


class WebhookNotificationSink:
    """Delivers notifications as JSON webhooks with exponential backoff retry logic."""

    def __init__(self, webhook_url: str | None = None) -> None:
        self._logger = logging.getLogger(__name__)
        self._webhook_url = webhook_url
        self._http_session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()

    async def init_session(self) -> None:
        async with self._session_lock:
            if self._http_session is None:
                timeout = aiohttp.ClientTimeout(total=settings.notifications.webhook_timeout)
                self._http_session = aiohttp.ClientSession(timeout=timeout)

    async def close_session(self) -> None:
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    async def send(self, user_id: int, template_type: str, payload: dict[str, Any]) -> None:
        """Deliver one notification; raises NotificationDeliveryError once every attempt failed."""
        if not self._webhook_url:
            raise ConfigurationError("NOTIFICATION_WEBHOOK_URL is not configured")

        await self.init_session()
        if not self._http_session:
            raise NotificationDeliveryError("HTTP session not initialized", user_id=user_id)

        body = {
            "id": str(uuid.uuid4()),
            "type": template_type,
            "time": datetime.now(UTC).isoformat(),
            "user_id": user_id,
            "delivery_attempt": 1,
            "data": payload,
        }

        max_retries = settings.notifications.max_retries
        base_delay = 1.0
        last_error = "no attempt made"

        for attempt in range(1, max_retries + 1):
            body["delivery_attempt"] = attempt
            try:
                async with self._http_session.post(
                    self._webhook_url,
                    data=json.dumps(body, default=str),
                    headers={"Content-Type": "application/json"},
                ) as response:
                    if 200 <= response.status < 300:
                        self._logger.info(f"Notification {template_type} delivered for user_id={user_id}")
                        return

                    last_error = f"status {response.status}"
                    self._logger.warning(
                        f"Notification {template_type} for user_id={user_id} failed with status {response.status}"
                    )
                    # Don't retry for client errors (4xx)
                    if 400 <= response.status < 500:
                        break

            except asyncio.TimeoutError:
                last_error = "timeout"
                self._logger.warning(f"Notification timeout (attempt {attempt}) for user_id={user_id}")
            except aiohttp.ClientError as e:
                last_error = str(e)
                self._logger.warning(f"Notification error (attempt {attempt}) for user_id={user_id}: {e}")

            if attempt < max_retries:
                await asyncio.sleep(base_delay * (2 ** (attempt - 1)))

        raise NotificationDeliveryError(
            f"Notification {template_type} delivery failed: {last_error}", user_id=user_id
        )
