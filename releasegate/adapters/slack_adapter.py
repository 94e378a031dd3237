"""Slack notification sink."""

import asyncio
from typing import Optional

import aiohttp

from ..config import get_settings
from ..logging import get_logger
from ..models.notifications import Notification

logger = get_logger(__name__)


class SlackNotifier:
    """Posts notifications with ``chat.postMessage``.

    Delivery is fire-and-forget: failures are logged and reported as
    ``False``, never raised and never retried.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the Slack notifier."""
        settings = get_settings()
        self._token = token or settings.slack_bot_token
        self._api_url = api_url or settings.slack_api_url
        self._timeout = aiohttp.ClientTimeout(total=timeout or settings.notification_timeout)

    async def send(self, channel: str, notification: Notification) -> bool:
        """Send one message to ``channel``."""
        if not self._token:
            logger.warning("Slack token not configured; notification dropped", channel=channel)
            return False

        payload = {
            "channel": channel,
            "text": notification.title,
            "attachments": [
                {"color": notification.color, "text": notification.text, "mrkdwn_in": ["text"]}
            ],
        }
        headers = {"Authorization": f"Bearer {self._token}"}

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.post(self._api_url, json=payload, headers=headers) as response:
                    response.raise_for_status()
                    result = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Slack notification failed", channel=channel, error=str(e))
            return False

        if not result.get('ok', False):
            logger.error("Slack rejected notification", channel=channel, error=result.get('error'))
            return False

        logger.info("Slack notification sent", channel=channel, color=notification.color)
        return True
