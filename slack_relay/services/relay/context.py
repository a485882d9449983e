"""Caller-owned processing context for the Slack relay.

Built once per application lifespan and handed to the route through a
dependency; nothing here lives at module level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ...config import Settings
from ...error_logging import AppErrorLogger
from ..slack import get_slack_service
from ..task_api import TaskAPIClient
from .dedup import DeliveryDeduplicator
from .polling_bridge import PollingBridge, SlackClientProtocol, TaskAPIProtocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BridgeContext:
    signing_secret: str
    bot_user_id: str
    slack: SlackClientProtocol
    task_api: TaskAPIProtocol
    deduplicator: DeliveryDeduplicator
    bridge: PollingBridge

    async def reset(self) -> None:
        """Drop all per-session state: running poll sessions and in-flight keys.

        Called by ``aclose`` at process exit. A host that starts a new backend
        session while the app keeps running calls it directly; the HTTP
        clients stay open.
        """
        logger.debug("Resetting relay context")
        await self.bridge.shutdown()
        self.deduplicator.clear()

    async def aclose(self) -> None:
        """Reset per-session state and close HTTP clients before exit."""
        logger.debug("Closing relay context")
        try:
            await self.reset()
        finally:
            await self.slack.aclose()
            await self.task_api.aclose()


def build_bridge_context(settings: Settings) -> BridgeContext:
    slack = get_slack_service(settings.slack_bot_token)
    task_api = TaskAPIClient(settings.task_api_url)
    if not settings.slack_bot_user_id:
        logger.warning("SLACK_BOT_USER_ID not set; channel mentions will not be recognised.")
    return BridgeContext(
        signing_secret=settings.slack_signing_secret,
        bot_user_id=settings.slack_bot_user_id,
        slack=slack,
        task_api=task_api,
        deduplicator=DeliveryDeduplicator(),
        bridge=PollingBridge(slack=slack, task_api=task_api, error_logger=AppErrorLogger(settings)),
    )
