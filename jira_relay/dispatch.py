"""
Webhook dispatch: match subscriptions and deliver one post per channel.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from .chat import ChatClient, ChatError
from .metrics import MetricsCollector
from .service import SubscriptionService
from .webhook import JiraWebhook

log = structlog.get_logger()


@dataclass
class DispatchResult:
    channels: list[str]
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class WebhookDispatcher:
    """Routes a parsed webhook to every channel whose subscription accepts it."""

    def __init__(
        self,
        service: SubscriptionService,
        chat: ChatClient,
        bot_username: str,
        metrics: MetricsCollector | None = None,
    ):
        self._service = service
        self._chat = chat
        self._bot_username = bot_username
        self._metrics = metrics

    async def dispatch(self, webhook: JiraWebhook) -> DispatchResult:
        if self._metrics:
            self._metrics.inc("webhooks_received_total", event=webhook.webhook_event)

        channel_ids = await self._service.match_subscriptions(webhook)
        result = DispatchResult(channels=channel_ids)
        log.info(
            "dispatch.matched",
            webhook_event=webhook.webhook_event,
            issue=webhook.issue.key,
            channels=len(channel_ids),
        )
        if not channel_ids:
            return result

        bot_user_id = await self._chat.get_user_id(self._bot_username)
        message = webhook.summary_line()

        for channel_id in channel_ids:
            try:
                await self._chat.create_post(channel_id, bot_user_id, message)
                result.delivered.append(channel_id)
            except ChatError as exc:
                log.error("dispatch.post_failed", channel=channel_id, error=str(exc))
                result.failed.append(channel_id)

        return result
