"""
Notification bus (Redis pub/sub, one channel per user plus one per role) and the fire-and-forget
dispatcher. Dispatch never blocks the response path and never raises: failures are logged and counted.
"""
import asyncio
import json
import logging
from typing import Awaitable, Iterator, Protocol

import redis.asyncio as redis

from orderflow.config import settings
from orderflow.metrics import notifications_failed_total, notifications_published_total
from orderflow.models import Order
from orderflow.notifications import Notification, compose

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def publish(self, topic: str | None, user_id: str, body: Notification) -> None: ...

    async def publish_to_role(self, topic: str | None, role: str, body: Notification) -> None: ...


class RedisNotifier:
    def __init__(self, r: redis.Redis, channel_prefix: str | None = None, role_channel_prefix: str | None = None):
        self.redis = r
        self.channel_prefix = channel_prefix if channel_prefix is not None else settings.notification_channel_prefix
        self.role_channel_prefix = (
            role_channel_prefix if role_channel_prefix is not None else settings.notification_role_channel_prefix
        )

    def channel_for(self, user_id: str) -> str:
        return f"{self.channel_prefix}{user_id}"

    def role_channel_for(self, role: str) -> str:
        return f"{self.role_channel_prefix}{role}"

    async def _send(self, channel: str, topic: str | None, body: Notification) -> None:
        message = body.model_dump(mode="json")
        if topic:
            message["topic"] = topic
        await self.redis.publish(channel, json.dumps(message))

    async def publish(self, topic: str | None, user_id: str, body: Notification) -> None:
        await self._send(self.channel_for(user_id), topic, body)

    async def publish_to_role(self, topic: str | None, role: str, body: Notification) -> None:
        await self._send(self.role_channel_for(role), topic, body)


class NotificationDispatcher:
    def __init__(self, notifier: Notifier, timeout_seconds: float | None = None):
        self.notifier = notifier
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.notify_timeout_seconds
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, transition: str, order: Order) -> None:
        """Schedule the transition's notifications on the running loop and return immediately."""
        t = asyncio.create_task(self._deliver(transition, order))
        self._tasks.add(t)
        t.add_done_callback(self._tasks.discard)

    def _publish(self, target: str | None, notification: Notification) -> Iterator[Awaitable[None]]:
        if target is not None:
            yield self.notifier.publish(notification.topic, target, notification)
            return
        for role in notification.roles:
            yield self.notifier.publish_to_role(notification.topic, role, notification)

    async def _deliver(self, transition: str, order: Order) -> None:
        try:
            pairs = compose(transition, order)
        except Exception as e:
            notifications_failed_total.inc()
            logger.warning("Composing notifications failed order_id=%s transition=%s: %s", order.id, transition, e)
            return
        for target, notification in pairs:
            label = target if target is not None else f"role:{','.join(notification.roles)}"
            for publish in self._publish(target, notification):
                try:
                    await asyncio.wait_for(publish, timeout=self.timeout_seconds)
                    notifications_published_total.inc()
                except asyncio.TimeoutError:
                    notifications_failed_total.inc()
                    logger.warning("Notification timed out order_id=%s target=%s", order.id, label)
                except Exception as e:
                    notifications_failed_total.inc()
                    logger.warning("Notification failed order_id=%s target=%s: %s", order.id, label, e)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight deliveries (shutdown, tests); cancel whatever is left after timeout."""
        if not self._tasks:
            return
        timeout = timeout if timeout is not None else settings.shutdown_drain_seconds
        logger.info("Waiting for %d in-flight notification task(s) (max %.1fs) ...", len(self._tasks), timeout)
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout, return_when=asyncio.ALL_COMPLETED)
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
