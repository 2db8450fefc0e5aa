"""
Real-time event publisher over Redis pub/sub.

Fire-and-forget: a publish either goes out or raises; callers that must not
fail on delivery problems catch and log (see NotificationDispatcher).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

import redis

from config.settings import Settings

logger = logging.getLogger(__name__)


class RedisPublisher:
    """
    Publishes `{"event": ..., "data": ...}` JSON messages to a channel.

    Usage:
        publisher = RedisPublisher.from_settings(settings)
        publisher.publish("user-123", "invoice-created", {"invoiceId": "..."})
        publisher.close()
    """

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional["redis.Redis"] = None) -> "RedisPublisher":
        return cls(client or redis.Redis.from_url(settings.redis_url, socket_timeout=2.0))

    def publish(self, channel: str, event_name: str, payload: Mapping[str, Any]) -> int:
        """Returns the number of subscribers that received the message."""

        message = json.dumps({"event": event_name, "data": dict(payload)}, default=str)
        receivers = int(self._client.publish(channel, message))
        logger.debug("Published %s to %s (%d receivers)", event_name, channel, receivers)
        return receivers

    def close(self) -> None:
        self._client.close()


__all__ = ["RedisPublisher"]
