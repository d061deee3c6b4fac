"""
Worker notification channel.

Encoder workers subscribe to a Redis pub/sub channel and, on any message,
pull ``queued`` rows from ``clip_exports``. The payload is an export id (or a
bare wake-up token); delivery is at-least-once and workers tolerate
duplicates, so a failed publish is logged and dropped. The next dispatch or
admin action sends another pulse.
"""
from dataclasses import dataclass
from typing import Optional, Protocol

import redis
import structlog

from rewind.core.config import get_settings

logger = structlog.get_logger()

REQUEUE_PULSE = "requeue"


class WorkerNotifier(Protocol):
    def notify(self, payload: str) -> None:
        ...


@dataclass
class RedisWorkerNotifier:
    """Publishes export ids on the encoder workers' channel."""

    client: redis.Redis
    channel: str = "clip_exports"

    def notify(self, payload: str) -> None:
        try:
            receivers = self.client.publish(self.channel, payload)
        except redis.RedisError as e:
            logger.warning("notifier.publish_failed", channel=self.channel, payload=payload, error=str(e))
            return
        logger.info("notifier.published", channel=self.channel, payload=payload, receivers=receivers)


def build_worker_notifier(url: Optional[str] = None, channel: Optional[str] = None) -> RedisWorkerNotifier:
    settings = get_settings()
    client = redis.from_url(
        url or settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    return RedisWorkerNotifier(client=client, channel=channel or settings.export_notify_channel)
