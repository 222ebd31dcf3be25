import logging
import redis
from typing import Optional
from .events import Event

logger = logging.getLogger(__name__)


class EventPublisher:
    """
    Publishes lifecycle events to Redis.

    Without a client every publish is a no-op, so the core runs the same
    with or without Redis configured.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, channel: str = "global:announcements"):
        self.redis = redis_client
        self.channel = channel

    @classmethod
    def from_url(cls, redis_url: str, channel: str = "global:announcements") -> "EventPublisher":
        if not redis_url:
            return cls(None, channel)
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        return cls(client, channel)

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    def publish(self, event: Event):
        if not self.redis:
            return
        payload = event.to_json()
        try:
            self.redis.publish(self.channel, payload)
            if event.tournament_id is not None:
                self.redis.publish(f"tournament:{event.tournament_id}:events", payload)
        except redis.RedisError as e:
            logger.warning(f"Failed to publish {event.to_dict()['type']} event: {e}")

    def publish_after_commit(self, uow, event: Event):
        """Queue event until the unit of work has committed."""
        if self.redis:
            uow.after_commit(lambda: self.publish(event))
