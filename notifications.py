"""
Real-time notification fan-out.

Each open websocket registers a Subscription for a set of topics
("user:<id>", and "community:<id>:admins" for admins). Publishing puts the
event on every subscription of the topic; the websocket handler drains its
own queue. Delivery is fire-and-forget: nobody waits for a reader.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, Set

logger = logging.getLogger("urbangate.notifications")


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


def admins_topic(community_id: str) -> str:
    return f"community:{community_id}:admins"


class Subscription:
    def __init__(self, topics: Iterable[str], maxsize: int = 100):
        self.topics = frozenset(topics)
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=maxsize)

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()


class ConnectionRegistry:
    def __init__(self):
        self._topics: Dict[str, Set[Subscription]] = {}

    def register(self, topics: Iterable[str]) -> Subscription:
        sub = Subscription(topics)
        for topic in sub.topics:
            self._topics.setdefault(topic, set()).add(sub)
        logger.debug("Registered subscription for %s", sorted(sub.topics))
        return sub

    def deregister(self, sub: Subscription) -> None:
        for topic in sub.topics:
            subs = self._topics.get(topic)
            if not subs:
                continue
            subs.discard(sub)
            if not subs:
                del self._topics[topic]
        logger.debug("Deregistered subscription for %s", sorted(sub.topics))

    def is_online(self, topic: str) -> bool:
        return bool(self._topics.get(topic))

    async def publish(self, topic: str, event: Dict[str, Any]) -> int:
        """Queue `event` for every subscriber of `topic`; returns how many received it."""
        delivered = 0
        for sub in list(self._topics.get(topic, ())):
            try:
                sub.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for slow subscriber on %s", event.get("type"), topic)
        return delivered


registry = ConnectionRegistry()
