"""
Simple Async Pub/Sub Event Bus

Lightweight publish/subscribe utility on top of asyncio queues. The market
feeds publish snapshot and status events here; each WebSocket client of the
API subscribes and consumes them independently.

Topics:
    market.snapshots - new consumer-visible records (with the active tier)
    market.status    - tier changes and connection summaries
    market.global    - refreshed global market data
"""

import asyncio
from collections import defaultdict
from typing import Any, DefaultDict, Dict, Optional, Set

from core.logging import get_logger

TOPIC_SNAPSHOTS = "market.snapshots"
TOPIC_STATUS = "market.status"
TOPIC_GLOBAL = "market.global"


class EventBus:
    """
    Async event bus with topic-based pub/sub.

    - Each subscriber gets its own asyncio.Queue and never blocks publishers.
    - A full subscriber queue drops the event for that subscriber only.
    - Unsubscribe when a client disconnects, or its queue leaks.
    """

    def __init__(self, max_queue_size: int = 1000) -> None:
        self._topics: DefaultDict[str, Set[asyncio.Queue]] = defaultdict(set)
        self._max_queue_size = max_queue_size
        self._logger = get_logger(__name__)

    def subscribe(self, topic: str, queue: Optional[asyncio.Queue] = None) -> asyncio.Queue:
        """
        Subscribe to a topic. Returns an asyncio.Queue receiving its events.

        Pass an existing queue to receive several topics on one queue.
        """
        if queue is None:
            queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._topics[topic].add(queue)
        self._logger.debug(f"Subscriber added to topic '{topic}'. total={len(self._topics[topic])}")
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        """
        Unsubscribe a queue from a topic and drain it.
        """
        subscribers = self._topics.get(topic)
        if subscribers is None or queue not in subscribers:
            return
        subscribers.remove(queue)
        while not queue.empty():
            queue.get_nowait()
        self._logger.debug(f"Subscriber removed from topic '{topic}'. total={len(subscribers)}")

    def publish_nowait(self, topic: str, event: Dict[str, Any]) -> int:
        """
        Deliver an event to every subscriber of topic.

        Returns:
            Number of subscribers that received the event
        """
        delivered = 0
        for queue in list(self._topics.get(topic, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                self._logger.warning(f"Dropping event for topic '{topic}' due to full queue")
        return delivered

    async def publish(self, topic: str, event: Dict[str, Any]) -> int:
        """Async form of publish_nowait()."""
        return self.publish_nowait(topic, event)

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))


# Singleton event bus for the application
bus = EventBus()
