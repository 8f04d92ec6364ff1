"""
In-process publish/subscribe broker for job and batch progress events
"""

import asyncio
import logging
import threading
from collections import defaultdict
from typing import Any, AsyncIterator, Callable, Dict, List

logger = logging.getLogger("events")

BATCHES_TOPIC = "batches"

Callback = Callable[[Dict[str, Any]], None]


def job_topic(job_id: str) -> str:
    return f"job:{job_id}"


def batch_topic(batch_id: str) -> str:
    return f"batch:{batch_id}"


class EventBroker:
    """Topic-keyed observer registry.

    Callbacks for a topic run synchronously in publish order, so a single
    publisher gets FIFO delivery per topic. A failing subscriber is logged
    and skipped; it never affects the publisher or other subscribers.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callback]] = defaultdict(list)
        self._lock = threading.RLock()

    def subscribe(self, topic: str, callback: Callback) -> Callable[[], None]:
        """Register callback; returns an idempotent unsubscribe function"""
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(topic)
                if callbacks and callback in callbacks:
                    callbacks.remove(callback)
                    if not callbacks:
                        del self._subscribers[topic]

        return unsubscribe

    def publish(self, topic: str, event: Dict[str, Any]) -> int:
        """Deliver event to every subscriber of topic; returns delivery count"""
        with self._lock:
            callbacks = list(self._subscribers.get(topic, ()))

        delivered = 0
        for callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.warning("Subscriber callback failed", extra={
                    "component": "events",
                    "topic": topic,
                    "error": str(e)
                })
        return delivered

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, ()))

    async def stream(self, topic: str, max_queue: int = 1000) -> AsyncIterator[Dict[str, Any]]:
        """Async iterator over events published on topic until the consumer stops"""
        queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)

        def _enqueue(event: Dict[str, Any]):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Event stream backpressure - dropping event", extra={
                    "component": "events",
                    "topic": topic,
                    "max_queue": max_queue
                })

        unsubscribe = self.subscribe(topic, _enqueue)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()


# Global broker instance
broker = EventBroker()
