"""
In-process change notifications.

Stores publish ordered events per session; consumers pull them from a
Subscription with an explicit unsubscribe instead of registering callbacks.
"""

import asyncio
from collections import defaultdict
from typing import Optional

from app.logging_config import get_logger
from app.schemas.chat import ChangeEvent

logger = get_logger("change_feed")

_CLOSED = object()


class Subscription:
    def __init__(self, feed: "ChangeFeed", key: str):
        self._feed = feed
        self.key = key
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _deliver(self, event: ChangeEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    async def get(self) -> Optional[ChangeEvent]:
        """Next event in publish order, or None once unsubscribed."""
        if self.closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._remove(self)
        self._queue.put_nowait(_CLOSED)


class ChangeFeed:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(self, key: str) -> Subscription:
        subscription = Subscription(self, key)
        self._subscribers[key].append(subscription)
        logger.debug(f"Subscribed to {key}, listeners={len(self._subscribers[key])}")
        return subscription

    def publish(self, key: str, event: ChangeEvent) -> int:
        """Fan the event out to every live subscriber of the key. Returns the delivery count."""
        subscribers = list(self._subscribers.get(key, []))
        for subscription in subscribers:
            subscription._deliver(event)
        return len(subscribers)

    def subscriber_count(self, key: str) -> int:
        return len(self._subscribers.get(key, []))

    def _remove(self, subscription: Subscription) -> None:
        listeners = self._subscribers.get(subscription.key)
        if not listeners:
            return
        if subscription in listeners:
            listeners.remove(subscription)
        if not listeners:
            del self._subscribers[subscription.key]
