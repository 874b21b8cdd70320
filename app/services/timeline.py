"""
Message timeline synchronization.

A session's timeline is fed from two places: optimistic local inserts made
when the visitor (or the engine) sends a message, and confirmed rows that
come back through the store's change feed. Message ids are the
deduplication key; position is decided by created_at, ties by arrival.

Id strategy: the client generates the id and proposes it to the store. When
the store keeps it, the confirmed row is a no-op (already seen). When the
store hands back a different id, `reconcile()` swaps the provisional entry
for the confirmed one instead of appending a second copy.
"""

import asyncio
import bisect
import itertools
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from app.logging_config import get_logger
from app.schemas.chat import ChangeEvent, ChatMessage, ChatSession, EventKind
from app.services.change_feed import Subscription

logger = get_logger("timeline")

SortKey = Tuple[datetime, int]


class MessageTimeline:
    def __init__(self) -> None:
        self._messages: List[ChatMessage] = []
        self._keys: List[SortKey] = []
        self._seen: set[str] = set()
        self._arrival = itertools.count()

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._seen

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    def _index_of(self, message_id: str) -> Optional[int]:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        return None

    def _insert(self, message: ChatMessage) -> None:
        key = (message.created_at, next(self._arrival))
        position = bisect.bisect_right(self._keys, key)
        self._keys.insert(position, key)
        self._messages.insert(position, message)

    def _remove_at(self, index: int) -> None:
        del self._messages[index]
        del self._keys[index]

    def merge(self, message: ChatMessage) -> bool:
        """Insert a message unless its id was already seen. Returns True if inserted."""
        if message.id in self._seen:
            return False
        self._insert(message)
        self._seen.add(message.id)
        return True

    def reconcile(self, provisional_id: str, confirmed: ChatMessage) -> bool:
        """Replace a provisional entry with the store-confirmed row.

        Returns True if the confirmed row became visible through this call.
        """
        if provisional_id == confirmed.id:
            return self.merge(confirmed)

        index = self._index_of(provisional_id)
        if confirmed.id in self._seen:
            # confirmed row already arrived through the feed
            if index is not None:
                self._remove_at(index)
            return False

        if index is not None:
            self._remove_at(index)
        self._insert(confirmed)
        self._seen.add(confirmed.id)
        # provisional id stays in _seen so a late echo of it is still dropped
        return index is None

    def apply_update(self, message: ChatMessage) -> bool:
        """Apply a status/read_at change to a known message. Content never changes."""
        index = self._index_of(message.id)
        if index is None:
            return False
        current = self._messages[index]
        self._messages[index] = current.model_copy(update={"status": message.status, "read_at": message.read_at})
        return True

    def is_ordered(self) -> bool:
        return all(a.created_at <= b.created_at for a, b in zip(self._messages, self._messages[1:]))


class TimelineSynchronizer:
    """Owns the visible timeline, the dead timeline and the single feed subscription of a session."""

    def __init__(
        self,
        on_new_message: Optional[Callable[[ChatMessage], None]] = None,
        on_session_update: Optional[Callable[[ChatSession], None]] = None,
    ) -> None:
        self.timeline = MessageTimeline()
        # messages that arrive after the session closed; kept, never rendered
        self.dead_timeline = MessageTimeline()
        self.closed = False
        self.on_new_message = on_new_message
        self.on_session_update = on_session_update
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_attached(self) -> bool:
        return self._task is not None and not self._task.done()

    def mark_closed(self) -> None:
        self.closed = True

    def accept(self, message: ChatMessage) -> bool:
        """Merge one message from either source. Returns True if it was new."""
        if self.closed:
            if message.id in self.timeline:
                return False
            return self.dead_timeline.merge(message)

        added = self.timeline.merge(message)
        if added and self.on_new_message is not None:
            self.on_new_message(message)
        return added

    def reconcile(self, provisional_id: str, confirmed: ChatMessage) -> bool:
        target = self.dead_timeline if self.closed and provisional_id not in self.timeline else self.timeline
        return target.reconcile(provisional_id, confirmed)

    def apply_update(self, message: ChatMessage) -> bool:
        return self.timeline.apply_update(message) or self.dead_timeline.apply_update(message)

    async def attach(self, subscription: Subscription) -> None:
        """Start consuming a subscription. Any previous one is torn down first."""
        await self.detach()
        self._subscription = subscription
        self._task = asyncio.create_task(self._consume(subscription))

    async def detach(self) -> None:
        subscription, task = self._subscription, self._task
        self._subscription, self._task = None, None
        if subscription is not None:
            subscription.close()
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _consume(self, subscription: Subscription) -> None:
        async for event in subscription:
            try:
                self.handle_event(event)
            except Exception as e:
                logger.error(
                    "Failed to apply change event",
                    extra={"context": {"session_id": event.session_id, "kind": event.kind.value, "error": str(e)}},
                )

    def handle_event(self, event: ChangeEvent) -> None:
        if event.kind == EventKind.MESSAGE_INSERTED and event.message is not None:
            self.accept(event.message)
        elif event.kind == EventKind.MESSAGE_UPDATED and event.message is not None:
            self.apply_update(event.message)
        elif event.kind == EventKind.SESSION_UPDATED and event.session is not None:
            if self.on_session_update is not None:
                self.on_session_update(event.session)
