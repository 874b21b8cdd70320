from abc import ABC, abstractmethod
from typing import List, Optional, Tuple, Union

from app.schemas.chat import ChangeEvent, ChatMessage, ChatSession, EventKind, WidgetSettings
from app.schemas.rule import Rule, RuleKind
from app.services.change_feed import ChangeFeed, Subscription
from app.services.state_machine import MessageStatus, SessionStatus


class StoreError(Exception):
    """Record store read/write failed or the record does not exist."""


class RecordStore(ABC):
    """Keyed record store with per-session change notifications.

    Implementations own durability; the engine only reads and writes through
    this interface and learns about confirmed rows from `subscribe()`.
    """

    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed or ChangeFeed()

    @abstractmethod
    async def get_rules(self, tenant_id: str, kind: RuleKind) -> List[dict]:
        """Raw rule records in stored order. Validation happens in the caller."""
        pass

    @abstractmethod
    async def save_rule(self, tenant_id: str, kind: RuleKind, rule: Union[Rule, dict]) -> dict:
        pass

    @abstractmethod
    async def get_settings(self, tenant_id: str) -> WidgetSettings:
        pass

    @abstractmethod
    async def update_settings(self, tenant_id: str, **changes) -> WidgetSettings:
        pass

    @abstractmethod
    async def get_or_create_session(self, tenant_id: str, visitor_id: str) -> Tuple[ChatSession, bool]:
        """Latest session for the visitor, or a new active one. Returns (session, created)."""
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        pass

    @abstractmethod
    async def update_session_status(self, session_id: str, status: SessionStatus) -> ChatSession:
        pass

    @abstractmethod
    async def list_messages(self, session_id: str) -> List[ChatMessage]:
        pass

    @abstractmethod
    async def insert_message(self, message: ChatMessage) -> ChatMessage:
        """Persist a message and notify subscribers. Returns the confirmed row."""
        pass

    @abstractmethod
    async def update_message_status(self, message_id: str, status: MessageStatus) -> ChatMessage:
        pass

    def subscribe(self, session_id: str) -> Subscription:
        return self.feed.subscribe(session_id)

    def _notify_message(self, kind: EventKind, message: ChatMessage) -> None:
        self.feed.publish(
            message.session_id,
            ChangeEvent(kind=kind, session_id=message.session_id, message=message),
        )

    def _notify_session(self, session: ChatSession) -> None:
        self.feed.publish(
            session.id,
            ChangeEvent(kind=EventKind.SESSION_UPDATED, session_id=session.id, session=session),
        )
