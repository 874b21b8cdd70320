from typing import Dict, Optional, Tuple

from app.logging_config import get_logger
from app.services.conversation_session import ConversationSession
from app.services.state_machine import SessionStatus
from app.services.store.base import RecordStore

logger = get_logger("session_registry")


class SessionRegistry:
    """Live conversation sessions of this process, keyed by session id.

    Owned by the application (app.state), never a module-level global.
    """

    def __init__(self, store: RecordStore, session_kwargs: Optional[dict] = None):
        self.store = store
        self.session_kwargs = session_kwargs or {}
        self._by_id: Dict[str, ConversationSession] = {}
        self._by_visitor: Dict[Tuple[str, str], str] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, session_id: str) -> Optional[ConversationSession]:
        return self._by_id.get(session_id)

    async def open(self, raw_config: Optional[dict], visitor_id: str) -> ConversationSession:
        """Start (or return the running) session for a visitor. Raises ConfigurationError on bad config."""
        conversation = ConversationSession.from_widget_config(
            self.store, raw_config, visitor_id, **self.session_kwargs
        )
        key = (conversation.tenant_id, visitor_id)
        existing = self._by_id.get(self._by_visitor.get(key, ""))
        if existing is not None and existing.session is not None:
            if existing.status == SessionStatus.ACTIVE:
                return existing
            await existing.stop()
            self._forget(existing)

        await conversation.start()
        self._by_id[conversation.session_id] = conversation
        self._by_visitor[key] = conversation.session_id
        logger.info(
            "Session registered",
            extra={"context": {"session_id": conversation.session_id, "tenant_id": conversation.tenant_id}},
        )
        return conversation

    def _forget(self, conversation: ConversationSession) -> None:
        self._by_id.pop(conversation.session_id, None)
        key = (conversation.tenant_id, conversation.visitor_id)
        if self._by_visitor.get(key) == conversation.session_id:
            del self._by_visitor[key]

    async def close_all(self) -> None:
        """Detach every session from the change feed (process shutdown)."""
        for conversation in list(self._by_id.values()):
            await conversation.wait_for_replies()
            await conversation.stop()
        self._by_id.clear()
        self._by_visitor.clear()
