from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple, Union
from uuid import uuid4

from app.logging_config import get_logger
from app.schemas.chat import ChatMessage, ChatSession, EventKind, WidgetSettings
from app.schemas.rule import Rule, RuleKind
from app.services.change_feed import ChangeFeed
from app.services.state_machine import MessageStatus, SessionStatus, can_advance_message
from app.services.store.base import RecordStore, StoreError

logger = get_logger("store.memory")


class InMemoryStore(RecordStore):
    """Process-local store. Used by tests and local runs without a database.

    With `assign_ids=True` the store ignores client-proposed message ids and
    hands out its own, like a backend with server-generated keys.
    """

    def __init__(self, feed: Optional[ChangeFeed] = None, assign_ids: bool = False):
        super().__init__(feed)
        self.assign_ids = assign_ids
        self._rules: Dict[Tuple[str, RuleKind], List[dict]] = defaultdict(list)
        self._settings: Dict[str, WidgetSettings] = {}
        self._sessions: Dict[str, ChatSession] = {}
        self._messages: Dict[str, ChatMessage] = {}
        self._session_messages: Dict[str, List[str]] = defaultdict(list)

    async def get_rules(self, tenant_id: str, kind: RuleKind) -> List[dict]:
        return [dict(record) for record in self._rules[(tenant_id, RuleKind(kind))]]

    async def save_rule(self, tenant_id: str, kind: RuleKind, rule: Union[Rule, dict]) -> dict:
        record = rule.model_dump(mode="json") if isinstance(rule, Rule) else dict(rule)
        record.setdefault("id", str(uuid4()))
        rules = self._rules[(tenant_id, RuleKind(kind))]
        for index, existing in enumerate(rules):
            if existing.get("id") == record["id"]:
                rules[index] = record
                return dict(record)
        rules.append(record)
        return dict(record)

    async def get_settings(self, tenant_id: str) -> WidgetSettings:
        if tenant_id not in self._settings:
            self._settings[tenant_id] = WidgetSettings(tenant_id=tenant_id)
        return self._settings[tenant_id].model_copy()

    async def update_settings(self, tenant_id: str, **changes) -> WidgetSettings:
        current = await self.get_settings(tenant_id)
        updated = WidgetSettings.model_validate({**current.model_dump(), **changes, "tenant_id": tenant_id})
        self._settings[tenant_id] = updated
        return updated.model_copy()

    async def get_or_create_session(self, tenant_id: str, visitor_id: str) -> Tuple[ChatSession, bool]:
        candidates = [
            session
            for session in self._sessions.values()
            if session.tenant_id == tenant_id
            and session.visitor_id == visitor_id
            and session.status == SessionStatus.ACTIVE
        ]
        if candidates:
            latest = max(candidates, key=lambda s: s.created_at)
            return latest.model_copy(), False

        session = ChatSession(tenant_id=tenant_id, visitor_id=visitor_id)
        self._sessions[session.id] = session
        logger.info(
            "Created session",
            extra={"context": {"session_id": session.id, "tenant_id": tenant_id}},
        )
        return session.model_copy(), True

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        session = self._sessions.get(session_id)
        return session.model_copy() if session else None

    async def update_session_status(self, session_id: str, status: SessionStatus) -> ChatSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise StoreError(f"Session {session_id} not found")
        session = session.model_copy(update={"status": SessionStatus(status)})
        self._sessions[session_id] = session
        self._notify_session(session)
        return session.model_copy()

    async def list_messages(self, session_id: str) -> List[ChatMessage]:
        messages = [self._messages[message_id] for message_id in self._session_messages[session_id]]
        return [m.model_copy() for m in sorted(messages, key=lambda m: m.created_at)]

    async def insert_message(self, message: ChatMessage) -> ChatMessage:
        if message.session_id not in self._sessions:
            raise StoreError(f"Session {message.session_id} not found")

        existing = self._messages.get(message.id)
        if existing is not None:
            return existing.model_copy()

        confirmed = message.model_copy()
        if self.assign_ids:
            confirmed = confirmed.model_copy(update={"id": str(uuid4())})

        self._messages[confirmed.id] = confirmed
        self._session_messages[confirmed.session_id].append(confirmed.id)
        self._notify_message(EventKind.MESSAGE_INSERTED, confirmed)
        return confirmed.model_copy()

    async def update_message_status(self, message_id: str, status: MessageStatus) -> ChatMessage:
        message = self._messages.get(message_id)
        if message is None:
            raise StoreError(f"Message {message_id} not found")

        status = MessageStatus(status)
        current = message.status or MessageStatus.SENT
        if not can_advance_message(current, status):
            return message.model_copy()

        update = {"status": status}
        if status == MessageStatus.READ:
            update["read_at"] = datetime.now(timezone.utc)
        message = message.model_copy(update=update)
        self._messages[message_id] = message
        self._notify_message(EventKind.MESSAGE_UPDATED, message)
        return message.model_copy()
