from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple, Union
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import AdvancedReplyRule, AutoReplyRule, Conversation, Message, TenantSettings
from app.schemas.chat import ChatMessage, ChatSession, EventKind, WidgetSettings
from app.schemas.rule import Rule, RuleKind
from app.services.change_feed import ChangeFeed
from app.services.state_machine import MessageStatus, SessionStatus, can_advance_message
from app.services.store.base import RecordStore, StoreError

logger = get_logger("store.sql")

RULE_MODELS = {
    RuleKind.AUTO: AutoReplyRule,
    RuleKind.ADVANCED: AdvancedReplyRule,
}

SETTINGS_COLUMNS = (
    "business_name",
    "representative_name",
    "primary_color",
    "secondary_color",
    "welcome_message",
    "fallback_message",
    "ai_enabled",
    "ai_model",
    "ai_context",
    "operator_mode",
    "is_online",
    "quick_actions",
)


def _session_from_row(row: Conversation) -> ChatSession:
    return ChatSession(
        id=row.id,
        tenant_id=row.tenant_id,
        visitor_id=row.visitor_id,
        status=row.status,
        created_at=row.created_at,
        visitor_name=row.visitor_name,
        pinned=bool(row.pinned),
        notes=row.notes,
    )


def _message_from_row(row: Message) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        session_id=row.session_id,
        content=row.content,
        sender=row.sender,
        is_html=bool(row.is_html),
        created_at=row.created_at,
        status=row.status,
        read_at=row.read_at,
    )


def _rule_record(row) -> dict:
    return {
        "id": row.id,
        "keywords": row.keywords,
        "match_type": row.match_type,
        "response": row.response,
        "is_html": bool(getattr(row, "is_html", False)),
    }


def _settings_from_row(tenant_id: str, row: Optional[TenantSettings]) -> WidgetSettings:
    if row is None:
        return WidgetSettings(tenant_id=tenant_id)
    values = {column: getattr(row, column) for column in SETTINGS_COLUMNS}
    return WidgetSettings(tenant_id=tenant_id, **{k: v for k, v in values.items() if v is not None})


class SqlAlchemyStore(RecordStore):
    """Record store on top of the SQLAlchemy models.

    Change notifications are published in-process after each commit, so only
    engine instances sharing this store's feed see them.
    """

    def __init__(self, session_factory: Callable[[], Session], feed: Optional[ChangeFeed] = None):
        super().__init__(feed)
        self._session_factory = session_factory

    def _db(self) -> Session:
        return self._session_factory()

    async def get_rules(self, tenant_id: str, kind: RuleKind) -> List[dict]:
        model = RULE_MODELS[RuleKind(kind)]
        db = self._db()
        try:
            rows = (
                db.query(model)
                .filter(model.tenant_id == tenant_id)
                .order_by(model.position.asc(), model.created_at.asc())
                .all()
            )
            return [_rule_record(row) for row in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load {kind} rules: {e}") from e
        finally:
            db.close()

    async def save_rule(self, tenant_id: str, kind: RuleKind, rule: Union[Rule, dict]) -> dict:
        kind = RuleKind(kind)
        model = RULE_MODELS[kind]
        record = rule.model_dump(mode="json") if isinstance(rule, Rule) else dict(rule)
        record.setdefault("id", str(uuid4()))

        db = self._db()
        try:
            row = db.query(model).filter(model.id == record["id"]).first()
            if row is None:
                position = db.query(func.count(model.id)).filter(model.tenant_id == tenant_id).scalar() or 0
                row = model(
                    id=record["id"],
                    tenant_id=tenant_id,
                    position=position,
                    created_at=datetime.now(timezone.utc),
                )
                db.add(row)
            row.keywords = record.get("keywords") or []
            row.match_type = record.get("match_type")
            row.response = record.get("response") or ""
            if kind == RuleKind.ADVANCED:
                row.is_html = bool(record.get("is_html", False))
            db.commit()
            return _rule_record(row)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to save rule: {e}") from e
        finally:
            db.close()

    async def get_settings(self, tenant_id: str) -> WidgetSettings:
        db = self._db()
        try:
            row = db.query(TenantSettings).filter(TenantSettings.tenant_id == tenant_id).first()
            return _settings_from_row(tenant_id, row)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load settings: {e}") from e
        finally:
            db.close()

    async def update_settings(self, tenant_id: str, **changes) -> WidgetSettings:
        unknown = set(changes) - set(SETTINGS_COLUMNS)
        if unknown:
            raise StoreError(f"Unknown settings fields: {sorted(unknown)}")

        db = self._db()
        try:
            row = db.query(TenantSettings).filter(TenantSettings.tenant_id == tenant_id).first()
            if row is None:
                defaults = WidgetSettings(tenant_id=tenant_id).model_dump(mode="json")
                row = TenantSettings(**defaults)
                db.add(row)
            validated = WidgetSettings.model_validate(
                {**_settings_from_row(tenant_id, row).model_dump(), **changes}
            ).model_dump(mode="json")
            for column in changes:
                setattr(row, column, validated[column])
            db.commit()
            return _settings_from_row(tenant_id, row)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to update settings: {e}") from e
        finally:
            db.close()

    async def get_or_create_session(self, tenant_id: str, visitor_id: str) -> Tuple[ChatSession, bool]:
        db = self._db()
        try:
            row = (
                db.query(Conversation)
                .filter(
                    Conversation.tenant_id == tenant_id,
                    Conversation.visitor_id == visitor_id,
                    Conversation.status == SessionStatus.ACTIVE.value,
                )
                .order_by(Conversation.created_at.desc())
                .first()
            )
            if row is not None:
                return _session_from_row(row), False

            row = Conversation(
                id=str(uuid4()),
                tenant_id=tenant_id,
                visitor_id=visitor_id,
                status=SessionStatus.ACTIVE.value,
                created_at=datetime.now(timezone.utc),
                pinned=False,
            )
            db.add(row)
            db.commit()
            logger.info(
                "Created session",
                extra={"context": {"session_id": row.id, "tenant_id": tenant_id}},
            )
            return _session_from_row(row), True
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to get or create session: {e}") from e
        finally:
            db.close()

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        db = self._db()
        try:
            row = db.query(Conversation).filter(Conversation.id == session_id).first()
            return _session_from_row(row) if row else None
        finally:
            db.close()

    async def update_session_status(self, session_id: str, status: SessionStatus) -> ChatSession:
        status = SessionStatus(status)
        db = self._db()
        try:
            row = db.query(Conversation).filter(Conversation.id == session_id).first()
            if row is None:
                raise StoreError(f"Session {session_id} not found")
            row.status = status.value
            if status == SessionStatus.CLOSED:
                row.closed_at = datetime.now(timezone.utc)
            db.commit()
            session = _session_from_row(row)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to update session status: {e}") from e
        finally:
            db.close()

        self._notify_session(session)
        return session

    async def list_messages(self, session_id: str) -> List[ChatMessage]:
        db = self._db()
        try:
            rows = (
                db.query(Message)
                .filter(Message.session_id == session_id)
                .order_by(Message.created_at.asc(), Message.seq.asc())
                .all()
            )
            return [_message_from_row(row) for row in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load messages: {e}") from e
        finally:
            db.close()

    async def insert_message(self, message: ChatMessage) -> ChatMessage:
        db = self._db()
        try:
            existing = db.query(Message).filter(Message.id == message.id).first()
            if existing is not None:
                return _message_from_row(existing)

            seq = db.query(func.count(Message.id)).filter(Message.session_id == message.session_id).scalar() or 0
            row = Message(
                id=message.id,
                session_id=message.session_id,
                content=message.content,
                sender=message.sender.value,
                is_html=message.is_html,
                created_at=message.created_at,
                seq=seq,
                status=(message.status or MessageStatus.SENT).value,
                read_at=message.read_at,
            )
            db.add(row)
            db.commit()
            confirmed = _message_from_row(row)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to insert message: {e}") from e
        finally:
            db.close()

        self._notify_message(EventKind.MESSAGE_INSERTED, confirmed)
        return confirmed

    async def update_message_status(self, message_id: str, status: MessageStatus) -> ChatMessage:
        status = MessageStatus(status)
        db = self._db()
        try:
            row = db.query(Message).filter(Message.id == message_id).first()
            if row is None:
                raise StoreError(f"Message {message_id} not found")
            current = MessageStatus(row.status or MessageStatus.SENT.value)
            if not can_advance_message(current, status):
                return _message_from_row(row)
            row.status = status.value
            if status == MessageStatus.READ:
                row.read_at = datetime.now(timezone.utc)
            db.commit()
            updated = _message_from_row(row)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to update message status: {e}") from e
        finally:
            db.close()

        self._notify_message(EventKind.MESSAGE_UPDATED, updated)
        return updated
