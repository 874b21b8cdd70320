from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from app.services.state_machine import MessageStatus, SessionStatus

DEFAULT_WELCOME_MESSAGE = "👋 Welcome! How can we help you today?"
DEFAULT_FALLBACK_MESSAGE = "We've received your message and will get back to you soon!"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class Sender(str, Enum):
    USER = "user"
    BOT = "bot"
    AI = "ai"
    AGENT = "agent"
    SYSTEM = "system"


class OperatorMode(str, Enum):
    AUTO = "auto"
    AI = "ai"
    LIVE = "live"


class ResponderSource(str, Enum):
    ADVANCED_RULE = "advanced_rule"
    AUTO_RULE = "auto_rule"
    AI = "ai"
    LIVE_ACK = "live_ack"
    FALLBACK = "fallback"


class QuickAction(BaseModel):
    id: str
    label: str
    message: str


class WidgetSettings(BaseModel):
    tenant_id: str
    business_name: str = "My Business"
    representative_name: str = "Support Agent"
    primary_color: str = "#2563eb"
    secondary_color: str = "#1d4ed8"
    welcome_message: str = DEFAULT_WELCOME_MESSAGE
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE
    ai_enabled: bool = False
    ai_model: Optional[str] = None
    ai_context: Optional[str] = None
    operator_mode: OperatorMode = OperatorMode.AUTO
    is_online: bool = False
    quick_actions: List[QuickAction] = Field(default_factory=list)


class ChatSession(BaseModel):
    id: str = Field(default_factory=new_id)
    tenant_id: str
    visitor_id: str
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    visitor_name: Optional[str] = None
    pinned: bool = False
    notes: Optional[str] = None


class ChatMessage(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    content: str
    sender: Sender
    is_html: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    status: Optional[MessageStatus] = MessageStatus.SENT
    read_at: Optional[datetime] = None


class Reply(BaseModel):
    text: str
    sender: Sender
    is_html: bool = False
    source: ResponderSource
    rule_id: Optional[str] = None


class EventKind(str, Enum):
    MESSAGE_INSERTED = "message_inserted"
    MESSAGE_UPDATED = "message_updated"
    SESSION_UPDATED = "session_updated"


class ChangeEvent(BaseModel):
    kind: EventKind
    session_id: str
    message: Optional[ChatMessage] = None
    session: Optional[ChatSession] = None
