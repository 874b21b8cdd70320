from typing import List, Optional

from pydantic import BaseModel

from app.schemas.chat import ChatMessage, OperatorMode, WidgetSettings
from app.services.state_machine import SessionStatus


class StartSessionRequest(BaseModel):
    tenant_id: Optional[str] = None
    visitor_id: str
    business_name: Optional[str] = None
    representative_name: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    welcome_message: Optional[str] = None


class VisitorMessageRequest(BaseModel):
    content: str


class AgentMessageRequest(BaseModel):
    content: str


class OperatorModeRequest(BaseModel):
    mode: OperatorMode


class MessageResponse(BaseModel):
    accepted: bool
    message: Optional[ChatMessage] = None


class SessionStateResponse(BaseModel):
    session_id: str
    tenant_id: str
    status: SessionStatus
    is_open: bool
    is_typing: bool
    has_unread: bool
    settings: WidgetSettings
    messages: List[ChatMessage]


class CloseSessionResponse(BaseModel):
    success: bool
    status: SessionStatus
    message: Optional[str] = None
