from app.schemas.api import (
    AgentMessageRequest,
    CloseSessionResponse,
    MessageResponse,
    OperatorModeRequest,
    SessionStateResponse,
    StartSessionRequest,
    VisitorMessageRequest,
)
from app.schemas.chat import ChatMessage, ChatSession, OperatorMode, Reply, Sender, WidgetSettings
from app.schemas.rule import MatchType, Rule, RuleKind
from app.schemas.widget import ConfigurationError, WidgetConfig

__all__ = [
    "AgentMessageRequest",
    "CloseSessionResponse",
    "MessageResponse",
    "OperatorModeRequest",
    "SessionStateResponse",
    "StartSessionRequest",
    "VisitorMessageRequest",
    "ChatMessage",
    "ChatSession",
    "OperatorMode",
    "Reply",
    "Sender",
    "WidgetSettings",
    "MatchType",
    "Rule",
    "RuleKind",
    "ConfigurationError",
    "WidgetConfig",
]
