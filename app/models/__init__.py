from app.models.conversation import Conversation
from app.models.message import Message
from app.models.reply_rule import AdvancedReplyRule, AutoReplyRule
from app.models.widget_settings import TenantSettings

__all__ = [
    "Conversation",
    "Message",
    "AutoReplyRule",
    "AdvancedReplyRule",
    "TenantSettings",
]
