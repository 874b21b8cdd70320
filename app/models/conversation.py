import uuid

from sqlalchemy import Boolean, Column, String, Text
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.types import UTCDateTime


class Conversation(Base):
    __tablename__ = "chat_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    visitor_id = Column(String(128), nullable=False, index=True)
    status = Column(Text, nullable=False, default="active")  # active, closed
    created_at = Column(UTCDateTime, nullable=False)
    closed_at = Column(UTCDateTime)
    visitor_name = Column(Text)
    pinned = Column(Boolean, nullable=False, default=False)
    notes = Column(Text)

    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
