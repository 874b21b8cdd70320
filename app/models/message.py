import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.types import UTCDateTime


class Message(Base):
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(String(36), ForeignKey("chat_sessions.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    sender = Column(Text, nullable=False)  # user, bot, ai, agent, system
    is_html = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False)
    # insertion order, breaks created_at ties
    seq = Column(Integer, nullable=False, default=0)
    status = Column(Text, default="sent")  # sent, delivered, read
    read_at = Column(UTCDateTime)

    conversation = relationship("Conversation", back_populates="messages")
