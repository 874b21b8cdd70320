import uuid

from sqlalchemy import JSON, Boolean, Column, Integer, String, Text

from app.database import Base
from app.models.types import UTCDateTime


class AutoReplyRule(Base):
    __tablename__ = "auto_reply_rules"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    keywords = Column(JSON, nullable=False, default=list)
    match_type = Column(Text, nullable=False)  # exact, fuzzy, regex, synonym
    response = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime)


class AdvancedReplyRule(Base):
    __tablename__ = "advanced_reply_rules"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    keywords = Column(JSON, nullable=False, default=list)
    match_type = Column(Text, nullable=False)
    response = Column(Text, nullable=False)
    is_html = Column(Boolean, nullable=False, default=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime)
