from sqlalchemy import JSON, Boolean, Column, String, Text

from app.database import Base


class TenantSettings(Base):
    __tablename__ = "widget_settings"

    tenant_id = Column(String(64), primary_key=True)
    business_name = Column(Text)
    representative_name = Column(Text)
    primary_color = Column(String(20))
    secondary_color = Column(String(20))
    welcome_message = Column(Text)
    fallback_message = Column(Text)
    ai_enabled = Column(Boolean, default=False)
    ai_model = Column(Text)
    ai_context = Column(Text)
    operator_mode = Column(Text, default="auto")  # auto, ai, live
    is_online = Column(Boolean, default=False)
    quick_actions = Column(JSON, default=list)
