from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from kaimono.db import Base
from kaimono.utils.clock import utcnow


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(255), nullable=True, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    stripe_session_id = Column(String(255), nullable=True, index=True)
    payment_intent_id = Column(String(255), nullable=True)
    user_id = Column(Integer, nullable=True)
    order_id = Column(Integer, nullable=True)
    status = Column(String(16), nullable=False, default="received", index=True)  # received, processing, completed, failed
    request_body = Column(JSON, nullable=True)
    response_status = Column(Integer, nullable=True)
    response_message = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    inventory_decreased = Column(Boolean, nullable=False, default=False)
    order_created = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    processed_at = Column(DateTime, nullable=True)
