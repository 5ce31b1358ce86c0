from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class WebhookLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    event_id: Optional[str] = None
    event_type: str
    stripe_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    user_id: Optional[int] = None
    order_id: Optional[int] = None
    status: str
    response_status: Optional[int] = None
    response_message: Optional[str] = None
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    inventory_decreased: bool
    order_created: bool
    created_at: datetime
    processed_at: Optional[datetime] = None


class WebhookLogDetailOut(WebhookLogOut):
    request_body: Optional[Dict[str, Any]] = None
