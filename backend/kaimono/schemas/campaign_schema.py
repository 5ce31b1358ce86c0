from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class CampaignTargetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    target_id: int
    target_type: str


class CampaignOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    description: Optional[str] = None
    label: Optional[str] = None
    target_type: str
    discount_type: str
    discount_value: float
    minimum_purchase: int
    usage_limit: Optional[int] = None
    current_usage: int
    user_limit: Optional[int] = None
    start_date: datetime
    end_date: datetime
    is_active: bool
    status: str
    targets: List[CampaignTargetOut] = []
