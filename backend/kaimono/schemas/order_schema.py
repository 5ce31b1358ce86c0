from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    product_id: Optional[int] = None
    sku: str
    product_name: str
    quantity: int
    price: int
    total: int


class TrackingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_id: int
    tracking_number: str
    carrier: str
    carrier_url: Optional[str] = None
    status: str
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_number: str
    user_id: Optional[int] = None
    customer_id: Optional[int] = None
    status: str
    subtotal: int
    discount_amount: int
    shipping_cost: int
    tax_amount: int
    total_amount: int
    payment_status: str
    payment_method: Optional[str] = None
    stripe_session_id: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    created_at: datetime
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemOut] = []
    latest_tracking: Optional[TrackingOut] = None


class OrderSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_number: str
    status: str
    total_amount: int
    payment_status: str
    created_at: datetime
