from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    sku: str
    name: str
    description: Optional[str] = None
    price: int
    main_image_url: Optional[str] = None
    stock_quantity: int
    low_stock_threshold: int
    status: str
    rating: float = 0.0
    review_count: int = 0
    category_ids: List[int] = []
    created_at: Optional[datetime] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[int] = None
    sort_order: int = 0
    is_active: bool = True


class StockHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    product_id: int
    change_type: str
    quantity_change: int
    quantity_before: int
    quantity_after: int
    reference_id: Optional[str] = None
    reference_type: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime
