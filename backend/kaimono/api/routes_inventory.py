from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.schemas.product_schema import ProductOut, StockHistoryOut
from kaimono.security import require_admin
from kaimono.services.inventory_service import InventoryService
from kaimono.utils.audit import request_meta, write_audit

router = APIRouter(prefix="/api/admin/stock", tags=["inventory"])


class AdjustIn(BaseModel):
    quantity_change: int
    change_type: str = "adjustment"
    notes: Optional[str] = None


@router.get("/history", summary="Stock ledger")
def stock_history(
    product_id: Optional[int] = None,
    change_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=500),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = InventoryService(db).history(product_id, change_type, start, end, page, size)
    return {"items": [StockHistoryOut.model_validate(r).model_dump() for r in rows], "total": total}


@router.get("/low", summary="Products at or below their low-stock threshold")
def low_stock(
    limit: int = Query(50, ge=1, le=500),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return {"items": [ProductOut.model_validate(p).model_dump() for p in InventoryService(db).low_stock(limit)]}


@router.post("/{product_id}/adjust", summary="Manual stock adjustment")
def adjust_stock(
    product_id: int,
    payload: AdjustIn,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    entry = InventoryService(db).adjust(
        product_id, payload.quantity_change, payload.change_type, payload.notes, admin.id
    )
    write_audit(
        db,
        user_id=admin.id,
        action="stock.adjust",
        entity_type="product",
        entity_id=product_id,
        old_values={"stock_quantity": entry.quantity_before},
        new_values={"stock_quantity": entry.quantity_after, "change_type": entry.change_type},
        **request_meta(request),
    )
    return {"success": True, "entry": StockHistoryOut.model_validate(entry).model_dump()}
