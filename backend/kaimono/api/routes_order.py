from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.schemas.order_schema import OrderOut, OrderSummaryOut, TrackingOut
from kaimono.security import get_current_user, require_admin
from kaimono.services.order_service import OrderService
from kaimono.utils.audit import request_meta, write_audit

router = APIRouter(prefix="/api/orders", tags=["orders"])


class CancelIn(BaseModel):
    reason: Optional[str] = None


class StatusIn(BaseModel):
    status: str


class TrackingIn(BaseModel):
    tracking_number: str
    carrier: str
    carrier_url: Optional[str] = None
    status: str = "shipped"


class TrackingUpdateIn(BaseModel):
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    carrier_url: Optional[str] = None
    status: Optional[str] = None


@router.get("/my", summary="Orders of the current user")
def my_orders(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows, total = OrderService(db).list_orders(user_id=user.id, status=status, page=page, size=size)
    return {
        "items": [OrderSummaryOut.model_validate(o).model_dump() for o in rows],
        "total": total,
        "page": page,
        "size": size,
    }


@router.get("", summary="List orders (admin)")
def list_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    user_id: Optional[int] = None,
    q: Optional[str] = Query(None, description="order number or customer email"),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=200),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = OrderService(db).list_orders(
        user_id=user_id,
        status=status,
        payment_status=payment_status,
        q=q,
        start=start,
        end=end,
        page=page,
        size=size,
    )
    return {
        "items": [OrderSummaryOut.model_validate(o).model_dump() for o in rows],
        "total": total,
        "page": page,
        "size": size,
    }


@router.put("/tracking/{tracking_id}", summary="Update a tracking record (admin)")
def update_tracking(
    tracking_id: int,
    payload: TrackingUpdateIn,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    data = payload.model_dump(exclude_unset=True)
    tracking = OrderService(db).update_tracking(tracking_id, data, admin)
    write_audit(
        db,
        user_id=admin.id,
        action="tracking.update",
        entity_type="shipping_tracking",
        entity_id=tracking.id,
        new_values=data,
        **request_meta(request),
    )
    return {"success": True, "tracking": TrackingOut.model_validate(tracking).model_dump()}


@router.get("/{order_id}", summary="Order detail")
def get_order(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = OrderService(db).get_order(order_id, user)
    return OrderOut.model_validate(order).model_dump()


@router.get("/{order_id}/tracking", summary="Tracking history of an order")
def order_tracking(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = OrderService(db).get_order(order_id, user)
    return {"items": [TrackingOut.model_validate(t).model_dump() for t in order.tracking]}


@router.post("/{order_id}/cancel", summary="Cancel an order and restock its items")
def cancel_order(
    order_id: int,
    request: Request,
    payload: Optional[CancelIn] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    reason = payload.reason if payload else None
    order = OrderService(db).cancel(order_id, user, reason)
    write_audit(
        db,
        user_id=user.id,
        action="order.cancel",
        entity_type="order",
        entity_id=order.id,
        new_values={"status": order.status, "reason": reason},
        **request_meta(request),
    )
    return {"success": True, "order": OrderOut.model_validate(order).model_dump()}


@router.put("/{order_id}/status", summary="Change order status (admin)")
def update_status(
    order_id: int,
    payload: StatusIn,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = OrderService(db)
    previous = svc.get_order(order_id, admin).status
    order = svc.update_status(order_id, payload.status, admin)
    write_audit(
        db,
        user_id=admin.id,
        action="order.status",
        entity_type="order",
        entity_id=order.id,
        old_values={"status": previous},
        new_values={"status": order.status},
        **request_meta(request),
    )
    return {"success": True, "order": OrderOut.model_validate(order).model_dump()}


@router.post("/{order_id}/tracking", status_code=201, summary="Add shipment tracking (admin)")
def add_tracking(
    order_id: int,
    payload: TrackingIn,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    tracking = OrderService(db).add_tracking(order_id, payload.model_dump(), admin)
    write_audit(
        db,
        user_id=admin.id,
        action="tracking.create",
        entity_type="order",
        entity_id=order_id,
        new_values=payload.model_dump(),
        **request_meta(request),
    )
    return {"success": True, "tracking": TrackingOut.model_validate(tracking).model_dump()}
