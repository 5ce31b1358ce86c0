from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kaimono.adapters.stripe_gateway import StripeGateway, get_payment_gateway
from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.schemas.user_schema import UserOut
from kaimono.schemas.webhook_schema import WebhookLogDetailOut, WebhookLogOut
from kaimono.security import require_admin
from kaimono.services.sales_service import SalesService
from kaimono.services.user_service import UserService
from kaimono.services.webhook_service import WebhookService
from kaimono.utils.audit import request_meta, write_audit

router = APIRouter(prefix="/api/admin", tags=["admin"])


class UserUpdateIn(BaseModel):
    role: Optional[str] = None
    is_active: Optional[bool] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


@router.get("/dashboard", summary="Dashboard totals with month-over-month change")
def dashboard(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return SalesService(db).dashboard()


@router.get("/dashboard/recent-orders", summary="Most recent orders")
def recent_orders(
    limit: int = Query(10, ge=1, le=100),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return {"items": SalesService(db).recent_orders(limit)}


# --- users ---


@router.get("/users", summary="List users")
def list_users(
    q: Optional[str] = None,
    role: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=200),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = UserService(db).list(q=q, role=role, page=page, size=size)
    return {"items": [UserOut.model_validate(u).model_dump() for u in rows], "total": total}


@router.get("/users/{user_id}", summary="Get user")
def get_user(user_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return UserOut.model_validate(UserService(db).get(user_id)).model_dump()


@router.put("/users/{user_id}", summary="Change role, active flag or profile")
def update_user(
    user_id: int,
    payload: UserUpdateIn,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    data = payload.model_dump(exclude_unset=True)
    user, old = UserService(db).admin_update(user_id, data, admin)
    write_audit(
        db,
        user_id=admin.id,
        action="user.update",
        entity_type="user",
        entity_id=user.id,
        old_values=old,
        new_values=data,
        **request_meta(request),
    )
    return {"success": True, "user": UserOut.model_validate(user).model_dump()}


@router.delete("/users/{user_id}", summary="Delete user")
def delete_user(
    user_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    UserService(db).delete(user_id, admin)
    write_audit(
        db,
        user_id=admin.id,
        action="user.delete",
        entity_type="user",
        entity_id=user_id,
        **request_meta(request),
    )
    return {"success": True}


# --- webhook logs ---


@router.get("/webhook-logs", summary="Stripe webhook deliveries")
def list_webhook_logs(
    status: Optional[str] = None,
    event_type: Optional[str] = None,
    session_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    rows, total = WebhookService(db, gateway).list(status, event_type, session_id, page, size)
    return {"items": [WebhookLogOut.model_validate(r).model_dump() for r in rows], "total": total}


@router.get("/webhook-logs/{log_id}", summary="One webhook delivery with its payload")
def get_webhook_log(
    log_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    return WebhookLogDetailOut.model_validate(WebhookService(db, gateway).get(log_id)).model_dump()
