from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from kaimono.models.order import Customer, Order, ShippingTracking


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: int, for_update: bool = False) -> Optional[Order]:
        qry = (
            self.db.query(Order)
            .options(selectinload(Order.items), selectinload(Order.tracking))
            .filter(Order.id == order_id)
        )
        if for_update:
            qry = qry.with_for_update()
        return qry.first()

    def get_by_session(self, stripe_session_id: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.stripe_session_id == stripe_session_id)
            .first()
        )

    def list(
        self,
        user_id: Optional[int] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        q: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Order], int]:
        query = self.db.query(Order)
        if user_id is not None:
            query = query.filter(Order.user_id == user_id)
        if status:
            query = query.filter(Order.status == status)
        if payment_status:
            query = query.filter(Order.payment_status == payment_status)
        if start:
            query = query.filter(Order.created_at >= start)
        if end:
            query = query.filter(Order.created_at <= end)
        if q:
            like = f"%{q}%"
            query = query.outerjoin(Customer, Customer.id == Order.customer_id).filter(
                or_(Order.order_number.ilike(like), Customer.email.ilike(like))
            )
        total = query.with_entities(func.count(Order.id)).scalar() or 0
        rows = (
            query.options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * size)
            .limit(size)
            .all()
        )
        return rows, total

    def find_customer(self, user_id: Optional[int], email: Optional[str]) -> Optional[Customer]:
        if user_id is not None:
            c = self.db.query(Customer).filter(Customer.user_id == user_id).first()
            if c:
                return c
        if email:
            return self.db.query(Customer).filter(func.lower(Customer.email) == email.lower()).first()
        return None

    def get_tracking(self, tracking_id: int) -> Optional[ShippingTracking]:
        return self.db.query(ShippingTracking).filter(ShippingTracking.id == tracking_id).first()
