"""
Sales reports and dashboard figures.

Only orders with ``payment_status == "paid"`` are counted. Cancelled orders that
were paid still count, because cancelling does not refund through this system.
"""
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import distinct, func
from sqlalchemy.orm import Session, joinedload

from kaimono.models.order import Order, OrderItem, PaymentStatus
from kaimono.models.product import Category, Product, product_categories
from kaimono.models.user import User
from kaimono.utils.clock import utcnow


def pct_change(current: float, previous: float) -> float:
    if not previous:
        return 100.0 if current else 0.0
    return round((current - previous) / previous * 100, 1)


def month_bounds(now: datetime) -> Tuple[datetime, datetime, datetime]:
    """(start of previous month, start of this month, start of next month)"""
    this_month = datetime(now.year, now.month, 1)
    prev_month = datetime(now.year - 1, 12, 1) if now.month == 1 else datetime(now.year, now.month - 1, 1)
    next_month = datetime(now.year + 1, 1, 1) if now.month == 12 else datetime(now.year, now.month + 1, 1)
    return prev_month, this_month, next_month


class SalesService:
    def __init__(self, db: Session):
        self.db = db

    def _bucket(self, period: str):
        if period == "day":
            return func.date(Order.created_at)
        if self.db.get_bind().dialect.name == "sqlite":
            return func.strftime("%Y-%m", Order.created_at)
        return func.to_char(Order.created_at, "YYYY-MM")

    def _filtered(self, query, start: Optional[date], end: Optional[date], product_id: Optional[int], category_id: Optional[int]):
        query = query.filter(Order.payment_status == PaymentStatus.PAID.value)
        if start:
            query = query.filter(Order.created_at >= datetime.combine(start, datetime.min.time()))
        if end:
            query = query.filter(Order.created_at < datetime.combine(end + timedelta(days=1), datetime.min.time()))
        if product_id:
            query = query.filter(
                Order.id.in_(self.db.query(OrderItem.order_id).filter(OrderItem.product_id == product_id))
            )
        if category_id:
            in_category = self.db.query(product_categories.c.product_id).filter(
                product_categories.c.category_id == category_id
            )
            query = query.filter(
                Order.id.in_(self.db.query(OrderItem.order_id).filter(OrderItem.product_id.in_(in_category)))
            )
        return query

    def _periodic(self, period: str, start=None, end=None, product_id=None, category_id=None) -> List[Dict]:
        bucket = self._bucket(period).label("bucket")
        orders = self._filtered(
            self.db.query(bucket, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0)),
            start, end, product_id, category_id,
        ).group_by(bucket)
        items = self._filtered(
            self.db.query(
                bucket,
                func.count(distinct(OrderItem.product_id)),
                func.coalesce(func.sum(OrderItem.quantity), 0),
            ).join(OrderItem, OrderItem.order_id == Order.id),
            start, end, product_id, category_id,
        ).group_by(bucket)
        item_stats = {str(b): (int(u), int(q)) for b, u, q in items.all()}

        rows = []
        for b, count, sales in orders.order_by(bucket).all():
            unique, qty = item_stats.get(str(b), (0, 0))
            rows.append(
                {
                    "date" if period == "day" else "month": str(b),
                    "order_count": int(count),
                    "total_sales": int(sales),
                    "avg_order_amount": round(int(sales) / int(count), 2) if count else 0,
                    "unique_products_sold": unique,
                    "total_items_sold": qty,
                }
            )
        return rows

    def daily(self, start=None, end=None, product_id=None, category_id=None) -> List[Dict]:
        return self._periodic("day", start, end, product_id, category_id)

    def monthly(self, start=None, end=None, product_id=None, category_id=None) -> List[Dict]:
        return self._periodic("month", start, end, product_id, category_id)

    def by_product(self, start=None, end=None, category_id=None, limit: int = 50) -> List[Dict]:
        total_sales = func.sum(OrderItem.total)
        query = self._filtered(
            self.db.query(
                Product.id,
                Product.sku,
                Product.name,
                func.count(distinct(Order.id)),
                func.sum(OrderItem.quantity),
                total_sales,
                func.avg(OrderItem.price),
                func.min(OrderItem.price),
                func.max(OrderItem.price),
            )
            .join(OrderItem, OrderItem.order_id == Order.id)
            .join(Product, Product.id == OrderItem.product_id),
            start, end, None, None,
        )
        if category_id:
            query = query.filter(
                Product.id.in_(
                    self.db.query(product_categories.c.product_id).filter(
                        product_categories.c.category_id == category_id
                    )
                )
            )
        rows = query.group_by(Product.id, Product.sku, Product.name).order_by(total_sales.desc()).limit(limit).all()
        return [
            {
                "id": pid,
                "sku": sku,
                "name": name,
                "order_count": int(orders),
                "total_quantity_sold": int(qty or 0),
                "total_sales": int(sales or 0),
                "avg_price": round(float(avg or 0), 2),
                "min_price": int(lo or 0),
                "max_price": int(hi or 0),
            }
            for pid, sku, name, orders, qty, sales, avg, lo, hi in rows
        ]

    def by_category(self, start=None, end=None) -> List[Dict]:
        total_sales = func.sum(OrderItem.total)
        rows = (
            self._filtered(
                self.db.query(
                    Category.id,
                    Category.name,
                    func.count(distinct(Order.id)),
                    func.sum(OrderItem.quantity),
                    total_sales,
                )
                .join(OrderItem, OrderItem.order_id == Order.id)
                .join(product_categories, product_categories.c.product_id == OrderItem.product_id)
                .join(Category, Category.id == product_categories.c.category_id),
                start, end, None, None,
            )
            .group_by(Category.id, Category.name)
            .order_by(total_sales.desc())
            .all()
        )
        return [
            {
                "category_id": cid,
                "category_name": name,
                "order_count": int(orders),
                "total_quantity_sold": int(qty or 0),
                "total_sales": int(sales or 0),
            }
            for cid, name, orders, qty, sales in rows
        ]

    # --- dashboard ---

    def _paid_between(self, start: datetime, end: datetime) -> Tuple[int, int]:
        count, sales = (
            self.db.query(func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
            .filter(
                Order.payment_status == PaymentStatus.PAID.value,
                Order.created_at >= start,
                Order.created_at < end,
            )
            .one()
        )
        return int(count), int(sales)

    def _created_between(self, model, start: datetime, end: datetime, *criteria) -> int:
        return (
            self.db.query(func.count(model.id))
            .filter(model.created_at >= start, model.created_at < end, *criteria)
            .scalar()
            or 0
        )

    def dashboard(self, now: Optional[datetime] = None) -> Dict:
        now = now or utcnow()
        prev_start, this_start, next_start = month_bounds(now)

        total_orders, total_sales = (
            self.db.query(func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
            .filter(Order.payment_status == PaymentStatus.PAID.value)
            .one()
        )
        total_products = self.db.query(func.count(Product.id)).scalar() or 0
        total_customers = self.db.query(func.count(User.id)).filter(User.role == "user").scalar() or 0

        cur_orders, cur_sales = self._paid_between(this_start, next_start)
        prev_orders, prev_sales = self._paid_between(prev_start, this_start)
        cur_products = self._created_between(Product, this_start, next_start)
        prev_products = self._created_between(Product, prev_start, this_start)
        cur_customers = self._created_between(User, this_start, next_start, User.role == "user")
        prev_customers = self._created_between(User, prev_start, this_start, User.role == "user")

        return {
            "totalSales": int(total_sales),
            "totalOrders": int(total_orders),
            "totalProducts": int(total_products),
            "totalCustomers": int(total_customers),
            "salesChange": pct_change(cur_sales, prev_sales),
            "ordersChange": pct_change(cur_orders, prev_orders),
            "productsChange": pct_change(cur_products, prev_products),
            "customersChange": pct_change(cur_customers, prev_customers),
        }

    def recent_orders(self, limit: int = 10) -> List[Dict]:
        orders = (
            self.db.query(Order)
            .options(joinedload(Order.customer))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
            .all()
        )
        users = {
            u.id: u
            for u in self.db.query(User).filter(User.id.in_([o.user_id for o in orders if o.user_id]))
        }
        out = []
        for o in orders:
            user = users.get(o.user_id)
            if user:
                name = user.display_name()
            elif o.customer:
                name = f"{o.customer.last_name or ''} {o.customer.first_name or ''}".strip() or o.customer.email
            else:
                name = None
            out.append(
                {
                    "id": o.id,
                    "order_number": o.order_number,
                    "customer_name": name or "ゲスト",
                    "total_amount": o.total_amount,
                    "status": o.status,
                    "payment_status": o.payment_status,
                    "created_at": o.created_at.isoformat() if o.created_at else None,
                }
            )
        return out
