import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kaimono.errors import (
    EmptyCartError,
    InvalidRequestError,
    NotFoundError,
    OrderNotCancellableError,
    PaymentNotCompletedError,
)
from kaimono.models.order import (
    Customer,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    ShippingTracking,
    ensure_transition,
    generate_order_number,
)
from kaimono.models.stock_history import StockHistory
from kaimono.models.user import User
from kaimono.repositories.address_repo import AddressRepository
from kaimono.repositories.cart_repo import CartRepository
from kaimono.repositories.order_repo import OrderRepository
from kaimono.services.campaign_service import CampaignService
from kaimono.services.cart_service import CartService
from kaimono.services.inventory_service import InventoryService
from kaimono.utils.clock import utcnow
from kaimono.utils.transactions import smart_transaction

log = logging.getLogger(__name__)

TRACKING_STATUSES = ("shipped", "in_transit", "delivered")


def _yen(value, default: int = 0) -> int:
    if value in (None, ""):
        return default
    return int(round(float(value)))


def _paid_campaign_ids(meta: Dict) -> Optional[List[int]]:
    """Campaign ids a session was priced with; None when the metadata predates them."""
    raw = meta.get("campaign_ids")
    if raw is None:
        return None
    try:
        return [int(p) for p in str(raw).split(",") if p.strip()]
    except ValueError:
        raise InvalidRequestError(f"Bad campaign_ids in checkout session metadata: {raw}")


class OrderService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = OrderRepository(db)
        self.cart_repo = CartRepository(db)
        self.inventory = InventoryService(db)
        self.campaigns = CampaignService(db)

    # --- materialization ---

    def materialize_from_session(self, session: Dict) -> Tuple[Order, bool]:
        """
        Turn a paid Stripe checkout session into an order.

        Runs once per session id: a replay returns the existing order with
        ``created=False``. Customer upsert, order + items, stock decrement,
        campaign usage and cart clear share one transaction.
        """
        session_id = session.get("id")
        if not session_id:
            raise InvalidRequestError("Checkout session has no id")
        existing = self.repo.get_by_session(session_id)
        if existing:
            return existing, False
        if session.get("payment_status") != "paid":
            raise PaymentNotCompletedError("Payment has not been completed")

        meta = session.get("metadata") or {}
        try:
            user_id = int(meta["user_id"])
        except (KeyError, TypeError, ValueError):
            raise InvalidRequestError("Checkout session metadata has no user_id")
        user = self.db.get(User, user_id)
        details = session.get("customer_details") or {}
        email = meta.get("user_email") or details.get("email") or (user.email if user else None)

        paid_ids = _paid_campaign_ids(meta)

        address = None
        if meta.get("shipping_address_id"):
            addr = AddressRepository(self.db).get_owned(int(meta["shipping_address_id"]), user_id)
            address = addr.to_dict() if addr else None

        try:
            with smart_transaction(self.db, f"order for session {session_id}"):
                # paid items stay in the order even if they sold out or were deactivated since checkout
                lines = CartService(self.db).lines(user_id, active_only=False)
                if not lines:
                    raise EmptyCartError()
                if paid_ids is None:
                    pricing = self.campaigns.apply_to_cart(lines)
                    paid_ids = pricing.campaign_ids
                else:
                    pricing = self.campaigns.apply_paid(lines, paid_ids)
                customer = self._upsert_customer(user, user_id, email, address)

                subtotal = _yen(meta.get("subtotal"), pricing.subtotal)
                order = Order(
                    order_number=generate_order_number(),
                    customer_id=customer.id,
                    user_id=user_id,
                    status=OrderStatus.PROCESSING.value,
                    subtotal=subtotal,
                    discount_amount=_yen(meta.get("discount_amount"), pricing.total_discount),
                    shipping_cost=_yen(meta.get("shipping_cost")),
                    tax_amount=_yen(meta.get("tax_amount")),
                    total_amount=_yen(meta.get("total_amount"), _yen(session.get("amount_total"))),
                    payment_status=PaymentStatus.PAID.value,
                    payment_method="stripe",
                    stripe_session_id=session_id,
                    payment_intent_id=session.get("payment_intent"),
                    shipping_address=address,
                    notes=f"Stripe Session ID: {session_id}",
                )
                self.db.add(order)
                self.db.flush()

                for line in lines:
                    self.db.add(
                        OrderItem(
                            order_id=order.id,
                            product_id=line.product_id,
                            sku=line.sku,
                            product_name=line.name,
                            quantity=line.quantity,
                            price=line.unit_price,
                            total=line.line_total,
                        )
                    )
                    self.inventory.decrease_for_order(line.product_id, line.quantity, order.id, user_id)

                if paid_ids:
                    self.campaigns.record_usage(paid_ids, user_id)
                self.cart_repo.clear(user_id)
            self.db.commit()
        except IntegrityError:
            # another worker (webhook vs. verify) won the race on stripe_session_id
            self.db.rollback()
            existing = self.repo.get_by_session(session_id)
            if existing:
                log.info("order for session %s created concurrently; returning it", session_id)
                return existing, False
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.expire(order, ["items", "tracking"])
        log.info(
            "order %s materialized from session %s (user=%s total=%s)",
            order.order_number, session_id, user_id, order.total_amount,
        )
        return order, True

    def _upsert_customer(self, user: Optional[User], user_id: int, email: Optional[str], address: Optional[Dict]) -> Customer:
        first = user.first_name if user else None
        last = user.last_name if user else None
        phone = (user.phone if user else None) or (address or {}).get("phone")
        customer = self.repo.find_customer(user_id, email)
        if customer is None:
            customer = Customer(user_id=user_id)
            self.db.add(customer)
        customer.user_id = user_id
        customer.email = email
        customer.first_name = first
        customer.last_name = last
        customer.phone = phone
        self.db.flush()
        return customer

    # --- queries ---

    def get_order(self, order_id: int, actor: User) -> Order:
        order = self.repo.get(order_id)
        if not order or not (actor.is_admin or order.user_id == actor.id):
            raise NotFoundError("Order not found")
        return order

    def get_by_session(self, session_id: str, actor: User) -> Optional[Order]:
        order = self.repo.get_by_session(session_id)
        if order and not (actor.is_admin or order.user_id == actor.id):
            return None
        return order

    def list_orders(self, **filters) -> Tuple[List[Order], int]:
        return self.repo.list(**filters)

    # --- lifecycle ---

    def _move(self, order: Order, target: OrderStatus):
        if order.status == target.value:
            return
        order.status = ensure_transition(order.status, target).value

    def cancel(self, order_id: int, actor: User, reason: Optional[str] = None) -> Order:
        order = self.repo.get(order_id, for_update=True)
        if not order or not (actor.is_admin or order.user_id == actor.id):
            raise NotFoundError("Order not found")

        current = OrderStatus(order.status)
        if current == OrderStatus.SHIPPED:
            raise OrderNotCancellableError(
                "This order has already been shipped. Please contact customer support to cancel it."
            )
        if current == OrderStatus.DELIVERED:
            raise OrderNotCancellableError("Delivered orders cannot be cancelled")
        if current == OrderStatus.CANCELLED:
            raise OrderNotCancellableError("Order is already cancelled")

        try:
            with smart_transaction(self.db, f"cancel of order {order.order_number}"):
                self._move(order, OrderStatus.CANCELLED)
                for item in order.items:
                    if item.product_id is None:
                        continue
                    removed = -self._net_stock_change(order.id, item.product_id)
                    if removed > 0:
                        self.inventory.restore_for_cancel(item.product_id, removed, order.id, actor.id)
                order.cancelled_at = utcnow()
                if reason:
                    order.notes = f"{order.notes or ''}\nCancelled: {reason}".strip()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        log.info("order %s cancelled by user %s", order.order_number, actor.id)
        return order

    def _net_stock_change(self, order_id: int, product_id: int) -> int:
        rows = (
            self.db.query(StockHistory.quantity_change)
            .filter(
                StockHistory.reference_type == "order",
                StockHistory.reference_id == str(order_id),
                StockHistory.product_id == product_id,
            )
            .all()
        )
        return sum(r[0] for r in rows)

    def update_status(self, order_id: int, status: str, actor: User) -> Order:
        try:
            target = OrderStatus(status)
        except ValueError:
            raise InvalidRequestError(f"Unknown order status: {status}")
        if target == OrderStatus.CANCELLED:
            return self.cancel(order_id, actor)
        order = self.repo.get(order_id, for_update=True)
        if not order:
            raise NotFoundError("Order not found")
        self._move(order, target)
        self.db.commit()
        return order

    def add_tracking(self, order_id: int, data: Dict, actor: User) -> ShippingTracking:
        order = self.repo.get(order_id, for_update=True)
        if not order:
            raise NotFoundError("Order not found")
        status = data.get("status") or "shipped"
        if status not in TRACKING_STATUSES:
            raise InvalidRequestError(f"Unknown tracking status: {status}")
        if not data.get("tracking_number") or not data.get("carrier"):
            raise InvalidRequestError("tracking_number and carrier are required")

        self._move(order, OrderStatus.SHIPPED)
        now = utcnow()
        tracking = ShippingTracking(
            order_id=order.id,
            tracking_number=data["tracking_number"],
            carrier=data["carrier"],
            carrier_url=data.get("carrier_url"),
            status=status,
            shipped_at=data.get("shipped_at") or now,
        )
        if status == "delivered":
            tracking.delivered_at = now
            self._move(order, OrderStatus.DELIVERED)
        self.db.add(tracking)
        self.db.commit()
        log.info("tracking %s added to order %s", tracking.tracking_number, order.order_number)
        return tracking

    def update_tracking(self, tracking_id: int, data: Dict, actor: User) -> ShippingTracking:
        tracking = self.repo.get_tracking(tracking_id)
        if not tracking:
            raise NotFoundError("Tracking record not found")
        for field in ("tracking_number", "carrier", "carrier_url"):
            if data.get(field) is not None:
                setattr(tracking, field, data[field])
        status = data.get("status")
        if status is not None:
            if status not in TRACKING_STATUSES:
                raise InvalidRequestError(f"Unknown tracking status: {status}")
            order = self.repo.get(tracking.order_id, for_update=True)
            tracking.status = status
            if status == "delivered":
                tracking.delivered_at = data.get("delivered_at") or utcnow()
                if order.status != OrderStatus.DELIVERED.value:
                    self._move(order, OrderStatus.SHIPPED)
                    self._move(order, OrderStatus.DELIVERED)
            else:
                self._move(order, OrderStatus.SHIPPED)
        self.db.commit()
        return tracking
