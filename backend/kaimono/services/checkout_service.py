import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from kaimono.adapters.stripe_gateway import StripeGateway
from kaimono.config import Settings
from kaimono.errors import (
    CampaignValidationError,
    EmptyCartError,
    InsufficientStockError,
    NotFoundError,
    PaymentNotCompletedError,
)
from kaimono.models.order import Order
from kaimono.models.user import User
from kaimono.repositories.address_repo import AddressRepository
from kaimono.services.campaign_service import CampaignService, CartLine
from kaimono.services.cart_service import CartService
from kaimono.services.order_service import OrderService
from kaimono.services.pricing import calculate_shipping_cost, summarize

log = logging.getLogger(__name__)

SHIPPING_LINE_NAME = "送料"


def tax_line_name(rate: float) -> str:
    return f"消費税 ({int(round(rate * 100))}%)"


class CheckoutService:
    def __init__(self, db: Session, gateway: StripeGateway, settings: Settings):
        self.db = db
        self.gateway = gateway
        self.settings = settings
        self.cart = CartService(db)
        self.campaigns = CampaignService(db)
        self.orders = OrderService(db)

    def _checkout_lines(self, user_id: int) -> List[CartLine]:
        lines = self.cart.lines(user_id, active_only=True)
        if not lines:
            raise EmptyCartError()
        for line in lines:
            if line.stock_quantity < line.quantity:
                raise InsufficientStockError(line.name, line.stock_quantity, line.quantity)
        return lines

    def quote(self, user: User, prefecture: str) -> Dict:
        """Price the user's cart for a destination without touching Stripe."""
        lines = self._checkout_lines(user.id)
        pricing = self.campaigns.apply_to_cart(lines)
        shipping = 0 if pricing.free_shipping else calculate_shipping_cost(
            prefecture,
            pricing.subtotal,
            self.settings.FREE_SHIPPING_THRESHOLD,
            self.settings.DEFAULT_SHIPPING_FEE,
        )
        totals = summarize(pricing.subtotal, pricing.total_discount, shipping, self.settings.TAX_RATE)
        return {"pricing": pricing, "totals": totals}

    def create_session(self, user: User, shipping_address_id: int) -> Dict:
        address = AddressRepository(self.db).get_owned(shipping_address_id, user.id)
        if not address:
            raise NotFoundError("Shipping address not found")

        lines = self._checkout_lines(user.id)
        validation = self.campaigns.validate_for_checkout(lines, user.id)
        if not validation["valid"]:
            raise CampaignValidationError(validation["errors"], validation["results"])

        q = self.quote(user, address.prefecture)
        pricing, totals = q["pricing"], q["totals"]

        line_items = [
            {
                "price_data": {
                    "currency": "jpy",
                    "product_data": {
                        "name": line.name,
                        **({"images": [line.image_url]} if line.image_url else {}),
                        "metadata": {"product_id": str(line.product_id), "sku": line.sku},
                    },
                    "unit_amount": int(round(line.unit_price)),
                },
                "quantity": line.quantity,
            }
            for line in pricing.items
        ]
        if pricing.cart_discount:
            # line items cannot be negative: fold the cart-level discount into one combined line
            line_items = self._fold_cart_discount(line_items, pricing.cart_discount)
        if totals.shipping > 0:
            line_items.append(self._flat_line(SHIPPING_LINE_NAME, totals.shipping))
        if totals.tax > 0:
            line_items.append(self._flat_line(tax_line_name(self.settings.TAX_RATE), totals.tax))

        base = self.settings.FRONTEND_URL.rstrip("/")
        session = self.gateway.create_checkout_session(
            mode="payment",
            payment_method_types=["card"],
            line_items=line_items,
            customer_email=user.email,
            locale="ja",
            shipping_address_collection={"allowed_countries": ["JP"]},
            success_url=f"{base}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/cart",
            metadata={
                "user_id": str(user.id),
                "user_email": user.email,
                "shipping_address_id": str(address.id),
                "subtotal": str(totals.subtotal),
                "discount_amount": str(totals.discount),
                "shipping_cost": str(totals.shipping),
                "tax_amount": str(totals.tax),
                "total_amount": str(totals.total),
                "campaign_ids": ",".join(str(i) for i in pricing.campaign_ids),
            },
        )
        log.info("checkout session %s created for user %s (total=%s)", session.get("id"), user.id, totals.total)
        return {
            "session_id": session.get("id"),
            "url": session.get("url"),
            "totals": totals.to_dict(),
            "applied_campaigns": pricing.applied_campaigns,
        }

    @staticmethod
    def _flat_line(name: str, amount: int) -> Dict:
        return {
            "price_data": {"currency": "jpy", "product_data": {"name": name}, "unit_amount": int(amount)},
            "quantity": 1,
        }

    @staticmethod
    def _fold_cart_discount(line_items: List[Dict], discount: int) -> List[Dict]:
        total = sum(li["price_data"]["unit_amount"] * li["quantity"] for li in line_items)
        names = "、".join(li["price_data"]["product_data"]["name"] for li in line_items)
        return [
            {
                "price_data": {
                    "currency": "jpy",
                    "product_data": {"name": names[:250]},
                    "unit_amount": max(0, total - discount),
                },
                "quantity": 1,
            }
        ]

    def validate_campaigns(self, user: User) -> Dict:
        lines = self.cart.lines(user.id)
        validation = self.campaigns.validate_for_checkout(lines, user.id)
        pricing = self.campaigns.apply_to_cart(lines)
        return {
            **validation,
            "discounts": {
                "subtotal": pricing.subtotal,
                "total_discount": pricing.total_discount,
                "discounted_subtotal": pricing.discounted_subtotal,
                "free_shipping": pricing.free_shipping,
                "applied_campaigns": pricing.applied_campaigns,
            },
        }

    def verify_payment(self, user: User, session_id: str) -> Tuple[Order, bool]:
        """Fallback path when the webhook has not landed: confirm with Stripe and materialize."""
        existing = self.orders.get_by_session(session_id, user)
        if existing:
            return existing, False
        session = self.gateway.retrieve_checkout_session(session_id)
        owner = (session.get("metadata") or {}).get("user_id")
        if owner is None or str(owner) != str(user.id):
            raise NotFoundError("Checkout session not found")
        if session.get("payment_status") != "paid":
            raise PaymentNotCompletedError("Payment has not been completed")
        return self.orders.materialize_from_session(session)

    def order_by_session(self, user: User, session_id: str) -> Optional[Order]:
        return self.orders.get_by_session(session_id, user)
