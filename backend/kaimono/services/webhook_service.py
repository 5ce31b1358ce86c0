import logging
import time
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from kaimono.adapters.stripe_gateway import StripeGateway
from kaimono.errors import NotFoundError
from kaimono.models.webhook_log import WebhookLog
from kaimono.services.order_service import OrderService
from kaimono.utils.clock import utcnow

log = logging.getLogger(__name__)

RECEIVED = {"received": True}


class WebhookService:
    """
    Stripe webhook intake.

    Every verified event gets a webhook_logs row that moves
    received -> processing -> completed/failed. ``checkout.session.completed``
    with a paid session materializes the order; a failure there answers 500
    so Stripe redelivers the event.
    """

    def __init__(self, db: Session, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway

    def handle(self, payload: bytes, sig_header: Optional[str]) -> Tuple[int, Dict]:
        # signature / configuration errors propagate to the route untouched
        event = self.gateway.construct_event(payload, sig_header)
        started = time.monotonic()

        obj = (event.get("data") or {}).get("object") or {}
        event_type = event.get("type") or "unknown"
        meta = obj.get("metadata") or {}
        entry = WebhookLog(
            event_id=event.get("id"),
            event_type=event_type,
            stripe_session_id=obj.get("id") if event_type.startswith("checkout.session") else None,
            payment_intent_id=obj.get("payment_intent") if event_type.startswith("checkout.session") else obj.get("id"),
            user_id=_int_or_none(meta.get("user_id")),
            status="received",
            request_body=obj,
        )
        self.db.add(entry)
        self.db.commit()

        entry.status = "processing"
        self.db.commit()

        status_code, message = 200, None
        try:
            if event_type == "checkout.session.completed":
                message = self._on_session_completed(obj, entry)
            elif event_type == "payment_intent.succeeded":
                log.info("payment intent succeeded: %s", obj.get("id"))
                message = "payment intent succeeded"
            elif event_type == "payment_intent.payment_failed":
                err = (obj.get("last_payment_error") or {}).get("message")
                log.warning("payment intent failed: %s (%s)", obj.get("id"), err)
                message = f"payment failed: {err}" if err else "payment failed"
            else:
                log.info("unhandled webhook event type %s", event_type)
                message = f"unhandled event type {event_type}"
            entry.status = "completed"
        except Exception as e:
            log.exception("webhook %s (%s) processing failed", entry.event_id, event_type)
            self.db.rollback()
            entry.status = "failed"
            entry.error_message = f"{type(e).__name__}: {e}"
            status_code, message = 500, "webhook processing failed"

        entry.response_status = status_code
        entry.response_message = message
        entry.processing_time_ms = int((time.monotonic() - started) * 1000)
        entry.processed_at = utcnow()
        self.db.add(entry)
        self.db.commit()

        if status_code != 200:
            return status_code, {"received": True, "error": message}
        return status_code, RECEIVED

    def _on_session_completed(self, session: Dict, entry: WebhookLog) -> str:
        if session.get("payment_status") != "paid":
            return f"session payment_status={session.get('payment_status')}; nothing to do"
        order, created = OrderService(self.db).materialize_from_session(session)
        entry.order_id = order.id
        entry.user_id = order.user_id
        entry.order_created = created
        entry.inventory_decreased = created
        if created:
            return f"order {order.order_number} created"
        return f"order {order.order_number} already existed"

    # --- admin views ---

    def list(
        self,
        status: Optional[str] = None,
        event_type: Optional[str] = None,
        session_id: Optional[str] = None,
        page: int = 1,
        size: int = 50,
    ) -> Tuple[List[WebhookLog], int]:
        query = self.db.query(WebhookLog)
        if status:
            query = query.filter(WebhookLog.status == status)
        if event_type:
            query = query.filter(WebhookLog.event_type == event_type)
        if session_id:
            query = query.filter(WebhookLog.stripe_session_id == session_id)
        total = query.with_entities(func.count(WebhookLog.id)).scalar() or 0
        rows = (
            query.order_by(WebhookLog.created_at.desc(), WebhookLog.id.desc())
            .offset((page - 1) * size)
            .limit(size)
            .all()
        )
        return rows, total

    def get(self, log_id: int) -> WebhookLog:
        entry = self.db.get(WebhookLog, log_id)
        if not entry:
            raise NotFoundError("Webhook log not found")
        return entry


def _int_or_none(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
