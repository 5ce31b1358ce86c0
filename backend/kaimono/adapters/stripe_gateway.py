import json
import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import Request

from kaimono.errors import PaymentGatewayError, WebhookNotConfiguredError, WebhookSignatureError

log = logging.getLogger(__name__)


def _plain(obj) -> Dict[str, Any]:
    # StripeObject serialises itself as JSON; gives us plain dicts all the way down
    return json.loads(str(obj))


class StripeGateway:
    """
    Thin wrapper over the Stripe SDK: checkout sessions and webhook verification.

    Everything returned is a plain dict so services never depend on SDK types.
    """

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str] = None,
        tolerance: int = 300,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def health_check(self) -> bool:
        return bool(self.secret_key)

    def create_checkout_session(self, **params) -> Dict[str, Any]:
        if not self.secret_key:
            raise PaymentGatewayError("Stripe is not configured")
        try:
            session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            log.error("Stripe session create failed: %s", e)
            raise PaymentGatewayError(f"Payment provider error: {e.user_message or e}")
        return _plain(session)

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        if not self.secret_key:
            raise PaymentGatewayError("Stripe is not configured")
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        except stripe.InvalidRequestError as e:
            log.warning("Stripe session %s not retrievable: %s", session_id, e)
            raise PaymentGatewayError(f"Checkout session not found: {session_id}")
        except stripe.StripeError as e:
            log.error("Stripe session retrieve failed: %s", e)
            raise PaymentGatewayError(f"Payment provider error: {e.user_message or e}")
        return _plain(session)

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify the ``Stripe-Signature`` header against the raw body and return the event.

        Raises WebhookNotConfiguredError without a secret, WebhookSignatureError on mismatch.
        """
        if not self.webhook_secret:
            raise WebhookNotConfiguredError("Webhook secret is not configured")
        if not sig_header:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(body, sig_header, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Webhook signature verification failed: {e}")
        try:
            return json.loads(body)
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid webhook payload: {e}")


def get_payment_gateway(request: Request) -> StripeGateway:
    return request.app.state.payment_gateway
