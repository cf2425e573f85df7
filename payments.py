"""
Card payments through Stripe, plus cash-on-delivery confirmation.

Stripe tells us about payment outcomes through webhooks keyed by its own
payment intent id; orders store that id in ``payment.gateway_ref`` so an
event can be traced back to its order.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import stripe
from pymongo.database import Database

import config
from database import to_object_id, utcnow
from errors import Conflict, Forbidden, InvalidTransition, NotFound, UpstreamFailure, ValidationFailed
from order_status import CONFIRMED, PENDING, apply_transition, update_payment
from orders import PLACED

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str
    amount: int
    currency: str


class PaymentGateway:
    """Stripe client bound to one API key, without touching ``stripe.api_key``."""

    def __init__(self, api_key: Optional[str], webhook_secret: Optional[str], currency: str = "usd"):
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self.currency = currency

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def create_intent(self, amount_cents: int, metadata: Dict[str, str], idempotency_key: str) -> PaymentIntent:
        if not self.configured:
            raise UpstreamFailure("Payment service not configured. Add STRIPE_SECRET_KEY to the environment")
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self._api_key,
                idempotency_key=idempotency_key,
                amount=amount_cents,
                currency=self.currency,
                metadata=metadata,
            )
        except stripe.StripeError as exc:
            logger.exception("Creating payment intent for %s failed", metadata.get("order_number"))
            raise UpstreamFailure(f"Payment gateway error: {exc.user_message or exc}")
        return PaymentIntent(intent["id"], intent["client_secret"], amount_cents, self.currency)

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Optional[Dict[str, Any]]:
        """Verify and decode a webhook body; None when webhooks are not configured."""
        if not self.configured or not self._webhook_secret:
            logger.warning("Webhook received but payment service is not configured; ignoring")
            return None
        try:
            return stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except ValueError:
            raise ValidationFailed("Invalid webhook payload")
        except stripe.SignatureVerificationError:
            raise ValidationFailed("Invalid webhook signature")


def get_gateway() -> PaymentGateway:
    return PaymentGateway(config.STRIPE_SECRET_KEY, config.STRIPE_WEBHOOK_SECRET, config.PAYMENT_CURRENCY)


def _to_cents(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def _load_owned_order(db: Database, user, order_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_object_id(order_id, "Order"), **PLACED})
    if not order:
        raise NotFound("Order", order_id)
    if str(order["user"]) != user.id:
        raise Forbidden("Not authorized")
    return order


def create_payment_intent(db: Database, gateway: PaymentGateway, user, order_id: str) -> Dict[str, Any]:
    order = _load_owned_order(db, user, order_id)
    payment = order["payment"]
    if payment["method"] != "stripe":
        raise Conflict("Order is not paid by card")
    if payment["status"] == "paid":
        raise Conflict("Order is already paid")
    if order["status"] != PENDING:
        raise Conflict(f"Order cannot be paid (status: {order['status']})")

    total = order["pricing"]["total"]
    if payment.get("gateway_ref") and payment.get("client_secret"):
        return {
            "client_secret": payment["client_secret"],
            "payment_intent_id": payment["gateway_ref"],
            "amount": total,
        }

    intent = gateway.create_intent(
        _to_cents(total),
        metadata={"order_id": str(order["_id"]), "order_number": order["order_number"], "user_id": user.id},
        idempotency_key=f"order-{order['_id']}",
    )
    update_payment(db, order, gateway_ref=intent.id, client_secret=intent.client_secret)
    logger.info("Payment intent %s created for order %s", intent.id, order["order_number"])
    return {"client_secret": intent.client_secret, "payment_intent_id": intent.id, "amount": total}


def handle_payment_event(db: Database, event: Dict[str, Any]) -> str:
    """Apply a verified gateway event; returns what happened, for logging and tests."""
    event_type = event["type"]
    if event_type not in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
        return "ignored"

    reference = event["data"]["object"]["id"]
    order = db["order"].find_one({"payment.gateway_ref": reference})
    if order is None:
        logger.warning("Payment event %s for unknown intent %s", event_type, reference)
        return "unknown"

    if order["payment"]["status"] == "paid":
        logger.info("Order %s already paid; ignoring %s", order["order_number"], event_type)
        return "duplicate"

    if event_type == PAYMENT_FAILED:
        update_payment(db, order, status="failed")
        logger.info("Payment failed for order %s", order["order_number"])
        return "failed"

    now = utcnow()
    if order["status"] == PENDING:
        apply_transition(db, order, CONFIRMED, "Payment received successfully",
                         {"payment.status": "paid", "payment.paid_at": now})
    else:
        logger.warning("Payment received for order %s in status %s", order["order_number"], order["status"])
        update_payment(db, order, status="paid", paid_at=now)
    logger.info("Payment received for order %s", order["order_number"])
    return "paid"


def confirm_cod(db: Database, user, order_id: str) -> Dict[str, Any]:
    order = _load_owned_order(db, user, order_id)
    if order["payment"]["method"] != "cod":
        raise Conflict("Not a COD order")
    if order["status"] != PENDING:
        raise InvalidTransition(order["status"], CONFIRMED)
    return apply_transition(db, order, CONFIRMED, "Cash on delivery order confirmed")
