"""
Order status machine

    pending -> confirmed -> processing -> shipped -> delivered
    cancelled, refunded: side exits

Every write to an order after checkout goes through ``_versioned_update``:
the update only applies if the order still carries the version it was read
with, so a cancellation, an admin update and a payment webhook racing on
the same order cannot overwrite each other. Status changes push one entry
onto ``status_history``; nothing ever rewrites that list.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import utcnow
from errors import Conflict, InvalidTransition, ValidationFailed

logger = logging.getLogger(__name__)

PENDING = "pending"
CONFIRMED = "confirmed"
PROCESSING = "processing"
SHIPPED = "shipped"
DELIVERED = "delivered"
CANCELLED = "cancelled"
REFUNDED = "refunded"

STATUSES = (PENDING, CONFIRMED, PROCESSING, SHIPPED, DELIVERED, CANCELLED, REFUNDED)

CUSTOMER_CANCELLABLE = frozenset({PENDING, CONFIRMED})

# the only ways out of the side exits
EXITS_FROM_ABSORBING = {
    CANCELLED: frozenset({REFUNDED}),
    REFUNDED: frozenset(),
}


def history_entry(status: str, message: str, timestamp: Optional[datetime] = None) -> Dict[str, Any]:
    return {"status": status, "message": message, "timestamp": timestamp or utcnow()}


def check_customer_cancel(current: str) -> None:
    if current not in CUSTOMER_CANCELLABLE:
        raise InvalidTransition(current, CANCELLED)


def check_admin_transition(current: str, target: str) -> None:
    """Admins may jump to any status, but cancelled and refunded orders stay put."""
    if target not in STATUSES:
        raise ValidationFailed(f"Invalid status: {target}")
    if target == current:
        return
    allowed = EXITS_FROM_ABSORBING.get(current)
    if allowed is not None and target not in allowed:
        raise InvalidTransition(current, target)


def _version_filter(order: Dict[str, Any]) -> Dict[str, Any]:
    if "version" in order:
        return {"_id": order["_id"], "version": order["version"]}
    return {"_id": order["_id"], "version": {"$exists": False}}


def _versioned_update(db: Database, order: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    update.setdefault("$inc", {})["version"] = 1
    updated = db["order"].find_one_and_update(
        _version_filter(order),
        update,
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise Conflict(f"Order {order.get('order_number')} was modified concurrently; reload and retry")
    return updated


def apply_transition(
    db: Database,
    order: Dict[str, Any],
    target: str,
    message: str,
    set_fields: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Move ``order`` to ``target`` and append the audit entry.

    Callers check legality first (``check_customer_cancel`` or
    ``check_admin_transition``). ``set_fields`` are extra ``$set`` paths
    written in the same statement, e.g. tracking or payment fields.
    """
    now = utcnow()
    fields = {"status": target, "updated_at": now}
    if set_fields:
        fields.update(set_fields)
    if target == DELIVERED and not (order.get("payment") or {}).get("paid_at"):
        fields["payment.paid_at"] = now

    updated = _versioned_update(db, order, {
        "$set": fields,
        "$push": {"status_history": history_entry(target, message, now)},
    })
    logger.info("Order %s: %s -> %s", order.get("order_number"), order.get("status"), target)
    return updated


def update_payment(db: Database, order: Dict[str, Any], **payment_fields: Any) -> Dict[str, Any]:
    """Write ``payment.*`` fields without touching the status."""
    fields = {f"payment.{key}": value for key, value in payment_fields.items()}
    fields["updated_at"] = utcnow()
    return _versioned_update(db, order, {"$set": fields})
