"""
Order workflow

Placing an order validates every requested line against the catalog and
prices the cart. It then saves the order as unfinished, reserves stock
under it and finally marks it placed. Stock is reserved with the store's
conditional decrement, so two checkouts racing for the last units cannot
both win; a checkout that loses part-way gives back what it already took
before failing. Every decrement leaves a hold token on the product, which
lets ``reconcile_reservations`` undo checkouts that died half-way.

Orders remember whether they still hold stock (``stock_reserved``).
Giving stock back flips that flag first, which makes restoration happen at
most once per order no matter how often cancellation is attempted.
"""
import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import (
    clear_holds,
    decrement_stock,
    get_documents,
    increment_stock,
    next_sequence,
    release_hold,
    to_object_id,
    utcnow,
)
from errors import Forbidden, InsufficientStock, InvalidSize, NotFound, UpstreamFailure
from order_status import (
    CANCELLED,
    PENDING,
    apply_transition,
    check_admin_transition,
    check_customer_cancel,
    history_entry,
)
from pricing import Coupon, calculate_pricing, resolve_coupon
from schemas import CartItem, OrderCreate, StatusUpdate

logger = logging.getLogger(__name__)

RESERVING = "reserving"
ABANDONED = "abandoned"

# orders that finished checkout
PLACED = {"reservation": {"$exists": False}}


def _primary_image(product: Dict[str, Any]) -> str:
    images = product.get("images") or []
    for image in images:
        if image.get("is_primary"):
            return image.get("url", "")
    return images[0].get("url", "") if images else ""


def _find_size(product: Dict[str, Any], volume: str) -> Optional[Dict[str, Any]]:
    for size in product.get("sizes", []):
        if size.get("volume") == volume:
            return size
    return None


def _load_product(db: Database, product_id: ObjectId) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": product_id})
    if not product or not product.get("is_active", True):
        raise NotFound("Product", str(product_id))
    return product


def _load_order(db: Database, order_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_object_id(order_id, "Order"), **PLACED})
    if not order:
        raise NotFound("Order", order_id)
    return order


def build_line_items(db: Database, items: List[CartItem]) -> List[Dict[str, Any]]:
    """
    Check requested items against the catalog and snapshot them.

    Quantities of repeated (product, size) pairs are added up before the
    stock comparison.
    """
    products: Dict[ObjectId, Dict[str, Any]] = {}
    requested: Dict[Tuple[ObjectId, str], int] = {}
    lines = []
    for item in items:
        product_id = to_object_id(item.product_id, "Product")
        if product_id not in products:
            products[product_id] = _load_product(db, product_id)
        product = products[product_id]

        size = _find_size(product, item.size)
        if size is None:
            raise InvalidSize(product["name"], item.size)

        key = (product_id, item.size)
        requested[key] = requested.get(key, 0) + item.quantity
        if requested[key] > size.get("stock", 0):
            raise InsufficientStock(product["name"], item.size, requested[key], size.get("stock", 0))

        lines.append({
            "product": product_id,
            "name": product["name"],
            "image": _primary_image(product),
            "size": item.size,
            "price": size["price"],
            "quantity": item.quantity,
        })
    return lines


def _hold(order_id: ObjectId, index: int) -> str:
    return f"{order_id}:{index}"


def release_lines(db: Database, lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Give stock back for each line; returns the lines that could not be restored."""
    failed = []
    for line in lines:
        try:
            if not increment_stock(db, line["product"], line["size"], line["quantity"]):
                logger.warning("No size %s left on product %s to restore %d units to",
                               line["size"], line["product"], line["quantity"])
                failed.append(line)
        except PyMongoError:
            logger.exception("Restoring %d x %s (%s) failed", line["quantity"], line["name"], line["size"])
            failed.append(line)
    return failed


def release_holds(db: Database, order_id: ObjectId, lines: List[Dict[str, Any]]) -> int:
    """Give back the units an unfinished checkout took; lines it never took are skipped."""
    released = 0
    for index, line in enumerate(lines):
        if release_hold(db, line["product"], line["size"], line["quantity"], _hold(order_id, index)):
            released += 1
    return released


def _abandon(db: Database, order_id: ObjectId, lines: List[Dict[str, Any]]) -> None:
    try:
        release_holds(db, order_id, lines)
        db["order"].delete_one({"_id": order_id, "reservation": RESERVING})
    except PyMongoError:
        logger.exception("Could not undo reservation for order %s; left for reconciliation", order_id)


def reserve_stock(db: Database, order_id: ObjectId, lines: List[Dict[str, Any]]) -> None:
    """
    Take stock for every line of an unfinished order, or for none of them.

    Each decrement records a hold token naming the order and line, so a
    checkout interrupted part-way can be undone later by
    ``reconcile_reservations``.
    """
    for index, line in enumerate(lines):
        try:
            applied = decrement_stock(db, line["product"], line["size"], line["quantity"], _hold(order_id, index))
        except PyMongoError:
            logger.exception("Stock reservation failed for %s (%s)", line["name"], line["size"])
            _abandon(db, order_id, lines)
            raise UpstreamFailure("Could not reserve stock")
        if not applied:
            _abandon(db, order_id, lines)
            product = db["product"].find_one({"_id": line["product"]}) or {}
            size = _find_size(product, line["size"]) or {}
            raise InsufficientStock(line["name"], line["size"], line["quantity"], size.get("stock", 0))


def restore_stock(db: Database, order: Dict[str, Any]) -> bool:
    """Return an order's units to the catalog, once."""
    claimed = db["order"].find_one_and_update(
        {"_id": order["_id"], "stock_reserved": True},
        {"$set": {"stock_reserved": False}},
    )
    if claimed is None:
        logger.info("Order %s holds no stock; nothing to restore", order.get("order_number"))
        return False
    failed = release_lines(db, claimed["items"])
    if failed:
        logger.error("Order %s: stock not restored for %d line(s)", order.get("order_number"), len(failed))
        return False
    return True


def reconcile_reservations(db: Database, older_than: timedelta) -> int:
    """
    Clean up checkouts that stopped between saving the order and finishing
    the stock reservation, for instance because the process died.

    Each stale order is claimed first, so a slow checkout still running
    cannot complete it afterwards. Units it managed to take are then given
    back and the order is removed. Returns the number of orders removed.
    """
    cutoff = utcnow() - older_than
    cleaned = 0
    stale = {"reservation": {"$in": [RESERVING, ABANDONED]}, "created_at": {"$lt": cutoff}}
    for order in list(db["order"].find(stale, {"_id": 1})):
        claimed = db["order"].find_one_and_update(
            {"_id": order["_id"], "reservation": {"$in": [RESERVING, ABANDONED]}},
            {"$set": {"reservation": ABANDONED}},
        )
        if claimed is None:
            continue
        released = release_holds(db, claimed["_id"], claimed["items"])
        db["order"].delete_one({"_id": claimed["_id"], "reservation": ABANDONED})
        cleaned += 1
        logger.warning("Removed unfinished checkout %s; %d line(s) of stock given back",
                       claimed.get("order_number"), released)
    return cleaned


def populate_order(db: Database, order: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve the user and product references of an order for display."""
    populated = dict(order)
    user = db["user"].find_one({"_id": order["user"]}, {"name": 1, "email": 1})
    populated["user"] = user or {"_id": order["user"]}

    product_ids = list({item["product"] for item in order.get("items", [])})
    products = {
        p["_id"]: p
        for p in db["product"].find({"_id": {"$in": product_ids}}, {"name": 1, "images": 1, "slug": 1})
    }
    populated["items"] = [
        {**item, "product": products.get(item["product"], {"_id": item["product"]})}
        for item in order.get("items", [])
    ]
    return populated


def place_order(db: Database, user, request: OrderCreate, coupons: Dict[str, Coupon]) -> Dict[str, Any]:
    """
    Save the order as unfinished, reserve its stock, then mark it placed.

    Until the last step the order carries ``reservation`` and is hidden from
    every read; ``reconcile_reservations`` removes ones that never finish.
    """
    coupon = resolve_coupon(request.coupon, coupons)
    lines = build_line_items(db, request.items)
    pricing = calculate_pricing([(line["price"], line["quantity"]) for line in lines], coupon)

    now = utcnow()
    order = {
        "user": ObjectId(user.id),
        "items": lines,
        "shipping_address": request.shipping_address.model_dump(),
        "pricing": pricing.as_dict(),
        "coupon": {"code": coupon.code, "discount": pricing.discount} if coupon else None,
        "payment": {
            "method": request.payment.method,
            "status": "pending",
            "gateway_ref": None,
            "client_secret": None,
            "paid_at": None,
        },
        "status": PENDING,
        "status_history": [history_entry(PENDING, "Order placed successfully", now)],
        "tracking": None,
        "notes": request.notes,
        "is_gift": request.is_gift,
        "gift_message": request.gift_message,
        "stock_reserved": False,
        "reservation": RESERVING,
        "version": 0,
        "created_at": now,
        "updated_at": now,
    }
    try:
        seq = next_sequence(db, "order")
        order["order_number"] = f"ZA-{int(now.timestamp() * 1000)}-{seq:04d}"
        order["_id"] = db["order"].insert_one(order).inserted_id
    except PyMongoError:
        logger.exception("Saving order for user %s failed", user.id)
        raise UpstreamFailure("Could not save the order")

    reserve_stock(db, order["_id"], lines)

    try:
        placed = db["order"].find_one_and_update(
            {"_id": order["_id"], "reservation": RESERVING},
            {"$set": {"stock_reserved": True}, "$unset": {"reservation": ""}},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError:
        logger.exception("Order %s holds stock but could not be marked placed", order["order_number"])
        raise UpstreamFailure("Could not save the order")
    if placed is None:
        # reconciled while still reserving
        release_holds(db, order["_id"], lines)
        raise UpstreamFailure("Checkout took too long; please try again")

    try:
        clear_holds(db, list({line["product"] for line in lines}),
                    [_hold(order["_id"], index) for index in range(len(lines))])
    except PyMongoError:
        logger.warning("Stock holds of order %s were not cleared", order["order_number"])

    logger.info("Order %s placed by user %s: %d line(s), total %.2f",
                placed["order_number"], user.id, len(lines), pricing.total)
    return populate_order(db, placed)


def get_order(db: Database, user, order_id: str) -> Dict[str, Any]:
    order = _load_order(db, order_id)
    if str(order["user"]) != user.id and user.role != "admin":
        raise Forbidden("Not authorized to view this order")
    return populate_order(db, order)


def _page(db: Database, query: Dict[str, Any], page: int, limit: int) -> Tuple[List[Dict[str, Any]], int]:
    total = db["order"].count_documents(query)
    orders = get_documents(db, "order", query, sort=[("created_at", DESCENDING)], skip=(page - 1) * limit, limit=limit)
    return orders, total


def list_my_orders(db: Database, user, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    orders, total = _page(db, {"user": ObjectId(user.id), **PLACED}, page, limit)
    return {
        "orders": [populate_order(db, order) for order in orders],
        "total": total,
        "current_page": page,
        "total_pages": -(-total // limit),
    }


def list_orders(db: Database, status: Optional[str] = None, search: Optional[str] = None,
                page: int = 1, limit: int = 20) -> Dict[str, Any]:
    query: Dict[str, Any] = dict(PLACED)
    if status:
        query["status"] = status
    if search:
        query["order_number"] = {"$regex": re.escape(search), "$options": "i"}
    orders, total = _page(db, query, page, limit)
    return {
        "orders": [populate_order(db, order) for order in orders],
        "total": total,
        "current_page": page,
        "total_pages": -(-total // limit),
    }


def cancel_order(db: Database, user, order_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
    order = _load_order(db, order_id)
    if str(order["user"]) != user.id:
        raise Forbidden("Not authorized to cancel this order")
    check_customer_cancel(order["status"])

    apply_transition(db, order, CANCELLED, reason or "Cancelled by customer")
    restore_stock(db, order)
    logger.info("Order %s cancelled by user %s", order.get("order_number"), user.id)
    return db["order"].find_one({"_id": order["_id"]})


def update_order_status(db: Database, order_id: str, update: StatusUpdate) -> Dict[str, Any]:
    order = _load_order(db, order_id)
    check_admin_transition(order["status"], update.status)

    set_fields = {}
    if update.tracking is not None:
        set_fields["tracking"] = update.tracking.model_dump()
    apply_transition(db, order, update.status, update.message or f"Status updated to {update.status}", set_fields)
    if update.status == CANCELLED:
        restore_stock(db, order)
    return db["order"].find_one({"_id": order["_id"]})


def validate_cart(db: Database, items: List[CartItem], coupon_code: Optional[str] = None,
                  coupons: Optional[Dict[str, Coupon]] = None) -> Dict[str, Any]:
    """Price a cart against current catalog data without writing anything."""
    coupon = resolve_coupon(coupon_code, coupons or {})
    lines = []
    for item in items:
        product = _load_product(db, to_object_id(item.product_id, "Product"))
        size = _find_size(product, item.size)
        if size is None:
            raise InvalidSize(product["name"], item.size)
        stock = size.get("stock", 0)
        quantity = min(item.quantity, stock)
        lines.append({
            "product_id": product["_id"],
            "name": product["name"],
            "image": _primary_image(product) or None,
            "size": item.size,
            "price": size["price"],
            "stock": stock,
            "requested": item.quantity,
            "quantity": quantity,
            "in_stock": stock >= item.quantity,
        })
    pricing = calculate_pricing([(line["price"], line["quantity"]) for line in lines], coupon)
    return {
        "items": lines,
        "pricing": pricing.as_dict(),
        "coupon": coupon.code if coupon else None,
    }
