"""
Product catalog

Listing, lookup and admin maintenance of products. Stock counters are only
changed through the conditional updates in ``database``, by checkout and
by ``adjust_stock``; edits never write a stock value back.
"""
import logging
import re
from typing import Any, Dict, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, decrement_stock, get_documents, increment_stock, to_object_id, utcnow
from errors import Conflict, InsufficientStock, InvalidSize, NotFound, ValidationFailed
from reviews import attach_authors
from schemas import ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

PRODUCT_SORTS = {
    "newest": [("created_at", DESCENDING)],
    "price_asc": [("sizes.price", ASCENDING)],
    "price_desc": [("sizes.price", DESCENDING)],
    "rating_desc": [("ratings.average", DESCENDING), ("ratings.count", DESCENDING)],
    "name": [("name", ASCENDING)],
}


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    if not slug:
        raise ValidationFailed("Product name must contain letters or digits")
    return slug


def list_products(
    db: Database,
    category: Optional[str] = None,
    badge: Optional[str] = None,
    gender: Optional[str] = None,
    featured: Optional[bool] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: str = "newest",
    page: int = 1,
    limit: int = 12,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {"is_active": True}
    if category:
        query["category"] = category
    if badge:
        query["badge"] = badge
    if gender:
        query["gender"] = gender
    if featured:
        query["is_featured"] = True
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = min_price
        if max_price is not None:
            price_filter["$lte"] = max_price
        query["sizes"] = {"$elemMatch": {"price": price_filter}}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}, {"tags": pattern}]

    total = db["product"].count_documents(query)
    products = get_documents(db, "product", query, sort=PRODUCT_SORTS.get(sort, PRODUCT_SORTS["newest"]),
                             skip=(page - 1) * limit, limit=limit)
    return {
        "products": products,
        "total": total,
        "total_pages": -(-total // limit),
        "current_page": page,
    }


def featured_products(db: Database, limit: int = 6):
    return get_documents(db, "product", {"is_featured": True, "is_active": True}, limit=limit)


def search_suggestions(db: Database, q: str, limit: int = 8):
    """Name matches for a search box: just enough to link to the product page."""
    query = {"is_active": True, "name": {"$regex": re.escape(q), "$options": "i"}}
    return [
        {"name": doc.get("name"), "slug": doc.get("slug")}
        for doc in db["product"].find(query, {"name": 1, "slug": 1}).limit(limit)
    ]


def _with_reviews(db: Database, product: Dict[str, Any]) -> Dict[str, Any]:
    reviews = get_documents(db, "review", {"product": product["_id"], "is_approved": True},
                            sort=[("created_at", DESCENDING)])
    product["reviews"] = attach_authors(db, reviews)
    return product


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": to_object_id(product_id, "Product")})
    if not product or not product.get("is_active", True):
        raise NotFound("Product", product_id)
    return _with_reviews(db, product)


def get_product_by_slug(db: Database, slug: str) -> Dict[str, Any]:
    product = db["product"].find_one({"slug": slug, "is_active": True})
    if not product:
        raise NotFound("Product", slug)
    return _with_reviews(db, product)


def related_products(db: Database, product_id: str, limit: int = 4):
    product = db["product"].find_one({"_id": to_object_id(product_id, "Product")}, {"category": 1})
    if not product:
        raise NotFound("Product", product_id)
    return get_documents(
        db, "product",
        {"category": product["category"], "_id": {"$ne": product["_id"]}, "is_active": True},
        limit=limit,
    )


def create_product(db: Database, data: ProductCreate) -> Dict[str, Any]:
    doc = data.model_dump()
    doc.update({
        "slug": slugify(data.name),
        "ratings": {"average": 0.0, "count": 0},
        "is_active": True,
    })
    try:
        product = create_document(db, "product", doc)
    except DuplicateKeyError:
        raise Conflict(f"A product named {data.name} already exists")
    logger.info("Product %s created (%s)", product["_id"], product["slug"])
    return product


SIZE_EDIT_ATTEMPTS = 5


def _merge_sizes(current, edits):
    """Apply edited sizes while keeping the stock each existing size already has."""
    stock = {size["volume"]: size.get("stock", 0) for size in current}
    return [{**edit, "stock": stock.get(edit["volume"], 0)} for edit in edits]


def update_product(db: Database, product_id: str, data: ProductUpdate) -> Dict[str, Any]:
    """
    Apply an admin edit.

    Sizes are matched by volume and keep their stored stock; a new volume
    starts empty and is filled through ``adjust_stock``. The sizes array is
    written only if it still equals what was read, so a checkout landing in
    between makes the edit retry instead of being overwritten.
    """
    oid = to_object_id(product_id, "Product")
    changes = data.model_dump(exclude_none=True)
    edits = changes.pop("sizes", None)
    if "name" in changes:
        changes["slug"] = slugify(changes["name"])

    for _ in range(SIZE_EDIT_ATTEMPTS):
        query: Dict[str, Any] = {"_id": oid}
        update = {**changes, "updated_at": utcnow()}
        if edits is not None:
            current = db["product"].find_one({"_id": oid}, {"sizes": 1})
            if current is None:
                raise NotFound("Product", product_id)
            query["sizes"] = current.get("sizes", [])
            update["sizes"] = _merge_sizes(query["sizes"], edits)
        try:
            product = db["product"].find_one_and_update(query, {"$set": update},
                                                        return_document=ReturnDocument.AFTER)
        except DuplicateKeyError:
            raise Conflict(f"A product named {changes['name']} already exists")
        if product is not None:
            return product
        if edits is None:
            raise NotFound("Product", product_id)
        logger.info("Stock of product %s moved during an edit; retrying", product_id)
    raise Conflict("Product stock kept changing during the edit; try again")


def adjust_stock(db: Database, product_id: str, volume: str, change: int) -> Dict[str, Any]:
    """Add (or with a negative ``change`` remove) units of one size."""
    oid = to_object_id(product_id, "Product")
    if change < 0:
        applied = decrement_stock(db, oid, volume, -change)
    else:
        applied = increment_stock(db, oid, volume, change)
    product = db["product"].find_one({"_id": oid})
    if product is None:
        raise NotFound("Product", product_id)
    if not applied:
        size = next((s for s in product.get("sizes", []) if s["volume"] == volume), None)
        if size is None:
            raise InvalidSize(product["name"], volume)
        raise InsufficientStock(product["name"], volume, -change, size.get("stock", 0))
    logger.info("Stock of %s (%s) adjusted by %+d", product["name"], volume, change)
    return product


def delete_product(db: Database, product_id: str) -> None:
    """Hide a product from the store; orders and reviews keep pointing at it."""
    result = db["product"].update_one(
        {"_id": to_object_id(product_id, "Product")},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFound("Product", product_id)
    logger.info("Product %s deactivated", product_id)
