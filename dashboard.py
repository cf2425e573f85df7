"""
Admin reporting and user management

Read-only aggregations over orders and products for the admin dashboard,
plus the two user-management operations admins have.
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

import config
from database import get_documents, to_object_id, utcnow
from errors import NotFound
from order_status import PENDING
from orders import PLACED, populate_order
from schemas import AdminUserUpdate

logger = logging.getLogger(__name__)

PAID = {"payment.status": "paid"}


def _months_back(now: datetime, months: int) -> datetime:
    """Midnight on the first day of the month ``months`` before ``now``'s month."""
    years, month_index = divmod(now.month - 1 - months, 12)
    return now.replace(year=now.year + years, month=month_index + 1, day=1,
                       hour=0, minute=0, second=0, microsecond=0)


def _paid_revenue(db: Database) -> float:
    rows = list(db["order"].aggregate([
        {"$match": PAID},
        {"$group": {"_id": None, "total": {"$sum": "$pricing.total"}}},
    ]))
    return round(rows[0]["total"], 2) if rows else 0


def top_products(db: Database, limit: int = 5):
    rows = db["order"].aggregate([
        {"$match": PLACED},
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.product",
            "total_sold": {"$sum": "$items.quantity"},
            "revenue": {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}},
        }},
        {"$sort": {"total_sold": -1}},
        {"$limit": limit},
        {"$lookup": {"from": "product", "localField": "_id", "foreignField": "_id", "as": "product"}},
        {"$unwind": "$product"},
        {"$project": {"name": "$product.name", "total_sold": 1, "revenue": 1}},
    ])
    return [{**row, "revenue": round(row["revenue"], 2)} for row in rows]


def monthly_revenue(db: Database, months: int = 6):
    since = _months_back(utcnow(), months)
    rows = db["order"].aggregate([
        {"$match": {**PAID, "created_at": {"$gte": since}}},
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
            "revenue": {"$sum": "$pricing.total"},
            "orders": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1}},
    ])
    return [
        {"month": f"{row['_id']['year']}-{row['_id']['month']:02d}",
         "revenue": round(row["revenue"], 2), "orders": row["orders"]}
        for row in rows
    ]


def dashboard_stats(db: Database) -> Dict[str, Any]:
    recent = get_documents(db, "order", PLACED, sort=[("created_at", DESCENDING)], limit=5)
    return {
        "stats": {
            "total_orders": db["order"].count_documents(PLACED),
            "total_revenue": _paid_revenue(db),
            "total_users": db["user"].count_documents({"role": "user"}),
            "total_products": db["product"].count_documents({"is_active": True}),
            "pending_orders": db["order"].count_documents({**PLACED, "status": PENDING}),
        },
        "recent_orders": [populate_order(db, order) for order in recent],
        "top_products": top_products(db),
        "monthly_revenue": monthly_revenue(db),
    }


def inventory_overview(db: Database, threshold: int = config.LOW_STOCK_THRESHOLD) -> Dict[str, Any]:
    products = get_documents(db, "product", {"is_active": True},
                             projection={"name": 1, "sizes": 1, "category": 1, "badge": 1})
    low_stock, out_of_stock = [], []
    for product in products:
        for size in product.get("sizes", []):
            entry = {"product_id": product["_id"], "product": product["name"],
                     "size": size["volume"], "category": product.get("category")}
            if size.get("stock", 0) == 0:
                out_of_stock.append(entry)
            elif size["stock"] < threshold:
                low_stock.append({**entry, "stock": size["stock"]})
    return {"low_stock": low_stock, "out_of_stock": out_of_stock, "total_products": len(products)}


def sales_analytics(db: Database, period_days: int = 30) -> Dict[str, Any]:
    since = utcnow() - timedelta(days=period_days)
    paid_since = {"$match": {**PAID, "created_at": {"$gte": since}}}

    by_status = db["order"].aggregate([
        {"$match": {**PLACED, "created_at": {"$gte": since}}},
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
    ])
    by_category = db["order"].aggregate([
        paid_since,
        {"$unwind": "$items"},
        {"$lookup": {"from": "product", "localField": "items.product", "foreignField": "_id", "as": "product"}},
        {"$unwind": "$product"},
        {"$group": {
            "_id": "$product.category",
            "revenue": {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}},
            "units": {"$sum": "$items.quantity"},
        }},
        {"$sort": {"revenue": -1}},
    ])
    daily = db["order"].aggregate([
        paid_since,
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"},
                    "day": {"$dayOfMonth": "$created_at"}},
            "revenue": {"$sum": "$pricing.total"},
            "orders": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1, "_id.day": 1}},
    ])
    return {
        "orders_by_status": {row["_id"]: row["count"] for row in by_status},
        "sales_by_category": [
            {"category": row["_id"], "revenue": round(row["revenue"], 2), "units": row["units"]}
            for row in by_category
        ],
        "daily_sales": [
            {"date": "{year}-{month:02d}-{day:02d}".format(**row["_id"]),
             "revenue": round(row["revenue"], 2), "orders": row["orders"]}
            for row in daily
        ],
    }


def list_users(db: Database, search: Optional[str] = None, role: Optional[str] = None,
               page: int = 1, limit: int = 20) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if role:
        query["role"] = role
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}]
    users = get_documents(db, "user", query, sort=[("created_at", DESCENDING)],
                          skip=(page - 1) * limit, limit=limit, projection={"password_hash": 0})
    return {"users": users, "total": db["user"].count_documents(query), "current_page": page}


def update_user(db: Database, user_id: str, data: AdminUserUpdate) -> Dict[str, Any]:
    changes = data.model_dump(exclude_none=True)
    changes["updated_at"] = utcnow()
    user = db["user"].find_one_and_update(
        {"_id": to_object_id(user_id, "User")},
        {"$set": changes},
        projection={"password_hash": 0},
        return_document=ReturnDocument.AFTER,
    )
    if user is None:
        raise NotFound("User", user_id)
    logger.info("User %s updated by admin: %s", user_id, sorted(changes))
    return user
