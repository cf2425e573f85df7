"""
Product reviews and rating aggregation

A product's ``ratings`` are derived data: after every review write the
review code calls ``recompute_product_rating`` explicitly, which rebuilds
average and count from the approved reviews alone, so running it again
over the same reviews gives the same numbers.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, to_object_id, utcnow
from errors import Conflict, DuplicateReview, Forbidden, NotFound
from order_status import DELIVERED
from schemas import ReviewCreate, ReviewUpdate

logger = logging.getLogger(__name__)

REVIEW_SORTS = {
    "newest": [("created_at", DESCENDING)],
    "oldest": [("created_at", ASCENDING)],
    "highest": [("rating", DESCENDING), ("created_at", DESCENDING)],
    "lowest": [("rating", ASCENDING), ("created_at", DESCENDING)],
    "helpful": [("helpful_votes", DESCENDING), ("created_at", DESCENDING)],
}


def recompute_product_rating(db: Database, product_id: ObjectId) -> Dict[str, Any]:
    stats = list(db["review"].aggregate([
        {"$match": {"product": product_id, "is_approved": True}},
        {"$group": {"_id": "$product", "avg_rating": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]))
    ratings = {"average": 0.0, "count": 0}
    if stats:
        average = Decimal(str(stats[0]["avg_rating"])).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        ratings = {"average": float(average), "count": stats[0]["count"]}
    db["product"].update_one(
        {"_id": product_id},
        {"$set": {"ratings.average": ratings["average"], "ratings.count": ratings["count"]}},
    )
    return ratings


def _load_review(db: Database, review_id: str) -> Dict[str, Any]:
    review = db["review"].find_one({"_id": to_object_id(review_id, "Review")})
    if not review:
        raise NotFound("Review", review_id)
    return review


def attach_authors(db: Database, reviews: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replace each review's user id with the author's name and avatar, in place."""
    authors = {
        u["_id"]: u
        for u in db["user"].find({"_id": {"$in": list({r["user"] for r in reviews})}}, {"name": 1, "avatar": 1})
    }
    for review in reviews:
        review["user"] = authors.get(review["user"], {"_id": review["user"]})
        review.pop("voted_by", None)
    return reviews


def list_product_reviews(db: Database, product_id: str, page: int = 1, limit: int = 10,
                         sort: str = "newest") -> Dict[str, Any]:
    pid = to_object_id(product_id, "Product")
    query = {"product": pid, "is_approved": True}
    total = db["review"].count_documents(query)
    reviews = get_documents(db, "review", query, sort=REVIEW_SORTS.get(sort, REVIEW_SORTS["newest"]),
                            skip=(page - 1) * limit, limit=limit)

    attach_authors(db, reviews)

    breakdown = {str(rating): 0 for rating in range(5, 0, -1)}
    for row in db["review"].aggregate([
        {"$match": query},
        {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
    ]):
        breakdown[str(row["_id"])] = row["count"]

    return {
        "reviews": reviews,
        "total": total,
        "current_page": page,
        "rating_breakdown": breakdown,
    }


def create_review(db: Database, user, data: ReviewCreate) -> Dict[str, Any]:
    product_id = to_object_id(data.product_id, "Product")
    product = db["product"].find_one({"_id": product_id}, {"is_active": 1})
    if not product or not product.get("is_active", True):
        raise NotFound("Product", data.product_id)

    user_id = ObjectId(user.id)
    if db["review"].find_one({"user": user_id, "product": product_id}, {"_id": 1}):
        raise DuplicateReview()

    purchased = db["order"].find_one(
        {"user": user_id, "items.product": product_id, "status": DELIVERED}, {"_id": 1}
    )
    try:
        review = create_document(db, "review", {
            "user": user_id,
            "product": product_id,
            "rating": data.rating,
            "title": data.title,
            "comment": data.comment,
            "is_verified_purchase": purchased is not None,
            "is_approved": True,
            "helpful_votes": 0,
            "voted_by": [],
        })
    except DuplicateKeyError:
        raise DuplicateReview()

    recompute_product_rating(db, product_id)
    logger.info("Review %s on product %s by user %s", review["_id"], product_id, user.id)
    review["user"] = {"_id": user_id, "name": user.name}
    return review


def update_review(db: Database, user, review_id: str, data: ReviewUpdate) -> Dict[str, Any]:
    review = _load_review(db, review_id)
    if str(review["user"]) != user.id:
        raise Forbidden("Not authorized to edit this review")

    changes = data.model_dump(exclude_none=True)
    if changes:
        changes["updated_at"] = utcnow()
        updated = db["review"].find_one_and_update(
            {"_id": review["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if updated is None:
            raise NotFound("Review", review_id)
        review = updated
        recompute_product_rating(db, review["product"])
    return review


def delete_review(db: Database, user, review_id: str) -> None:
    review = _load_review(db, review_id)
    if str(review["user"]) != user.id and user.role != "admin":
        raise Forbidden("Not authorized to delete this review")
    db["review"].delete_one({"_id": review["_id"]})
    recompute_product_rating(db, review["product"])
    logger.info("Review %s deleted by user %s", review_id, user.id)


def toggle_helpful_vote(db: Database, user, review_id: str) -> Dict[str, Any]:
    """
    Flip the caller's helpful vote.

    Each branch is one conditional update that changes the voter set and
    the counter together, so ``helpful_votes`` always equals ``len(voted_by)``.
    """
    rid = to_object_id(review_id, "Review")
    uid = ObjectId(user.id)

    added = db["review"].find_one_and_update(
        {"_id": rid, "voted_by": {"$ne": uid}},
        {"$addToSet": {"voted_by": uid}, "$inc": {"helpful_votes": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if added is not None:
        return {"helpful_votes": added["helpful_votes"], "voted": True}

    removed = db["review"].find_one_and_update(
        {"_id": rid, "voted_by": uid},
        {"$pull": {"voted_by": uid}, "$inc": {"helpful_votes": -1}},
        return_document=ReturnDocument.AFTER,
    )
    if removed is not None:
        return {"helpful_votes": removed["helpful_votes"], "voted": False}

    if db["review"].count_documents({"_id": rid}) == 0:
        raise NotFound("Review", review_id)
    raise Conflict("Vote changed concurrently; retry")
