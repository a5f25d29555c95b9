from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from pymongo.database import Database

from embroidery_store.database import create_document, get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import is_valid_id, pagination_meta, serialize_doc, skip_for, to_obj_id
from embroidery_store.schemas import Review as ReviewSchema
from embroidery_store.security import get_current_customer

router = APIRouter(prefix="/reviews", tags=["reviews"])


class ReviewInput(BaseModel):
    product_id: str
    # range is checked in the handler so the error says what was wrong
    rating: Optional[int] = None
    comment: Optional[str] = Field(None, max_length=1000)


@router.post("", status_code=201)
def create_review(payload: ReviewInput, db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    if payload.rating is None:
        raise APIError(400, "Rating is required", "RATING_REQUIRED")
    if not 1 <= payload.rating <= 5:
        raise APIError(400, "Rating must be between 1 and 5", "INVALID_RATING")
    product = db["product"].find_one({"_id": to_obj_id(payload.product_id, "product id")})
    if not product:
        raise APIError(404, "Product not found", "PRODUCT_NOT_FOUND")
    customer_id = current_customer["id"]
    if db["review"].find_one({"product_id": payload.product_id, "customer_id": customer_id}):
        raise APIError(409, "You have already reviewed this product", "DUPLICATE_REVIEW")
    review = ReviewSchema(
        product_id=payload.product_id,
        customer_id=customer_id,
        rating=payload.rating,
        comment=payload.comment.strip() if payload.comment else payload.comment,
    )
    doc = create_document(db, "review", review.model_dump())
    return {"success": True, "data": serialize_doc(doc), "message": "Review submitted successfully"}


@router.get("/product/{product_id}")
def product_reviews(product_id: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                    db: Database = Depends(get_db)):
    to_obj_id(product_id, "product id")
    query = {"product_id": product_id, "status": True}
    total = db["review"].count_documents(query)
    reviews = list(db["review"].find(query).sort("created_at", -1).skip(skip_for(page, limit)).limit(limit))

    stats = list(db["review"].aggregate([
        {"$match": query},
        {"$group": {"_id": None, "average": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]))
    average = round(stats[0]["average"], 1) if stats else 0

    customer_ids = [to_obj_id(r["customer_id"]) for r in reviews if is_valid_id(r["customer_id"])]
    customers = {
        str(c["_id"]): c for c in db["customer"].find({"_id": {"$in": customer_ids}}, {"first_name": 1, "last_name": 1})
    } if customer_ids else {}
    data = []
    for review in reviews:
        item = serialize_doc(review)
        customer = customers.get(review["customer_id"])
        item["customer_name"] = f"{customer.get('first_name', '')} {customer.get('last_name', '')}".strip() \
            if customer else "Anonymous"
        data.append(item)
    return {
        "success": True,
        "data": data,
        "pagination": pagination_meta(page, limit, total),
        "meta": {"averageRating": average, "totalReviews": total},
    }
