from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo.database import Database

from embroidery_store.database import create_document, get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import is_valid_id, to_obj_id, utcnow
from embroidery_store.routers.products import category_names, product_summary
from embroidery_store.schemas import Wishlist as WishlistSchema
from embroidery_store.security import get_current_customer

router = APIRouter(prefix="/wishlist", tags=["wishlist"])


class WishlistInput(BaseModel):
    product_id: str


def wishlist_out(db: Database, wishlist: Dict[str, Any]) -> Dict[str, Any]:
    entries = wishlist.get("items") or []
    ids = [to_obj_id(e["product_id"]) for e in entries if is_valid_id(e["product_id"])]
    # inactive or deleted products drop out of the listing
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}, "status": True})} if ids else {}
    cats = category_names(db, [c for p in products.values() for c in (p.get("categories") or [])[:1]])
    items = []
    for entry in entries:
        product = products.get(entry["product_id"])
        if not product:
            continue
        first = (product.get("categories") or [None])[0]
        items.append({**product_summary(product, cats.get(first)), "added_at": entry.get("added_at")})
    return {"id": str(wishlist["_id"]), "items": items, "count": len(items)}


@router.get("")
def get_wishlist(db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    wishlist = db["wishlist"].find_one({"customer_id": current_customer["id"]})
    if not wishlist:
        wishlist = create_document(db, "wishlist", WishlistSchema(customer_id=current_customer["id"]).model_dump())
    return {"success": True, "data": wishlist_out(db, wishlist)}


@router.post("")
def add_to_wishlist(payload: WishlistInput, db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    product = db["product"].find_one({"_id": to_obj_id(payload.product_id, "product id"), "status": True})
    if not product:
        raise APIError(404, "Product not found or inactive", "PRODUCT_NOT_FOUND")
    wishlist = db["wishlist"].find_one({"customer_id": current_customer["id"]})
    if not wishlist:
        wishlist = create_document(db, "wishlist", WishlistSchema(customer_id=current_customer["id"]).model_dump())
    if any(e["product_id"] == payload.product_id for e in wishlist.get("items") or []):
        return {"success": True, "data": wishlist_out(db, wishlist), "message": "Product already in wishlist"}
    entry = {"product_id": payload.product_id, "added_at": utcnow()}
    db["wishlist"].update_one({"_id": wishlist["_id"]}, {"$push": {"items": entry}, "$set": {"updated_at": utcnow()}})
    wishlist = db["wishlist"].find_one({"_id": wishlist["_id"]})
    return {"success": True, "data": wishlist_out(db, wishlist), "message": "Product added to wishlist"}


@router.delete("/{product_id}")
def remove_from_wishlist(product_id: str, db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    to_obj_id(product_id, "product id")
    wishlist = db["wishlist"].find_one({"customer_id": current_customer["id"]})
    if not wishlist:
        raise APIError(404, "Wishlist not found", "WISHLIST_NOT_FOUND")
    items = wishlist.get("items") or []
    remaining = [e for e in items if e["product_id"] != product_id]
    if len(remaining) == len(items):
        raise APIError(404, "Product not found in wishlist", "NOT_IN_WISHLIST")
    db["wishlist"].update_one({"_id": wishlist["_id"]}, {"$set": {"items": remaining, "updated_at": utcnow()}})
    wishlist["items"] = remaining
    return {"success": True, "data": wishlist_out(db, wishlist), "message": "Product removed from wishlist"}
