from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo.database import Database

from embroidery_store.database import create_document, get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import is_valid_id, new_id, to_obj_id, unique
from embroidery_store.purchases import ALREADY_PURCHASED_MESSAGE, duplicate_options, purchased_options
from embroidery_store.routers.products import option_names, product_summary
from embroidery_store.schemas import Cart as CartSchema
from embroidery_store.security import get_current_customer

router = APIRouter(prefix="/cart", tags=["cart"])


class CartAddInput(BaseModel):
    product_id: str
    options: List[str]


class CartUpdateInput(BaseModel):
    options: List[str]


def get_or_create_cart(db: Database, customer_id: str) -> Dict[str, Any]:
    cart = db["cart"].find_one({"customer_id": customer_id})
    if not cart:
        cart = create_document(db, "cart", CartSchema(customer_id=customer_id).model_dump())
    return cart


def line_options(product: Dict[str, Any], option_ids: List[str]) -> List[Dict[str, Any]]:
    """Resolve product-option ids against the product, keeping request order."""
    by_id = {o["id"]: o for o in product.get("options") or []}
    unknown = [i for i in option_ids if i not in by_id]
    if unknown:
        raise APIError(400, "Selected options are not available for this product", "INVALID_OPTION", invalidOptions=unknown)
    return [{"id": i, "option_id": by_id[i]["option_id"], "price": by_id[i].get("price", 0)} for i in option_ids]


def check_not_purchased(db: Database, customer_id: str, product_id: str, options: List[Dict[str, Any]]) -> None:
    owned = purchased_options(db, customer_id, [product_id])
    duplicates = duplicate_options(owned, product_id, [o["option_id"] for o in options])
    if duplicates:
        raise APIError(409, ALREADY_PURCHASED_MESSAGE, "ALREADY_PURCHASED", purchasedOptions=duplicates)


def load_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": to_obj_id(product_id, "product id")})
    if not product:
        raise APIError(404, "Product not found", "PRODUCT_NOT_FOUND")
    if not product.get("status", True):
        raise APIError(400, "Product is not available", "PRODUCT_INACTIVE")
    return product


def cart_out(db: Database, cart: Dict[str, Any]) -> Dict[str, Any]:
    items = cart.get("items") or []
    product_ids = [to_obj_id(i["product_id"]) for i in items if is_valid_id(i["product_id"])]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": product_ids}})} if product_ids else {}
    names = option_names(db, [o["option_id"] for i in items for o in i.get("options") or []])
    out = []
    for item in items:
        product = products.get(item["product_id"])
        out.append({
            "id": item["id"],
            "product_id": item["product_id"],
            "product": product_summary(product) if product else None,
            "options": [{**o, "name": names.get(o["option_id"])} for o in item.get("options") or []],
            "subtotal": item.get("subtotal", 0),
        })
    return {
        "id": str(cart["_id"]),
        "items": out,
        "item_count": len(out),
        "subtotal": round(sum(i["subtotal"] for i in out), 2),
    }


def save_items(db: Database, cart: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, Any]:
    db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": datetime.now(timezone.utc)}})
    cart["items"] = items
    return cart


@router.get("")
def get_cart(db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    cart = get_or_create_cart(db, current_customer["id"])
    return {"success": True, "data": cart_out(db, cart)}


@router.post("")
def add_to_cart(payload: CartAddInput, db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    to_obj_id(payload.product_id, "product id")
    option_ids = unique(payload.options)
    if not option_ids:
        raise APIError(400, "Please select at least one option", "OPTIONS_REQUIRED")
    product = load_product(db, payload.product_id)
    requested = line_options(product, option_ids)
    check_not_purchased(db, current_customer["id"], payload.product_id, requested)

    cart = get_or_create_cart(db, current_customer["id"])
    items = list(cart.get("items") or [])
    existing = next((i for i in items if i["product_id"] == payload.product_id), None)
    if existing:
        merged = unique([o["id"] for o in existing.get("options") or []] + option_ids)
        existing["options"] = line_options(product, merged)
        existing["subtotal"] = sum(o["price"] for o in existing["options"])
        message = "Cart item updated"
    else:
        items.append({
            "id": new_id(),
            "product_id": payload.product_id,
            "options": requested,
            "subtotal": sum(o["price"] for o in requested),
        })
        message = "Item added to cart"
    cart = save_items(db, cart, items)
    return {"success": True, "data": cart_out(db, cart), "message": message}


@router.put("/{product_id}")
def update_cart_item(product_id: str, payload: CartUpdateInput, db: Database = Depends(get_db),
                     current_customer: dict = Depends(get_current_customer)):
    to_obj_id(product_id, "product id")
    option_ids = unique(payload.options)
    if not option_ids:
        raise APIError(400, "Please select at least one option", "OPTIONS_REQUIRED")
    cart = db["cart"].find_one({"customer_id": current_customer["id"]})
    items = list(cart.get("items") or []) if cart else []
    item = next((i for i in items if i["product_id"] == product_id), None)
    if not item:
        raise APIError(404, "Item not found in cart", "CART_ITEM_NOT_FOUND")
    product = load_product(db, product_id)
    requested = line_options(product, option_ids)
    check_not_purchased(db, current_customer["id"], product_id, requested)
    item["options"] = requested
    item["subtotal"] = sum(o["price"] for o in requested)
    cart = save_items(db, cart, items)
    return {"success": True, "data": cart_out(db, cart), "message": "Cart item updated"}


@router.delete("/{product_id}")
def remove_cart_item(product_id: str, db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    to_obj_id(product_id, "product id")
    cart = db["cart"].find_one({"customer_id": current_customer["id"]})
    items = list(cart.get("items") or []) if cart else []
    remaining = [i for i in items if i["product_id"] != product_id]
    if len(remaining) == len(items):
        raise APIError(404, "Item not found in cart", "CART_ITEM_NOT_FOUND")
    cart = save_items(db, cart, remaining)
    return {"success": True, "data": cart_out(db, cart), "message": "Item removed from cart"}


@router.delete("")
def clear_cart(db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    cart = db["cart"].find_one({"customer_id": current_customer["id"]})
    if not cart or not cart.get("items"):
        return {"success": True, "message": "Cart is already empty"}
    save_items(db, cart, [])
    return {"success": True, "message": "Cart cleared"}
