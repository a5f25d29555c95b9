import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from pymongo.database import Database

from embroidery_store.audit import record_audit_log
from embroidery_store.database import create_document, get_db, next_sequence
from embroidery_store.errors import APIError
from embroidery_store.helpers import is_valid_id, pagination_meta, serialize_doc, skip_for, to_obj_id
from embroidery_store.permissions import Feature
from embroidery_store.purchases import ALREADY_PURCHASED_MESSAGE, purchased_options
from embroidery_store.routers.cart import line_options
from embroidery_store.routers.products import image_url, option_names
from embroidery_store.routers.wallet import debit_wallet, get_or_create_wallet
from embroidery_store.schemas import Order as OrderSchema
from embroidery_store.schemas import OrderHistory, OrderStatus, OrderTotal
from embroidery_store.security import get_current_customer, require_permission

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])


class BillingInput(BaseModel):
    payment_first_name: Optional[str] = Field(None, max_length=100)
    payment_last_name: Optional[str] = Field(None, max_length=100)
    payment_company: str = Field("", max_length=100)
    payment_address1: str = Field("", max_length=255)
    payment_address2: str = Field("", max_length=255)
    payment_city: str = Field("", max_length=100)
    payment_postcode: str = Field("", max_length=20)
    payment_country: str = Field("", max_length=100)
    payment_zone: str = Field("", max_length=100)


class PaymentInput(BaseModel):
    payment_method: Literal["wallet", "free"] = "wallet"


class OrderStatusInput(BaseModel):
    order_status: OrderStatus
    comment: str = Field("", max_length=1000)


def history_entry(status: str, comment: str) -> Dict[str, Any]:
    entry = OrderHistory(order_status=status, comment=comment).model_dump()
    entry["created_at"] = datetime.now(timezone.utc)
    return entry


def find_duplicates(db: Database, customer_id: str, products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    owned = purchased_options(db, customer_id, [p["product_id"] for p in products])
    duplicates = []
    for line in products:
        already = owned.get(line["product_id"], set())
        clash = [o["option_id"] for o in line["options"] if o["option_id"] in already]
        if clash:
            duplicates.append({"product_id": line["product_id"], "options": clash})
    return duplicates


def order_out(db: Database, order: Dict[str, Any]) -> Dict[str, Any]:
    data = serialize_doc(order)
    ids = [to_obj_id(p["product_id"]) for p in order.get("products") or [] if is_valid_id(p["product_id"])]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}}, {"product_model": 1, "image": 1})} if ids else {}
    names = option_names(db, [o["option_id"] for p in order.get("products") or [] for o in p.get("options") or []])
    lines = []
    for line in order.get("products") or []:
        product = products.get(line["product_id"], {})
        lines.append({
            "product_id": line["product_id"],
            "product_model": product.get("product_model"),
            "image": image_url(product.get("image")),
            "options": [{**o, "name": names.get(o["option_id"])} for o in line.get("options") or []],
        })
    data["products"] = lines
    return data


def get_own_order(db: Database, order_id: str, customer_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_obj_id(order_id, "order id")})
    if not order:
        raise APIError(404, "Order not found", "ORDER_NOT_FOUND")
    if order["customer_id"] != customer_id:
        raise APIError(403, "You do not have access to this order", "FORBIDDEN")
    return order


# Checkout

@router.post("/checkout", status_code=201)
def start_checkout(request: Request, payload: Optional[BillingInput] = None, db: Database = Depends(get_db),
                   current_customer: dict = Depends(get_current_customer)):
    customer_id = current_customer["id"]
    cart = db["cart"].find_one({"customer_id": customer_id})
    items = cart.get("items") if cart else None
    if not items:
        raise APIError(400, "Cart is empty", "CART_EMPTY")

    ids = [to_obj_id(i["product_id"]) for i in items if is_valid_id(i["product_id"])]
    catalog = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})}
    lines = []
    for item in items:
        product = catalog.get(item["product_id"])
        if not product or not product.get("status", True):
            raise APIError(400, "A product in your cart is no longer available", "PRODUCT_UNAVAILABLE",
                           productId=item["product_id"])
        # prices are taken from the catalog, not from the stored cart line
        options = line_options(product, [o["id"] for o in item.get("options") or []])
        lines.append({"product_id": item["product_id"], "options": options})

    duplicates = find_duplicates(db, customer_id, lines)
    if duplicates:
        raise APIError(409, ALREADY_PURCHASED_MESSAGE, "ALREADY_PURCHASED", duplicates=duplicates)

    subtotal = round(sum(o["price"] for line in lines for o in line["options"]), 2)
    billing = payload.model_dump() if payload else BillingInput().model_dump()
    billing["payment_first_name"] = billing["payment_first_name"] or current_customer.get("first_name", "")
    billing["payment_last_name"] = billing["payment_last_name"] or current_customer.get("last_name", "")

    order = OrderSchema(
        order_number=str(next_sequence(db, "order_number")),
        customer_id=customer_id,
        products=lines,
        order_total=subtotal,
        totals=[OrderTotal(code="subtotal", value=subtotal, sort_order=1), OrderTotal(code="total", value=subtotal, sort_order=9)],
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        **billing,
    )
    doc = order.model_dump()
    doc["history"] = [history_entry("pending", "Checkout initiated from cart")]
    doc = create_document(db, "order", doc)
    logger.info("Order %s created for customer %s", doc["order_number"], customer_id)
    return {"success": True, "data": order_out(db, doc), "message": "Checkout started"}


@router.post("/checkout/{order_id}/pay")
def pay_order(order_id: str, payload: PaymentInput, db: Database = Depends(get_db),
              current_customer: dict = Depends(get_current_customer)):
    customer_id = current_customer["id"]
    order = get_own_order(db, order_id, customer_id)
    if order.get("order_status") != "pending":
        raise APIError(400, f"Order is already {order.get('order_status')}", "ORDER_NOT_PENDING")
    duplicates = find_duplicates(db, customer_id, order.get("products") or [])
    if duplicates:
        raise APIError(409, ALREADY_PURCHASED_MESSAGE, "ALREADY_PURCHASED", duplicates=duplicates)

    total = order.get("order_total", 0)
    payment_code = None
    if total <= 0:
        method = "free"
    elif payload.payment_method == "free":
        raise APIError(400, "Payment is required for this order", "PAYMENT_REQUIRED")
    else:
        method = "wallet"

    # only one request may move a pending order forward
    claimed = db["order"].find_one_and_update(
        {"_id": order["_id"], "order_status": "pending"},
        {"$set": {"order_status": "processing", "updated_at": datetime.now(timezone.utc)}},
    )
    if not claimed:
        raise APIError(409, "Payment for this order is already in progress", "PAYMENT_IN_PROGRESS")

    if method == "wallet":
        wallet = get_or_create_wallet(db, customer_id)
        try:
            debit_wallet(db, wallet, total, f"Payment for order #{order['order_number']}", str(order["_id"]))
        except APIError:
            db["order"].update_one({"_id": order["_id"], "order_status": "processing"},
                                   {"$set": {"order_status": "pending"}})
            raise
        payment_code = str(wallet["_id"])

    db["order"].update_one(
        {"_id": order["_id"], "order_status": "processing"},
        {
            "$set": {"order_status": "paid", "payment_method": method, "payment_code": payment_code,
                     "updated_at": datetime.now(timezone.utc)},
            "$push": {"history": history_entry("paid", f"Payment completed via {method}")},
        },
    )
    product_ids = [p["product_id"] for p in order.get("products") or []]
    for product_id in product_ids:
        if is_valid_id(product_id):
            db["product"].update_one({"_id": to_obj_id(product_id)}, {"$inc": {"sales_count": 1}})
    cart = db["cart"].find_one({"customer_id": customer_id})
    if cart:
        remaining = [i for i in cart.get("items") or [] if i["product_id"] not in product_ids]
        db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": remaining}})
    logger.info("Order %s paid via %s", order["order_number"], method)
    return {"success": True, "data": order_out(db, db["order"].find_one({"_id": order["_id"]})),
            "message": "Payment successful"}


@router.get("/checkout/{order_id}")
def checkout_status(order_id: str, db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    order = get_own_order(db, order_id, current_customer["id"])
    return {"success": True, "data": order_out(db, order)}


@router.post("/checkout/{order_id}/cancel")
def cancel_checkout(order_id: str, db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    order = get_own_order(db, order_id, current_customer["id"])
    if order.get("order_status") != "pending":
        raise APIError(400, "Only pending orders can be cancelled", "ORDER_NOT_PENDING")
    res = db["order"].update_one(
        {"_id": order["_id"], "order_status": "pending"},
        {"$set": {"order_status": "cancelled", "updated_at": datetime.now(timezone.utc)},
         "$push": {"history": history_entry("cancelled", "Cancelled by customer")}},
    )
    if res.modified_count == 0:
        raise APIError(400, "Only pending orders can be cancelled", "ORDER_NOT_PENDING")
    return {"success": True, "data": order_out(db, db["order"].find_one({"_id": order["_id"]})),
            "message": "Order cancelled"}


# Customer orders

@router.get("/orders")
def my_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), db: Database = Depends(get_db),
              current_customer: dict = Depends(get_current_customer)):
    query = {"customer_id": current_customer["id"]}
    total = db["order"].count_documents(query)
    orders = db["order"].find(query).sort("created_at", -1).skip(skip_for(page, limit)).limit(limit)
    return {"success": True, "data": [order_out(db, o) for o in orders], "pagination": pagination_meta(page, limit, total)}


@router.get("/orders/downloads")
def my_downloads(db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    orders = list(db["order"].find({"customer_id": current_customer["id"], "order_status": "paid"}).sort("created_at", -1))
    ids = [to_obj_id(p["product_id"]) for o in orders for p in o.get("products") or [] if is_valid_id(p["product_id"])]
    catalog = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})} if ids else {}
    names = option_names(db, [opt["option_id"] for o in orders for p in o.get("products") or [] for opt in p.get("options") or []])

    downloads = []
    seen = set()
    for order in orders:
        for line in order.get("products") or []:
            product = catalog.get(line["product_id"])
            if not product:
                continue
            files = {o["option_id"]: o.get("file_path") for o in product.get("options") or []}
            for opt in line.get("options") or []:
                key = (line["product_id"], opt["option_id"])
                if key in seen:
                    continue
                seen.add(key)
                downloads.append({
                    "order_id": str(order["_id"]),
                    "order_number": order["order_number"],
                    "product_id": line["product_id"],
                    "product_model": product.get("product_model"),
                    "image": image_url(product.get("image")),
                    "option_id": opt["option_id"],
                    "option_name": names.get(opt["option_id"]),
                    "file_path": files.get(opt["option_id"]),
                    "purchased_at": order.get("created_at"),
                })
    return {"success": True, "data": downloads, "count": len(downloads)}


# Admin orders

@router.get("/admin/orders")
def admin_list_orders(status: Optional[OrderStatus] = None, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                      db: Database = Depends(get_db), admin=Depends(require_permission(Feature.ORDERS, "read"))):
    query: Dict[str, Any] = {}
    if status:
        query["order_status"] = status
    total = db["order"].count_documents(query)
    orders = db["order"].find(query).sort("created_at", -1).skip(skip_for(page, limit)).limit(limit)
    return {"success": True, "data": [order_out(db, o) for o in orders], "pagination": pagination_meta(page, limit, total)}


@router.get("/admin/orders/{order_id}")
def admin_get_order(order_id: str, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.ORDERS, "read"))):
    order = db["order"].find_one({"_id": to_obj_id(order_id, "order id")})
    if not order:
        raise APIError(404, "Order not found", "ORDER_NOT_FOUND")
    data = order_out(db, order)
    customer = db["customer"].find_one({"_id": to_obj_id(order["customer_id"])}, {"first_name": 1, "last_name": 1, "email": 1}) \
        if is_valid_id(order["customer_id"]) else None
    data["customer"] = serialize_doc(customer)
    return {"success": True, "data": data}


@router.patch("/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, payload: OrderStatusInput, db: Database = Depends(get_db),
                              admin=Depends(require_permission(Feature.ORDERS, "update"))):
    obj_id = to_obj_id(order_id, "order id")
    order = db["order"].find_one({"_id": obj_id})
    if not order:
        raise APIError(404, "Order not found", "ORDER_NOT_FOUND")
    comment = payload.comment or f"Status changed to {payload.order_status}"
    db["order"].update_one(
        {"_id": obj_id},
        {"$set": {"order_status": payload.order_status, "updated_at": datetime.now(timezone.utc)},
         "$push": {"history": history_entry(payload.order_status, comment)}},
    )
    record_audit_log(db, admin, "update_status", "order", order_id,
                     {"from": order.get("order_status"), "to": payload.order_status})
    return {"success": True, "data": order_out(db, db["order"].find_one({"_id": obj_id})), "message": "Order status updated"}
