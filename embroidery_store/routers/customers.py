from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.database import Database

from embroidery_store.audit import record_audit_log
from embroidery_store.database import create_document, get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import escape_regex, pagination_meta, serialize_doc, skip_for, to_naive_utc, to_obj_id, utcnow
from embroidery_store.permissions import Feature
from embroidery_store.schemas import Customer as CustomerSchema
from embroidery_store.security import get_current_customer, hash_password, require_permission, verify_password

router = APIRouter(tags=["customers"])


def strip_text(value):
    return value.strip() if isinstance(value, str) else value


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_names(cls, value):
        return strip_text(value)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6, max_length=72)


class CustomerIn(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field("", max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)
    status: bool = True

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_names(cls, value):
        return strip_text(value)


class CustomerUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6, max_length=72)
    status: Optional[bool] = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_names(cls, value):
        return strip_text(value)


def ensure_email_free(db: Database, email: str, exclude_id=None) -> None:
    query: Dict[str, Any] = {"email": email}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if db["customer"].find_one(query):
        raise APIError(409, "Email already registered", "DUPLICATE_EMAIL")


def order_stats(db: Database, customer_ids: List[str], since: Optional[datetime] = None) -> Dict[str, Dict[str, Any]]:
    """Paid order count, spend and last order date per customer."""
    match: Dict[str, Any] = {"customer_id": {"$in": customer_ids}, "order_status": "paid"}
    if since is not None:
        match["created_at"] = {"$gte": since}
    pipeline = [
        {"$match": match},
        {"$group": {"_id": "$customer_id", "totalOrders": {"$sum": 1}, "totalSpent": {"$sum": "$order_total"},
                    "lastOrderDate": {"$max": "$created_at"}}},
    ]
    stats = {}
    for row in db["order"].aggregate(pipeline):
        stats[row.pop("_id")] = row
    return stats


def empty_stats() -> Dict[str, Any]:
    return {"totalOrders": 0, "totalSpent": 0, "lastOrderDate": None}


def search_filter(search: Optional[str]) -> Dict[str, Any]:
    if not search or not search.strip():
        return {}
    pattern = escape_regex(search.strip())
    return {"$or": [
        {"first_name": {"$regex": pattern, "$options": "i"}},
        {"last_name": {"$regex": pattern, "$options": "i"}},
        {"email": {"$regex": pattern, "$options": "i"}},
    ]}


def get_customer_or_404(db: Database, customer_id: str) -> Dict[str, Any]:
    customer = db["customer"].find_one({"_id": to_obj_id(customer_id, "customer id")})
    if not customer:
        raise APIError(404, "Customer not found", "CUSTOMER_NOT_FOUND")
    return customer


# Customer self-service

@router.put("/customers/profile")
def update_profile(payload: ProfileUpdate, db: Database = Depends(get_db),
                   current_customer: dict = Depends(get_current_customer)):
    customer_id = to_obj_id(current_customer["id"])
    updates = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if not updates:
        raise APIError(400, "No fields to update", "NO_CHANGES")
    if "email" in updates:
        updates["email"] = updates["email"].lower()
        ensure_email_free(db, updates["email"], exclude_id=customer_id)
    updates["updated_at"] = utcnow()
    db["customer"].update_one({"_id": customer_id}, {"$set": updates})
    return {"success": True, "data": serialize_doc(db["customer"].find_one({"_id": customer_id})),
            "message": "Profile updated successfully"}


@router.post("/customers/change-password")
def change_password(payload: PasswordChange, db: Database = Depends(get_db),
                    current_customer: dict = Depends(get_current_customer)):
    customer = db["customer"].find_one({"_id": to_obj_id(current_customer["id"])})
    if not verify_password(payload.current_password, customer.get("password_hash", "")):
        raise APIError(400, "Current password is incorrect", "INVALID_PASSWORD")
    db["customer"].update_one(
        {"_id": customer["_id"]},
        {"$set": {"password_hash": hash_password(payload.new_password), "updated_at": utcnow()}},
    )
    return {"success": True, "message": "Password changed successfully"}


# Admin: customers

@router.get("/admin/customers")
def admin_list_customers(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100), search: Optional[str] = None,
                         status: Optional[bool] = None,
                         sort_by: Literal["created_at", "first_name", "email", "total_order_amount"] = "created_at",
                         sort_order: Literal["asc", "desc"] = "desc",
                         db: Database = Depends(get_db), admin=Depends(require_permission(Feature.CUSTOMERS, "read"))):
    query = search_filter(search)
    if status is not None:
        query["status"] = status
    direction = 1 if sort_order == "asc" else -1
    total = db["customer"].count_documents(query)

    if sort_by == "total_order_amount":
        # spend lives on orders, so rank every match before paging
        customers = list(db["customer"].find(query))
        stats = order_stats(db, [str(c["_id"]) for c in customers])
        customers.sort(key=lambda c: stats.get(str(c["_id"]), empty_stats())["totalSpent"], reverse=direction == -1)
        skip = skip_for(page, limit)
        customers = customers[skip:skip + limit]
    else:
        cursor = db["customer"].find(query).sort(sort_by, direction).skip(skip_for(page, limit)).limit(limit)
        customers = list(cursor)
        stats = order_stats(db, [str(c["_id"]) for c in customers])

    data = []
    for customer in customers:
        item = serialize_doc(customer)
        item["totalOrderAmount"] = stats.get(item["id"], empty_stats())["totalSpent"]
        data.append(item)
    return {"success": True, "data": data, "pagination": pagination_meta(page, limit, total)}


@router.get("/admin/customers/active")
def admin_active_customers(days: int = 30, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                           search: Optional[str] = None, db: Database = Depends(get_db),
                           admin=Depends(require_permission(Feature.CUSTOMERS, "read"))):
    """Enabled customers with a paid order in the last `days` days."""
    if days < 1 or days > 365:
        raise APIError(400, "Days parameter must be a number between 1 and 365", "INVALID_DAYS_PARAMETER")
    since = to_naive_utc(datetime.now(timezone.utc) - timedelta(days=days))
    buyer_ids = db["order"].distinct("customer_id", {"order_status": "paid", "created_at": {"$gte": since}})
    query = {"_id": {"$in": [to_obj_id(i) for i in buyer_ids]}, "status": True, **search_filter(search)}
    total = db["customer"].count_documents(query)
    customers = list(db["customer"].find(query).sort("created_at", -1).skip(skip_for(page, limit)).limit(limit))
    stats = order_stats(db, [str(c["_id"]) for c in customers], since=since)

    data = []
    for customer in customers:
        item = serialize_doc(customer)
        item["orderStats"] = stats.get(item["id"], empty_stats())
        data.append(item)
    return {"success": True, "data": data, "days": days, "pagination": pagination_meta(page, limit, total)}


@router.get("/admin/customers/{customer_id}")
def admin_get_customer(customer_id: str, db: Database = Depends(get_db),
                       admin=Depends(require_permission(Feature.CUSTOMERS, "read"))):
    customer = get_customer_or_404(db, customer_id)
    data = serialize_doc(customer)
    data["orderStats"] = order_stats(db, [data["id"]]).get(data["id"], empty_stats())
    return {"success": True, "data": data}


@router.post("/admin/customers", status_code=201)
def admin_create_customer(payload: CustomerIn, db: Database = Depends(get_db),
                          admin=Depends(require_permission(Feature.CUSTOMERS, "create"))):
    email = payload.email.lower()
    ensure_email_free(db, email)
    customer = CustomerSchema(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=email,
        password_hash=hash_password(payload.password),
        status=payload.status,
    )
    doc = create_document(db, "customer", customer.model_dump())
    record_audit_log(db, admin, "create", "customer", str(doc["_id"]), {"email": email})
    return {"success": True, "data": serialize_doc(doc), "message": "Customer created successfully"}


@router.put("/admin/customers/{customer_id}")
def admin_update_customer(customer_id: str, payload: CustomerUpdate, db: Database = Depends(get_db),
                          admin=Depends(require_permission(Feature.CUSTOMERS, "update"))):
    customer = get_customer_or_404(db, customer_id)
    data = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    updates: Dict[str, Any] = {}
    if "email" in data:
        updates["email"] = data["email"].lower()
        ensure_email_free(db, updates["email"], exclude_id=customer["_id"])
    if "password" in data:
        updates["password_hash"] = hash_password(data["password"])
    for field in ("first_name", "last_name", "status"):
        if field in data:
            updates[field] = data[field]
    if not updates:
        raise APIError(400, "No fields to update", "NO_CHANGES")
    updates["updated_at"] = utcnow()
    db["customer"].update_one({"_id": customer["_id"]}, {"$set": updates})
    record_audit_log(db, admin, "update", "customer", customer_id, {"fields": ",".join(sorted(updates))})
    return {"success": True, "data": serialize_doc(db["customer"].find_one({"_id": customer["_id"]})),
            "message": "Customer updated successfully"}


@router.delete("/admin/customers/{customer_id}")
def admin_delete_customer(customer_id: str, db: Database = Depends(get_db),
                          admin=Depends(require_permission(Feature.CUSTOMERS, "delete"))):
    customer = get_customer_or_404(db, customer_id)
    db["customer"].delete_one({"_id": customer["_id"]})
    db["online_user"].delete_many({"customer_id": customer_id})
    record_audit_log(db, admin, "delete", "customer", customer_id, {"email": customer.get("email")})
    return {"success": True, "message": "Customer deleted successfully"}
