from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.database import Database

from embroidery_store.audit import record_audit_log
from embroidery_store.database import create_document, get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import is_valid_id, pagination_meta, serialize_doc, skip_for, to_obj_id
from embroidery_store.schemas import Admin as AdminSchema
from embroidery_store.security import admin_profile, hash_password, require_super_admin

router = APIRouter(tags=["admins"])


class AdminIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    first_name: str = Field("", max_length=100)
    last_name: str = Field("", max_length=100)
    role_id: str
    status: bool = True

    @field_validator("username", "first_name", "last_name", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value


class AdminUpdate(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8, max_length=72)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    role_id: Optional[str] = None
    status: Optional[bool] = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value


def ensure_role(db: Database, role_id: str) -> None:
    if not is_valid_id(role_id) or not db["role"].find_one({"_id": to_obj_id(role_id)}):
        raise APIError(400, "Role not found", "INVALID_ROLE")


@router.get("/admins")
def list_admins(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                db: Database = Depends(get_db), admin=Depends(require_super_admin)):
    total = db["admin"].count_documents({})
    admins = db["admin"].find({}).sort("username", 1).skip(skip_for(page, limit)).limit(limit)
    return {"success": True, "data": [admin_profile(db, a) for a in admins], "pagination": pagination_meta(page, limit, total)}


@router.post("/admins", status_code=201)
def create_admin(payload: AdminIn, db: Database = Depends(get_db), admin=Depends(require_super_admin)):
    username = payload.username
    email = payload.email.lower()
    if db["admin"].find_one({"$or": [{"username": username}, {"email": email}]}):
        raise APIError(409, "Username or email already exists", "DUPLICATE_ADMIN")
    ensure_role(db, payload.role_id)
    new_admin = AdminSchema(
        username=username,
        email=email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        password_hash=hash_password(payload.password),
        role_id=payload.role_id,
        status=payload.status,
    )
    doc = create_document(db, "admin", new_admin.model_dump())
    record_audit_log(db, admin, "create", "admin", str(doc["_id"]), {"username": username})
    return {"success": True, "data": admin_profile(db, doc), "message": "Admin created successfully"}


@router.put("/admins/{admin_id}")
def update_admin(admin_id: str, payload: AdminUpdate, db: Database = Depends(get_db), admin=Depends(require_super_admin)):
    target = db["admin"].find_one({"_id": to_obj_id(admin_id, "admin id")})
    if not target:
        raise APIError(404, "Admin not found", "ADMIN_NOT_FOUND")
    updates: Dict[str, Any] = {}
    data = payload.model_dump(exclude_unset=True)
    if "email" in data and data["email"]:
        email = data["email"].lower()
        if db["admin"].find_one({"email": email, "_id": {"$ne": target["_id"]}}):
            raise APIError(409, "Email already exists", "DUPLICATE_ADMIN")
        updates["email"] = email
    if data.get("role_id"):
        ensure_role(db, data["role_id"])
        updates["role_id"] = data["role_id"]
    if data.get("password"):
        updates["password_hash"] = hash_password(data["password"])
    for field in ("first_name", "last_name", "status"):
        if data.get(field) is not None:
            updates[field] = data[field]
    if not updates:
        raise APIError(400, "No fields to update", "NO_CHANGES")
    updates["updated_at"] = datetime.now(timezone.utc)
    db["admin"].update_one({"_id": target["_id"]}, {"$set": updates})
    record_audit_log(db, admin, "update", "admin", admin_id, {"fields": ",".join(sorted(updates))})
    return {"success": True, "data": admin_profile(db, db["admin"].find_one({"_id": target["_id"]})),
            "message": "Admin updated successfully"}


@router.delete("/admins/{admin_id}")
def delete_admin(admin_id: str, db: Database = Depends(get_db), admin=Depends(require_super_admin)):
    if admin_id == admin["id"]:
        raise APIError(400, "You cannot delete your own account", "SELF_DELETE_FORBIDDEN")
    res = db["admin"].delete_one({"_id": to_obj_id(admin_id, "admin id")})
    if res.deleted_count == 0:
        raise APIError(404, "Admin not found", "ADMIN_NOT_FOUND")
    record_audit_log(db, admin, "delete", "admin", admin_id)
    return {"success": True, "message": "Admin deleted successfully"}


@router.get("/admin/audit-logs")
def list_audit_logs(page: int = Query(1, ge=1), limit: int = Query(50, ge=1, le=200), resource: Optional[str] = None,
                    db: Database = Depends(get_db), admin=Depends(require_super_admin)):
    query: Dict[str, Any] = {}
    if resource:
        query["resource"] = resource
    total = db["audit_log"].count_documents(query)
    logs = db["audit_log"].find(query).sort("created_at", -1).skip(skip_for(page, limit)).limit(limit)
    return {"success": True, "data": [serialize_doc(entry) for entry in logs], "pagination": pagination_meta(page, limit, total)}
