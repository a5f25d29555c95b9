from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pymongo.database import Database

from embroidery_store.audit import record_audit_log
from embroidery_store.database import create_document, get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import pagination_meta, serialize_doc, skip_for, to_obj_id
from embroidery_store.permissions import (
    SUPER_ADMIN_ROLE, Feature, get_all_features, has_super_admin_permissions, normalize_permissions,
    permissions_identical, validate_permissions,
)
from embroidery_store.schemas import Role as RoleSchema
from embroidery_store.security import require_permission

router = APIRouter(prefix="/roles", tags=["roles"])


class RoleIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    # validated by validate_permissions so errors name the offending feature
    permissions: List[Dict[str, Any]] = Field(default_factory=list)
    status: bool = True


class RoleUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=2, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    permissions: Optional[List[Dict[str, Any]]] = None
    status: Optional[bool] = None


def role_out(db: Database, role: Dict[str, Any]) -> Dict[str, Any]:
    data = serialize_doc(role)
    data["permissions"] = normalize_permissions(data.get("permissions") or [])
    created_by = data.get("created_by")
    if created_by:
        admin = db["admin"].find_one({"_id": to_obj_id(created_by)}, {"username": 1, "email": 1, "first_name": 1, "last_name": 1})
        data["created_by"] = serialize_doc(admin) if admin else created_by
    return data


def is_protected(role: Dict[str, Any]) -> bool:
    return role.get("name", "").lower() == SUPER_ADMIN_ROLE.lower() or has_super_admin_permissions(role.get("permissions") or [])


def check_permission_set(permissions: List[Dict[str, Any]], verb: str = "create") -> List[Dict[str, Any]]:
    valid, errors = validate_permissions(permissions)
    if not valid:
        raise APIError(400, "Invalid permissions", "INVALID_PERMISSIONS", errors=errors)
    normalized = normalize_permissions(permissions)
    if has_super_admin_permissions(normalized):
        target = "create role with" if verb == "create" else "update role to have"
        raise APIError(403, f"Cannot {target} SuperAdmin-level permissions. This permission set is system-protected.",
                       "SUPERADMIN_PERMISSIONS_FORBIDDEN")
    return normalized


def check_unique_permissions(db: Database, normalized: List[Dict[str, Any]], exclude_id=None) -> List[Dict[str, Any]]:
    query = {"_id": {"$ne": exclude_id}} if exclude_id is not None else {}
    for existing in db["role"].find(query):
        if permissions_identical(normalized, existing.get("permissions") or []):
            raise APIError(409, f"A role with identical permissions already exists: {existing['name']}",
                           "DUPLICATE_PERMISSIONS", existingRoleName=existing["name"])
    return normalized


def get_role_or_404(db: Database, role_id: str) -> Dict[str, Any]:
    role = db["role"].find_one({"_id": to_obj_id(role_id, "role id")})
    if not role:
        raise APIError(404, "Role not found", "ROLE_NOT_FOUND")
    return role


@router.get("")
def list_roles(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100), status: Optional[bool] = None,
               db: Database = Depends(get_db), admin=Depends(require_permission(Feature.ROLES, "read"))):
    query: Dict[str, Any] = {}
    if status is not None:
        query["status"] = status
    total = db["role"].count_documents(query)
    roles = db["role"].find(query).sort("name", 1).skip(skip_for(page, limit)).limit(limit)
    return {
        "success": True,
        "data": [role_out(db, r) for r in roles],
        "pagination": pagination_meta(page, limit, total),
        "message": "Roles retrieved successfully",
    }


@router.get("/features")
def features_list(admin=Depends(require_permission(Feature.ROLES, "read"))):
    return {"success": True, "data": {"features": get_all_features()}, "message": "Features list retrieved successfully"}


@router.get("/{role_id}")
def get_role(role_id: str, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.ROLES, "read"))):
    role = get_role_or_404(db, role_id)
    return {"success": True, "data": role_out(db, role), "message": "Role retrieved successfully"}


@router.post("", status_code=201)
def create_role(payload: RoleIn, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.ROLES, "create"))):
    name = payload.name
    normalized = check_permission_set(payload.permissions)
    if db["role"].find_one({"name": name}):
        raise APIError(409, "Role name already exists", "DUPLICATE_ROLE_NAME")
    check_unique_permissions(db, normalized)
    role = RoleSchema(
        name=name,
        description=payload.description,
        permissions=normalized,
        status=payload.status,
        created_by=admin["id"],
    )
    doc = create_document(db, "role", role.model_dump())
    record_audit_log(db, admin, "create", "role", str(doc["_id"]), {"name": name})
    return {"success": True, "data": role_out(db, doc), "message": "Role created successfully"}


@router.put("/{role_id}")
def update_role(role_id: str, payload: RoleUpdate, db: Database = Depends(get_db),
                admin=Depends(require_permission(Feature.ROLES, "update"))):
    role = get_role_or_404(db, role_id)
    if is_protected(role):
        raise APIError(403, "Role with SuperAdmin-level permissions cannot be modified", "SUPERADMIN_PERMISSIONS_IMMUTABLE")

    updates: Dict[str, Any] = {}
    if payload.name is not None and payload.name != role["name"]:
        if db["role"].find_one({"name": payload.name}):
            raise APIError(409, "Role name already exists", "DUPLICATE_ROLE_NAME")
        updates["name"] = payload.name
    if payload.permissions is not None:
        normalized = check_permission_set(payload.permissions, verb="update")
        updates["permissions"] = check_unique_permissions(db, normalized, exclude_id=role["_id"])
    if payload.description is not None:
        updates["description"] = payload.description
    if payload.status is not None:
        updates["status"] = payload.status

    if updates:
        updates["updated_at"] = datetime.now(timezone.utc)
        db["role"].update_one({"_id": role["_id"]}, {"$set": updates})
        record_audit_log(db, admin, "update", "role", role_id, {"fields": ",".join(sorted(updates))})
    role = db["role"].find_one({"_id": role["_id"]})
    return {"success": True, "data": role_out(db, role), "message": "Role updated successfully"}


@router.delete("/{role_id}")
def delete_role(role_id: str, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.ROLES, "delete"))):
    role = get_role_or_404(db, role_id)
    if is_protected(role):
        raise APIError(403, "Role with SuperAdmin-level permissions cannot be deleted", "SUPERADMIN_PERMISSIONS_IMMUTABLE")
    admin_count = db["admin"].count_documents({"role_id": role_id})
    if admin_count > 0:
        raise APIError(409, f"Cannot delete role. {admin_count} admin(s) are currently assigned to this role",
                       "ROLE_IN_USE", adminCount=admin_count)
    db["role"].delete_one({"_id": role["_id"]})
    record_audit_log(db, admin, "delete", "role", role_id, {"name": role["name"]})
    return {"success": True, "data": {"id": role_id, "name": role["name"]}, "message": "Role deleted successfully"}


@router.get("/{role_id}/admins")
def admins_by_role(role_id: str, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.ROLES, "read"))):
    role = get_role_or_404(db, role_id)
    projection = {"username": 1, "email": 1, "first_name": 1, "last_name": 1, "status": 1, "last_login": 1}
    admins = [serialize_doc(a) for a in db["admin"].find({"role_id": role_id}, projection)]
    return {
        "success": True,
        "data": {"role": {"id": role_id, "name": role["name"]}, "admins": admins, "count": len(admins)},
        "message": "Admins retrieved successfully",
    }
