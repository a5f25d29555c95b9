import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from embroidery_store import config
from embroidery_store.database import get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import is_valid_id, serialize_doc, to_obj_id, utcnow
from embroidery_store.permissions import SUPER_ADMIN_ROLE, normalize_permissions, role_allows

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)

CUSTOMER = "customer"
ADMIN = "admin"
REFRESH = "refresh"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def create_refresh_token(subject: str, principal: str) -> str:
    return create_access_token(
        {"sub": subject, "type": REFRESH, "principal": principal},
        timedelta(minutes=config.REFRESH_TOKEN_EXPIRE_MINUTES),
    )


def issue_tokens(subject: str, principal: str) -> Dict[str, str]:
    return {
        "access_token": create_access_token({"sub": subject, "type": principal}),
        "refresh_token": create_refresh_token(subject, principal),
        "token_type": "bearer",
    }


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise APIError(401, "Invalid or expired token", "INVALID_TOKEN")


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise APIError(401, "Not authenticated", "UNAUTHORIZED")
    return authorization.split(" ", 1)[1]


def _subject(payload: dict, principal: str) -> str:
    if payload.get("type") != principal:
        raise APIError(401, "Invalid token", "INVALID_TOKEN")
    subject = payload.get("sub")
    if not is_valid_id(subject):
        raise APIError(401, "Invalid token", "INVALID_TOKEN")
    return subject


def touch_online(db: Database, customer_id: str) -> None:
    db["online_user"].update_one(
        {"customer_id": customer_id},
        {"$set": {"customer_id": customer_id, "last_seen": utcnow()}},
        upsert=True,
    )


# Dependencies

def get_current_customer(authorization: Optional[str] = Header(default=None), db: Database = Depends(get_db)):
    payload = decode_token(_bearer_token(authorization))
    customer_id = _subject(payload, CUSTOMER)
    customer = db["customer"].find_one({"_id": to_obj_id(customer_id)})
    if not customer:
        raise APIError(401, "Customer not found", "UNAUTHORIZED")
    if not customer.get("status", True):
        raise APIError(403, "Account is disabled", "ACCOUNT_DISABLED")
    touch_online(db, customer_id)
    return serialize_doc(customer)


def get_optional_customer(authorization: Optional[str] = Header(default=None), db: Database = Depends(get_db)):
    """Current customer when a valid customer token is sent, otherwise None."""
    if not authorization:
        return None
    try:
        payload = decode_token(_bearer_token(authorization))
        customer_id = _subject(payload, CUSTOMER)
    except APIError:
        return None
    customer = db["customer"].find_one({"_id": to_obj_id(customer_id)})
    return serialize_doc(customer) if customer else None


def get_current_admin(authorization: Optional[str] = Header(default=None), db: Database = Depends(get_db)):
    payload = decode_token(_bearer_token(authorization))
    admin_id = _subject(payload, ADMIN)
    admin = db["admin"].find_one({"_id": to_obj_id(admin_id)})
    if not admin:
        raise APIError(401, "Admin not found", "ADMIN_NOT_FOUND")
    return serialize_doc(admin)


def load_admin_role(db: Database, admin: Dict[str, Any]) -> Dict[str, Any]:
    if not admin.get("status", True):
        raise APIError(403, "Admin account is disabled", "ACCOUNT_DISABLED")
    role_id = admin.get("role_id")
    if not role_id:
        raise APIError(403, "No role assigned to this admin", "NO_ROLE_ASSIGNED")
    role = db["role"].find_one({"_id": to_obj_id(role_id)}) if is_valid_id(role_id) else None
    if not role:
        raise APIError(403, "Invalid role assigned", "INVALID_ROLE")
    return role


def require_permission(feature: str, action: str):
    def permission_dep(admin=Depends(get_current_admin), db: Database = Depends(get_db)):
        role = load_admin_role(db, admin)
        if role.get("name") == SUPER_ADMIN_ROLE:
            return admin
        if not role.get("status", True):
            raise APIError(403, "Role is inactive", "ROLE_INACTIVE")
        if not role_allows(role, feature, action):
            logger.info("Permission denied for admin %s on %s:%s", admin["id"], feature, action)
            raise APIError(403, "Permission denied", "PERMISSION_DENIED")
        return admin
    return permission_dep


def require_super_admin(admin=Depends(get_current_admin), db: Database = Depends(get_db)):
    role = load_admin_role(db, admin)
    if role.get("name") != SUPER_ADMIN_ROLE:
        raise APIError(403, "SuperAdmin access required", "SUPERADMIN_REQUIRED")
    return admin


def admin_profile(db: Database, admin: Dict[str, Any]) -> Dict[str, Any]:
    profile = serialize_doc(admin)
    role = db["role"].find_one({"_id": to_obj_id(profile["role_id"])}) if is_valid_id(profile.get("role_id")) else None
    profile["role"] = {
        "id": str(role["_id"]),
        "name": role["name"],
        "permissions": normalize_permissions(role.get("permissions") or []),
    } if role else None
    return profile
