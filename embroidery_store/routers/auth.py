from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.database import Database

from embroidery_store.database import create_document, get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import is_valid_id, serialize_doc, to_obj_id
from embroidery_store.schemas import Customer as CustomerSchema
from embroidery_store.security import (
    ADMIN, CUSTOMER, REFRESH, admin_profile, create_access_token, decode_token, get_current_admin,
    get_current_customer, hash_password, issue_tokens, verify_password,
)

router = APIRouter(tags=["auth"])


class RegisterInput(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field("", max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_names(cls, value):
        return value.strip() if isinstance(value, str) else value


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class AdminLoginInput(BaseModel):
    username: str = Field(..., description="Username or email")
    password: str


class RefreshInput(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


@router.post("/auth/register", response_model=TokenResponse, status_code=201)
def register(payload: RegisterInput, request: Request, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["customer"].find_one({"email": email}):
        raise APIError(409, "Email already registered", "DUPLICATE_EMAIL")
    customer = CustomerSchema(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=email,
        password_hash=hash_password(payload.password),
        ip_address=request.client.host if request.client else None,
    )
    doc = create_document(db, "customer", customer.model_dump())
    return TokenResponse(user=serialize_doc(doc), **issue_tokens(str(doc["_id"]), CUSTOMER))


@router.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginInput, db: Database = Depends(get_db)):
    customer = db["customer"].find_one({"email": payload.email.lower()})
    if not customer or not verify_password(payload.password, customer.get("password_hash", "")):
        raise APIError(401, "Invalid email or password", "INVALID_CREDENTIALS")
    if not customer.get("status", True):
        raise APIError(403, "Account is disabled", "ACCOUNT_DISABLED")
    return TokenResponse(user=serialize_doc(customer), **issue_tokens(str(customer["_id"]), CUSTOMER))


@router.get("/auth/me")
def me(current_customer: dict = Depends(get_current_customer)):
    return current_customer


@router.post("/auth/refresh")
def refresh(payload: RefreshInput, db: Database = Depends(get_db)):
    claims = decode_token(payload.refresh_token)
    subject = claims.get("sub")
    principal = claims.get("principal")
    if claims.get("type") != REFRESH or principal not in (CUSTOMER, ADMIN) or not is_valid_id(subject):
        raise APIError(401, "Invalid refresh token", "INVALID_TOKEN")
    if not db[principal].find_one({"_id": to_obj_id(subject)}):
        raise APIError(401, "Account not found", "UNAUTHORIZED")
    return {"access_token": create_access_token({"sub": subject, "type": principal}), "token_type": "bearer"}


@router.post("/admin/auth/login", response_model=TokenResponse)
def admin_login(payload: AdminLoginInput, db: Database = Depends(get_db)):
    identifier = payload.username.strip()
    admin = db["admin"].find_one({"$or": [{"username": identifier}, {"email": identifier.lower()}]})
    if not admin or not verify_password(payload.password, admin.get("password_hash", "")):
        raise APIError(401, "Invalid username or password", "INVALID_CREDENTIALS")
    if not admin.get("status", True):
        raise APIError(403, "Admin account is disabled", "ACCOUNT_DISABLED")
    now = datetime.now(timezone.utc)
    db["admin"].update_one({"_id": admin["_id"]}, {"$set": {"last_login": now}})
    admin["last_login"] = now
    return TokenResponse(user=admin_profile(db, admin), **issue_tokens(str(admin["_id"]), ADMIN))


@router.get("/admin/auth/me")
def admin_me(current_admin: dict = Depends(get_current_admin), db: Database = Depends(get_db)):
    return admin_profile(db, current_admin)
