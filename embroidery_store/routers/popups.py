from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from pymongo.database import Database

from embroidery_store.audit import record_audit_log
from embroidery_store.database import create_document, get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import new_id, serialize_doc, to_obj_id
from embroidery_store.permissions import Feature
from embroidery_store.schemas import Popup as PopupSchema
from embroidery_store.schemas import PopupDevice
from embroidery_store.security import require_permission

router = APIRouter(tags=["popups"])


class ButtonIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    text: str = Field(..., min_length=1, max_length=100)
    action: str = Field(..., min_length=1, max_length=500)
    style: Literal["primary", "secondary", "outline", "link"] = "primary"
    icon: Optional[str] = None


class PopupIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    image: Optional[str] = None
    buttons: List[ButtonIn] = Field(default_factory=list)
    status: bool = False
    display_frequency: Literal["once", "always"] = "once"
    sort_order: int = 0
    device_type: PopupDevice = "all"


class PopupUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1)
    image: Optional[str] = None
    buttons: Optional[List[ButtonIn]] = None
    status: Optional[bool] = None
    display_frequency: Optional[Literal["once", "always"]] = None
    sort_order: Optional[int] = None
    device_type: Optional[PopupDevice] = None


def button_entries(buttons: List[ButtonIn]) -> List[Dict[str, Any]]:
    return [{"id": new_id(), **b.model_dump()} for b in buttons]


def get_popup_or_404(db: Database, popup_id: str) -> Dict[str, Any]:
    popup = db["popup"].find_one({"_id": to_obj_id(popup_id, "popup id")})
    if not popup:
        raise APIError(404, "Popup not found", "POPUP_NOT_FOUND")
    return popup


def deactivate_others(db: Database, popup_id) -> None:
    db["popup"].update_many({"_id": {"$ne": popup_id}, "status": True}, {"$set": {"status": False}})


def public_popup(popup: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(popup["_id"]),
        "title": popup.get("title"),
        "content": popup.get("content"),
        "image": popup.get("image"),
        "buttons": popup.get("buttons") or [],
        "display_frequency": popup.get("display_frequency", "once"),
        "device_type": popup.get("device_type", "all"),
    }


@router.get("/popups/active")
def active_popup(request: Request, device_type: Optional[Literal["mobile", "desktop"]] = None,
                 db: Database = Depends(get_db)):
    device = device_type or ("mobile" if "Mobile" in request.headers.get("user-agent", "") else "desktop")
    popup = next(iter(db["popup"].find({"status": True, "device_type": {"$in": ["all", device]}})
                      .sort([("sort_order", 1), ("created_at", -1)]).limit(1)), None)
    if not popup:
        return {"success": True, "data": None, "message": "No active popup available"}
    return {"success": True, "data": public_popup(popup)}


@router.get("/admin/popups")
def admin_list_popups(db: Database = Depends(get_db), admin=Depends(require_permission(Feature.POPUPS, "read"))):
    popups = db["popup"].find({}).sort([("sort_order", 1), ("created_at", -1)])
    return {"success": True, "data": [serialize_doc(p) for p in popups]}


@router.get("/admin/popups/{popup_id}")
def admin_get_popup(popup_id: str, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.POPUPS, "read"))):
    return {"success": True, "data": serialize_doc(get_popup_or_404(db, popup_id))}


@router.post("/admin/popups", status_code=201)
def create_popup(payload: PopupIn, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.POPUPS, "create"))):
    popup = PopupSchema(**{**payload.model_dump(), "buttons": button_entries(payload.buttons)})
    doc = create_document(db, "popup", popup.model_dump())
    if doc["status"]:
        deactivate_others(db, doc["_id"])
    record_audit_log(db, admin, "create", "popup", str(doc["_id"]), {"title": doc["title"]})
    return {"success": True, "data": serialize_doc(doc), "message": "Popup created successfully"}


@router.patch("/admin/popups/{popup_id}")
def update_popup(popup_id: str, payload: PopupUpdate, db: Database = Depends(get_db),
                 admin=Depends(require_permission(Feature.POPUPS, "update"))):
    popup = get_popup_or_404(db, popup_id)
    updates = payload.model_dump(exclude_unset=True, exclude={"buttons"})
    if payload.buttons is not None:
        updates["buttons"] = button_entries(payload.buttons)
    if not updates:
        raise APIError(400, "No fields to update", "NO_CHANGES")
    updates["updated_at"] = datetime.now(timezone.utc)
    db["popup"].update_one({"_id": popup["_id"]}, {"$set": updates})
    if updates.get("status") is True:
        deactivate_others(db, popup["_id"])
    record_audit_log(db, admin, "update", "popup", popup_id, {"fields": ",".join(sorted(updates))})
    return {"success": True, "data": serialize_doc(db["popup"].find_one({"_id": popup["_id"]})),
            "message": "Popup updated successfully"}


@router.patch("/admin/popups/{popup_id}/toggle-status")
def toggle_popup(popup_id: str, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.POPUPS, "update"))):
    popup = get_popup_or_404(db, popup_id)
    status = not popup.get("status", False)
    db["popup"].update_one({"_id": popup["_id"]}, {"$set": {"status": status, "updated_at": datetime.now(timezone.utc)}})
    if status:
        deactivate_others(db, popup["_id"])
    record_audit_log(db, admin, "toggle_status", "popup", popup_id, {"status": status})
    return {"success": True, "data": serialize_doc(db["popup"].find_one({"_id": popup["_id"]})),
            "message": f"Popup {'activated' if status else 'deactivated'} successfully"}


@router.delete("/admin/popups/{popup_id}/image")
def delete_popup_image(popup_id: str, db: Database = Depends(get_db),
                       admin=Depends(require_permission(Feature.POPUPS, "update"))):
    popup = get_popup_or_404(db, popup_id)
    if not popup.get("image"):
        raise APIError(400, "Popup has no image", "NO_IMAGE")
    db["popup"].update_one({"_id": popup["_id"]}, {"$set": {"image": None, "updated_at": datetime.now(timezone.utc)}})
    record_audit_log(db, admin, "delete_image", "popup", popup_id)
    return {"success": True, "data": serialize_doc(db["popup"].find_one({"_id": popup["_id"]})),
            "message": "Popup image deleted successfully"}


@router.delete("/admin/popups/{popup_id}")
def delete_popup(popup_id: str, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.POPUPS, "delete"))):
    popup = get_popup_or_404(db, popup_id)
    db["popup"].delete_one({"_id": popup["_id"]})
    record_audit_log(db, admin, "delete", "popup", popup_id, {"title": popup.get("title")})
    return {"success": True, "message": "Popup deleted successfully"}
