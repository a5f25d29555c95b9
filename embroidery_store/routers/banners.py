from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo.database import Database

from embroidery_store.audit import record_audit_log
from embroidery_store.database import create_document, get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import new_id, serialize_doc, to_obj_id
from embroidery_store.permissions import Feature
from embroidery_store.schemas import Banner as BannerSchema
from embroidery_store.schemas import DeviceType
from embroidery_store.security import require_permission

router = APIRouter(tags=["banners"])

ImagePath = Annotated[str, Field(max_length=500)]


class BannerIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    device_type: DeviceType
    images: List[ImagePath] = Field(default_factory=list, description="Image paths")
    sort_order: int = Field(0, ge=0)


class BannerUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    device_type: Optional[DeviceType] = None
    images: Optional[List[ImagePath]] = Field(None, description="Image paths appended to the banner")
    sort_order: Optional[int] = Field(None, ge=0)


class RemoveImagesInput(BaseModel):
    image_ids: List[str] = Field(..., min_length=1)


def image_entries(paths: List[str]) -> List[Dict[str, Any]]:
    return [{"id": new_id(), "image": p.strip(), "status": True} for p in paths if p and p.strip()]


def get_banner_or_404(db: Database, banner_id: str) -> Dict[str, Any]:
    banner = db["banner"].find_one({"_id": to_obj_id(banner_id, "banner id")})
    if not banner:
        raise APIError(404, "Banner not found", "BANNER_NOT_FOUND")
    return banner


@router.get("/banners")
def public_banners(db: Database = Depends(get_db)):
    banners = []
    for banner in db["banner"].find({}).sort("sort_order", 1):
        active = [img for img in banner.get("images") or [] if img.get("status", True)]
        if not active:
            continue
        data = serialize_doc(banner)
        data["images"] = active
        banners.append(data)
    return {"success": True, "data": banners}


@router.get("/admin/banners")
def admin_list_banners(db: Database = Depends(get_db), admin=Depends(require_permission(Feature.BANNERS, "read"))):
    return {"success": True, "data": [serialize_doc(b) for b in db["banner"].find({}).sort("sort_order", 1)]}


@router.get("/admin/banners/{banner_id}")
def admin_get_banner(banner_id: str, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.BANNERS, "read"))):
    return {"success": True, "data": serialize_doc(get_banner_or_404(db, banner_id))}


@router.post("/admin/banners", status_code=201)
def create_banner(payload: BannerIn, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.BANNERS, "create"))):
    title = payload.title.strip()
    if not title:
        raise APIError(400, "Title is required", "TITLE_REQUIRED")
    banner = BannerSchema(
        title=title,
        description=payload.description,
        device_type=payload.device_type,
        images=image_entries(payload.images),
        sort_order=payload.sort_order,
    )
    doc = create_document(db, "banner", banner.model_dump())
    record_audit_log(db, admin, "create", "banner", str(doc["_id"]), {"title": title})
    return {"success": True, "data": serialize_doc(doc), "message": "Banner created successfully"}


@router.put("/admin/banners/{banner_id}")
def update_banner(banner_id: str, payload: BannerUpdate, db: Database = Depends(get_db),
                  admin=Depends(require_permission(Feature.BANNERS, "update"))):
    banner = get_banner_or_404(db, banner_id)
    updates = payload.model_dump(exclude_unset=True, exclude={"images"})
    if updates.get("title") is not None:
        updates["title"] = updates["title"].strip()
        if not updates["title"]:
            raise APIError(400, "Title is required", "TITLE_REQUIRED")
    if payload.images:
        updates["images"] = (banner.get("images") or []) + image_entries(payload.images)
    if not updates:
        raise APIError(400, "No fields to update", "NO_CHANGES")
    updates["updated_at"] = datetime.now(timezone.utc)
    db["banner"].update_one({"_id": banner["_id"]}, {"$set": updates})
    record_audit_log(db, admin, "update", "banner", banner_id, {"fields": ",".join(sorted(updates))})
    return {"success": True, "data": serialize_doc(db["banner"].find_one({"_id": banner["_id"]})),
            "message": "Banner updated successfully"}


@router.delete("/admin/banners/{banner_id}")
def delete_banner(banner_id: str, db: Database = Depends(get_db), admin=Depends(require_permission(Feature.BANNERS, "delete"))):
    banner = get_banner_or_404(db, banner_id)
    db["banner"].delete_one({"_id": banner["_id"]})
    record_audit_log(db, admin, "delete", "banner", banner_id, {"title": banner.get("title")})
    return {"success": True, "message": "Banner deleted successfully"}


@router.post("/admin/banners/{banner_id}/remove-images")
def remove_banner_images(banner_id: str, payload: RemoveImagesInput, db: Database = Depends(get_db),
                         admin=Depends(require_permission(Feature.BANNERS, "update"))):
    banner = get_banner_or_404(db, banner_id)
    images = banner.get("images") or []
    remaining = [img for img in images if img["id"] not in payload.image_ids]
    if len(remaining) == len(images):
        raise APIError(404, "Image not found", "IMAGE_NOT_FOUND")
    db["banner"].update_one({"_id": banner["_id"]}, {"$set": {"images": remaining, "updated_at": datetime.now(timezone.utc)}})
    record_audit_log(db, admin, "remove_images", "banner", banner_id, {"removed": len(images) - len(remaining)})
    return {"success": True, "data": serialize_doc(db["banner"].find_one({"_id": banner["_id"]})),
            "message": "Images removed successfully"}


@router.patch("/admin/banners/{banner_id}/images/{image_id}/toggle")
def toggle_banner_image(banner_id: str, image_id: str, db: Database = Depends(get_db),
                        admin=Depends(require_permission(Feature.BANNERS, "update"))):
    banner = get_banner_or_404(db, banner_id)
    images = banner.get("images") or []
    target = next((img for img in images if img["id"] == image_id), None)
    if not target:
        raise APIError(404, "Image not found", "IMAGE_NOT_FOUND")
    target["status"] = not target.get("status", True)
    db["banner"].update_one({"_id": banner["_id"]}, {"$set": {"images": images, "updated_at": datetime.now(timezone.utc)}})
    record_audit_log(db, admin, "toggle_image", "banner", banner_id, {"image_id": image_id, "status": target["status"]})
    return {"success": True, "data": serialize_doc(db["banner"].find_one({"_id": banner["_id"]})),
            "message": f"Image {'activated' if target['status'] else 'deactivated'} successfully"}
