import logging
import os

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from pymongo.database import Database

from embroidery_store import config
from embroidery_store.database import get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import to_obj_id
from embroidery_store.purchases import purchased_options
from embroidery_store.security import get_current_customer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/downloads", tags=["downloads"])


def resolve_upload(file_path: str) -> str:
    """Absolute path of an uploaded file; it must stay inside UPLOAD_DIR."""
    base = os.path.realpath(config.UPLOAD_DIR)
    full = os.path.realpath(os.path.join(base, file_path))
    if os.path.commonpath([base, full]) != base or not os.path.isfile(full):
        raise APIError(404, "File not found on server", "FILE_NOT_FOUND")
    return full


@router.get("/{product_id}/{option_id}")
def download_file(product_id: str, option_id: str, db: Database = Depends(get_db),
                  current_customer: dict = Depends(get_current_customer)):
    """Stream a purchased design file and count the download."""
    product_obj_id = to_obj_id(product_id, "product id")
    to_obj_id(option_id, "option id")

    owned = purchased_options(db, current_customer["id"], [product_id])
    if option_id not in owned.get(product_id, set()):
        raise APIError(403, "You must purchase this product to download files", "NOT_PURCHASED")

    product = db["product"].find_one({"_id": product_obj_id})
    if not product:
        raise APIError(404, "Product not found", "PRODUCT_NOT_FOUND")
    option = next((o for o in product.get("options") or [] if o.get("option_id") == option_id), None)
    if not option or not option.get("file_path"):
        raise APIError(404, "No downloadable file found for this option", "FILE_NOT_AVAILABLE")

    full_path = resolve_upload(option["file_path"])
    db["product"].update_one(
        {"_id": product_obj_id, "options.option_id": option_id},
        {"$inc": {"options.$.download_count": 1}},
    )
    logger.info("Customer %s downloaded %s", current_customer["id"], option["file_path"])
    return FileResponse(full_path, filename=os.path.basename(full_path), media_type="application/octet-stream")
