import logging
from typing import Any, Dict, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from embroidery_store.database import create_document
from embroidery_store.schemas import AuditLog

logger = logging.getLogger(__name__)


def sanitize_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, str]:
    if not isinstance(metadata, dict):
        return {}
    return {str(k): str(v) for k, v in metadata.items() if v is not None}


def record_audit_log(db: Database, admin: Optional[Dict[str, Any]], action: str, resource: str,
                     resource_id: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> None:
    entry = AuditLog(
        admin_id=admin.get("id") if admin else None,
        action=action,
        resource=resource,
        resource_id=resource_id,
        metadata=sanitize_metadata(metadata),
    )
    try:
        create_document(db, "audit_log", entry.model_dump())
    except PyMongoError as exc:
        logger.warning("Unable to record audit log: %s", exc)
