import logging
import os
import platform
import resource
import sys
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

from embroidery_store import __version__, config
from embroidery_store.database import get_db
from embroidery_store.helpers import utcnow
from embroidery_store.permissions import Feature
from embroidery_store.security import require_permission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/system", tags=["system"])

STARTED_AT = time.time()

can_view = require_permission(Feature.ANALYTICS, "read")


def uptime_seconds() -> int:
    return int(time.time() - STARTED_AT)


def ping(db: Database) -> bool:
    try:
        db.command("ping")
        return True
    except PyMongoError as exc:
        logger.warning("Database ping failed: %s", exc)
        return False


@router.get("/overview")
def overview(db: Database = Depends(get_db), admin=Depends(can_view)):
    connected = ping(db)
    collections = []
    if connected:
        for name in sorted(db.list_collection_names()):
            collections.append({
                "name": name,
                "documents": db[name].count_documents({}),
                "indexes": len(db[name].index_information()),
            })
    return {
        "success": True,
        "data": {
            "database": {
                "name": db.name,
                "status": "connected" if connected else "disconnected",
                "collections": collections,
            },
            "server": {
                "version": __version__,
                "python_version": platform.python_version(),
                "platform": platform.platform(),
                "pid": os.getpid(),
                "uptime_seconds": uptime_seconds(),
                "timezone": config.STORE_TIMEZONE,
            },
        },
    }


@router.get("/health")
def health(db: Database = Depends(get_db), admin=Depends(can_view)):
    checks = {
        "database": "ok" if ping(db) else "error",
        "upload_dir": "ok" if os.path.isdir(config.UPLOAD_DIR) else "missing",
    }
    healthy = all(v == "ok" for v in checks.values())
    body = {
        "success": healthy,
        "status": "healthy" if healthy else "unhealthy",
        "checks": checks,
        "timestamp": utcnow().isoformat(),
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


@router.get("/metrics")
def metrics(admin=Depends(can_view)):
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is kilobytes on Linux, bytes on macOS
    max_rss_kb = usage.ru_maxrss // 1024 if sys.platform == "darwin" else usage.ru_maxrss
    return {
        "success": True,
        "data": {
            "uptime_seconds": uptime_seconds(),
            "cpu": {"user_seconds": round(usage.ru_utime, 3), "system_seconds": round(usage.ru_stime, 3)},
            "memory": {"max_rss_kb": max_rss_kb},
            "load_average": list(os.getloadavg()) if hasattr(os, "getloadavg") else None,
            "pid": os.getpid(),
        },
    }
