import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database

from embroidery_store import __version__, config
from embroidery_store.database import create_document, ensure_indexes, get_db
from embroidery_store.errors import APIError, register_exception_handlers
from embroidery_store.logging_setup import configure_logging
from embroidery_store.permissions import SUPER_ADMIN_ROLE, full_permissions
from embroidery_store.routers import (
    admins, auth, banners, cart, checkout, customers, dashboard, downloads, popups, products, reviews, roles, search, system,
    wallet, wishlist,
)
from embroidery_store.schemas import Admin as AdminSchema
from embroidery_store.schemas import Role as RoleSchema
from embroidery_store.security import hash_password

configure_logging()
logger = logging.getLogger("embroidery_store")


@asynccontextmanager
async def lifespan(app: FastAPI):
    database = get_db()
    if database is not None:
        ensure_indexes(database)
    logger.info("Embroidery Store API %s started", __version__)
    yield


app = FastAPI(title="Embroidery Store API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


for module in (auth, customers, roles, admins, products, cart, checkout, downloads, wishlist, reviews, wallet, search, banners,
               popups, dashboard, system):
    app.include_router(module.router)


# Routes
@app.get("/")
def read_root():
    return {"message": "Embroidery Store API"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["database_url"] = "✅ Set"
            response["database_name"] = db.name
            response["collections"] = db.list_collection_names()
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


@app.post("/init/bootstrap")
def bootstrap(db: Database = Depends(get_db)):
    """Create the SuperAdmin role and the first admin from configuration."""
    if db["admin"].count_documents({}) > 0:
        raise APIError(400, "Admin already exists", "ALREADY_INITIALIZED")
    role = db["role"].find_one({"name": SUPER_ADMIN_ROLE})
    if not role:
        role = create_document(db, "role", RoleSchema(
            name=SUPER_ADMIN_ROLE,
            description="Full access to every feature",
            permissions=full_permissions(),
        ).model_dump())
    admin = AdminSchema(
        username=config.DEFAULT_ADMIN_USERNAME,
        email=config.DEFAULT_ADMIN_EMAIL,
        first_name="Super",
        last_name="Admin",
        password_hash=hash_password(config.DEFAULT_ADMIN_PASSWORD),
        role_id=str(role["_id"]),
    )
    doc = create_document(db, "admin", admin.model_dump())
    logger.info("Bootstrapped admin %s", config.DEFAULT_ADMIN_USERNAME)
    return {
        "success": True,
        "message": "SuperAdmin created",
        "data": {"admin_id": str(doc["_id"]), "role_id": str(role["_id"]), "username": config.DEFAULT_ADMIN_USERNAME},
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
