from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pymongo.database import Database

from embroidery_store.audit import record_audit_log
from embroidery_store.database import create_document, get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import escape_regex, is_valid_id, new_id, pagination_meta, serialize_doc, skip_for, to_obj_id
from embroidery_store.permissions import Feature
from embroidery_store.schemas import Category as CategorySchema
from embroidery_store.schemas import Option as OptionSchema
from embroidery_store.schemas import Product as ProductSchema
from embroidery_store.security import require_permission

router = APIRouter(tags=["catalog"])


# Formatting shared with cart, wishlist and search

def image_url(image: Optional[str]) -> Optional[str]:
    return f"image/{image}" if image else image


def min_price(product: Dict[str, Any]) -> float:
    prices = [o.get("price") for o in product.get("options") or [] if o.get("price") is not None]
    return min(prices) if prices else 0


def category_names(db: Database, ids: List[str]) -> Dict[str, str]:
    valid = [to_obj_id(i) for i in ids if is_valid_id(i)]
    if not valid:
        return {}
    return {str(c["_id"]): c["name"] for c in db["category"].find({"_id": {"$in": valid}}, {"name": 1})}


def option_names(db: Database, ids: List[str]) -> Dict[str, str]:
    valid = [to_obj_id(i) for i in ids if is_valid_id(i)]
    if not valid:
        return {}
    return {str(o["_id"]): o["name"] for o in db["option"].find({"_id": {"$in": valid}}, {"name": 1})}


def product_summary(product: Dict[str, Any], category: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": str(product["_id"]),
        "product_model": product.get("product_model"),
        "sku": product.get("sku"),
        "image": image_url(product.get("image")),
        "category": category or "Uncategorized",
        "price": min_price(product),
        "slug": product.get("product_model"),
    }


def product_detail(db: Database, product: Dict[str, Any], include_files: bool = False) -> Dict[str, Any]:
    data = serialize_doc(product)
    data["image"] = image_url(product.get("image"))
    cats = category_names(db, product.get("categories") or [])
    data["categories"] = [{"id": c, "name": cats[c]} for c in product.get("categories") or [] if c in cats]
    names = option_names(db, [o["option_id"] for o in product.get("options") or []])
    options = []
    for o in product.get("options") or []:
        entry = {"id": o["id"], "option_id": o["option_id"], "name": names.get(o["option_id"]), "price": o.get("price", 0)}
        if include_files:
            entry["file_path"] = o.get("file_path")
            entry["download_count"] = o.get("download_count", 0)
        options.append(entry)
    data["options"] = options
    data["price"] = min_price(product)
    return data


def many_summaries(db: Database, products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    cats = category_names(db, [c for p in products for c in (p.get("categories") or [])[:1]])
    return [product_summary(p, cats.get((p.get("categories") or [None])[0])) for p in products]


# Input models

class CategoryIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    status: bool = True
    sort_order: int = Field(0, ge=0)


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    status: Optional[bool] = None
    sort_order: Optional[int] = Field(None, ge=0)


class OptionIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    sort_order: int = Field(0, ge=0)


class ProductOptionIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    option_id: str
    price: float = Field(0, ge=0)
    file_path: str = Field(..., min_length=1)


class ProductIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    product_model: str = Field(..., min_length=1, max_length=255)
    sku: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    stitches: Optional[str] = Field(None, max_length=100)
    dimensions: Optional[str] = Field(None, max_length=100)
    colour_needles: Optional[str] = Field(None, max_length=100)
    categories: List[str] = []
    options: List[ProductOptionIn] = []
    image: Optional[str] = None
    meta_keywords: Optional[str] = None
    status: bool = True
    sort_order: int = Field(0, ge=0)


class ProductUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    product_model: Optional[str] = Field(None, min_length=1, max_length=255)
    sku: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    stitches: Optional[str] = Field(None, max_length=100)
    dimensions: Optional[str] = Field(None, max_length=100)
    colour_needles: Optional[str] = Field(None, max_length=100)
    categories: Optional[List[str]] = None
    options: Optional[List[ProductOptionIn]] = None
    image: Optional[str] = None
    meta_keywords: Optional[str] = None
    status: Optional[bool] = None
    sort_order: Optional[int] = Field(None, ge=0)


def check_categories(db: Database, ids: List[str]) -> List[str]:
    found = category_names(db, ids)
    missing = [i for i in ids if i not in found]
    if missing:
        raise APIError(400, f"Unknown categories: {', '.join(missing)}", "INVALID_CATEGORY")
    return ids


def build_options(db: Database, options: List[ProductOptionIn], existing: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    """Product options keep their id when the same catalog option is resubmitted."""
    found = option_names(db, [o.option_id for o in options])
    missing = [o.option_id for o in options if o.option_id not in found]
    if missing:
        raise APIError(400, f"Unknown options: {', '.join(missing)}", "INVALID_OPTION")
    if len({o.option_id for o in options}) != len(options):
        raise APIError(400, "Duplicate options are not allowed", "DUPLICATE_OPTION")
    previous = {o["option_id"]: o for o in existing or []}
    built = []
    for o in options:
        old = previous.get(o.option_id, {})
        built.append({
            "id": old.get("id") or new_id(),
            "option_id": o.option_id,
            "price": o.price,
            "file_path": o.file_path,
            "download_count": old.get("download_count", 0),
        })
    return built


# Public catalog

@router.get("/categories")
def list_categories(db: Database = Depends(get_db)):
    cats = db["category"].find({"status": True}).sort([("sort_order", 1), ("name", 1)])
    return [serialize_doc(c) for c in cats]


@router.get("/options")
def list_options(db: Database = Depends(get_db)):
    return [serialize_doc(o) for o in db["option"].find({}).sort([("sort_order", 1), ("name", 1)])]


@router.get("/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, min_price_filter: Optional[float] = Query(None, alias="min_price"),
                  max_price: Optional[float] = None, sort: Optional[str] = None, limit: int = Query(20, ge=1, le=100),
                  page: int = Query(1, ge=1), db: Database = Depends(get_db)):
    query: Dict[str, Any] = {"status": True}
    if q:
        pattern = escape_regex(q.strip())
        query["$or"] = [
            {"product_model": {"$regex": pattern, "$options": "i"}},
            {"sku": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"meta_keywords": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        query["categories"] = category
    price_filter: Dict[str, Any] = {}
    if min_price_filter is not None:
        price_filter["$gte"] = float(min_price_filter)
    if max_price is not None:
        price_filter["$lte"] = float(max_price)
    if price_filter:
        query["options"] = {"$elemMatch": {"price": price_filter}}

    collection = db["product"]
    cursor = collection.find(query)
    if sort == "popular":
        cursor = cursor.sort([("sales_count", -1), ("viewed", -1)])
    elif sort in ("price_asc", "price_desc"):
        # price is derived from options, so sort after fetching
        products = sorted(collection.find(query), key=min_price, reverse=sort == "price_desc")
        total = len(products)
        skip = skip_for(page, limit)
        items = many_summaries(db, products[skip:skip + limit])
        return {"items": items, "total": total, "page": page, "limit": limit}
    else:
        cursor = cursor.sort([("created_at", -1)])

    total = collection.count_documents(query)
    cursor = cursor.skip(skip_for(page, limit)).limit(limit)
    items = many_summaries(db, list(cursor))
    return {"items": items, "total": total, "page": page, "limit": limit}


@router.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    obj_id = to_obj_id(product_id, "product id")
    product = db["product"].find_one({"_id": obj_id, "status": True})
    if not product:
        raise APIError(404, "Product not found", "PRODUCT_NOT_FOUND")
    db["product"].update_one({"_id": obj_id}, {"$inc": {"viewed": 1}})
    return product_detail(db, product)


# Admin: categories

@router.post("/admin/categories", status_code=201)
def create_category(data: CategoryIn, db: Database = Depends(get_db),
                    admin=Depends(require_permission(Feature.CATEGORIES, "create"))):
    name = data.name
    if db["category"].find_one({"name": name}):
        raise APIError(409, "Category already exists", "DUPLICATE_CATEGORY")
    category = CategorySchema(**data.model_dump())
    doc = create_document(db, "category", category.model_dump())
    record_audit_log(db, admin, "create", "category", str(doc["_id"]), {"name": name})
    return serialize_doc(doc)


@router.get("/admin/categories")
def admin_list_categories(db: Database = Depends(get_db), admin=Depends(require_permission(Feature.CATEGORIES, "read"))):
    return [serialize_doc(c) for c in db["category"].find({}).sort([("sort_order", 1), ("name", 1)])]


@router.put("/admin/categories/{category_id}")
def update_category(category_id: str, data: CategoryUpdate, db: Database = Depends(get_db),
                    admin=Depends(require_permission(Feature.CATEGORIES, "update"))):
    obj_id = to_obj_id(category_id, "category id")
    update_dict = data.model_dump(exclude_unset=True)
    if not update_dict:
        raise APIError(400, "No fields to update", "NO_CHANGES")
    if update_dict.get("name"):
        if db["category"].find_one({"name": update_dict["name"], "_id": {"$ne": obj_id}}):
            raise APIError(409, "Category already exists", "DUPLICATE_CATEGORY")
    update_dict["updated_at"] = datetime.now(timezone.utc)
    res = db["category"].update_one({"_id": obj_id}, {"$set": update_dict})
    if res.matched_count == 0:
        raise APIError(404, "Category not found", "CATEGORY_NOT_FOUND")
    record_audit_log(db, admin, "update", "category", category_id)
    return serialize_doc(db["category"].find_one({"_id": obj_id}))


@router.delete("/admin/categories/{category_id}")
def delete_category(category_id: str, db: Database = Depends(get_db),
                    admin=Depends(require_permission(Feature.CATEGORIES, "delete"))):
    obj_id = to_obj_id(category_id, "category id")
    in_use = db["product"].count_documents({"categories": category_id})
    if in_use:
        raise APIError(409, f"Category is used by {in_use} product(s)", "CATEGORY_IN_USE", productCount=in_use)
    res = db["category"].delete_one({"_id": obj_id})
    if res.deleted_count == 0:
        raise APIError(404, "Category not found", "CATEGORY_NOT_FOUND")
    record_audit_log(db, admin, "delete", "category", category_id)
    return {"ok": True}


# Admin: options

@router.post("/admin/options", status_code=201)
def create_option(data: OptionIn, db: Database = Depends(get_db),
                  admin=Depends(require_permission(Feature.PRODUCTS, "create"))):
    name = data.name
    if db["option"].find_one({"name": name}):
        raise APIError(409, "Option already exists", "DUPLICATE_OPTION")
    doc = create_document(db, "option", OptionSchema(name=name, sort_order=data.sort_order).model_dump())
    record_audit_log(db, admin, "create", "option", str(doc["_id"]), {"name": name})
    return serialize_doc(doc)


@router.put("/admin/options/{option_id}")
def update_option(option_id: str, data: OptionIn, db: Database = Depends(get_db),
                  admin=Depends(require_permission(Feature.PRODUCTS, "update"))):
    obj_id = to_obj_id(option_id, "option id")
    name = data.name
    if db["option"].find_one({"name": name, "_id": {"$ne": obj_id}}):
        raise APIError(409, "Option already exists", "DUPLICATE_OPTION")
    res = db["option"].update_one({"_id": obj_id}, {"$set": {"name": name, "sort_order": data.sort_order,
                                                             "updated_at": datetime.now(timezone.utc)}})
    if res.matched_count == 0:
        raise APIError(404, "Option not found", "OPTION_NOT_FOUND")
    record_audit_log(db, admin, "update", "option", option_id, {"name": name})
    return serialize_doc(db["option"].find_one({"_id": obj_id}))


@router.delete("/admin/options/{option_id}")
def delete_option(option_id: str, db: Database = Depends(get_db),
                  admin=Depends(require_permission(Feature.PRODUCTS, "delete"))):
    obj_id = to_obj_id(option_id, "option id")
    in_use = db["product"].count_documents({"options.option_id": option_id})
    if in_use:
        raise APIError(409, f"Option is used by {in_use} product(s)", "OPTION_IN_USE", productCount=in_use)
    res = db["option"].delete_one({"_id": obj_id})
    if res.deleted_count == 0:
        raise APIError(404, "Option not found", "OPTION_NOT_FOUND")
    record_audit_log(db, admin, "delete", "option", option_id)
    return {"ok": True}


# Admin: products

@router.get("/admin/products")
def admin_list_products(q: Optional[str] = None, status: Optional[bool] = None, limit: int = Query(20, ge=1, le=100),
                        page: int = Query(1, ge=1), db: Database = Depends(get_db),
                        admin=Depends(require_permission(Feature.PRODUCTS, "read"))):
    query: Dict[str, Any] = {}
    if q:
        pattern = escape_regex(q.strip())
        query["$or"] = [{"product_model": {"$regex": pattern, "$options": "i"}}, {"sku": {"$regex": pattern, "$options": "i"}}]
    if status is not None:
        query["status"] = status
    total = db["product"].count_documents(query)
    cursor = db["product"].find(query).sort("created_at", -1).skip(skip_for(page, limit)).limit(limit)
    return {"items": [product_detail(db, p, include_files=True) for p in cursor], "pagination": pagination_meta(page, limit, total)}


@router.get("/admin/products/{product_id}")
def admin_get_product(product_id: str, db: Database = Depends(get_db),
                      admin=Depends(require_permission(Feature.PRODUCTS, "read"))):
    product = db["product"].find_one({"_id": to_obj_id(product_id, "product id")})
    if not product:
        raise APIError(404, "Product not found", "PRODUCT_NOT_FOUND")
    return product_detail(db, product, include_files=True)


@router.post("/admin/products", status_code=201)
def create_product(data: ProductIn, db: Database = Depends(get_db),
                   admin=Depends(require_permission(Feature.PRODUCTS, "create"))):
    sku = data.sku
    if db["product"].find_one({"sku": sku}):
        raise APIError(409, "SKU already exists", "DUPLICATE_SKU")
    payload = data.model_dump()
    payload.update(categories=check_categories(db, data.categories), options=build_options(db, data.options))
    product = ProductSchema(**payload)
    doc = create_document(db, "product", product.model_dump())
    record_audit_log(db, admin, "create", "product", str(doc["_id"]), {"sku": sku})
    return product_detail(db, doc, include_files=True)


@router.put("/admin/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate, db: Database = Depends(get_db),
                   admin=Depends(require_permission(Feature.PRODUCTS, "update"))):
    obj_id = to_obj_id(product_id, "product id")
    product = db["product"].find_one({"_id": obj_id})
    if not product:
        raise APIError(404, "Product not found", "PRODUCT_NOT_FOUND")
    update_dict = data.model_dump(exclude_unset=True)
    if not update_dict:
        raise APIError(400, "No fields to update", "NO_CHANGES")
    if update_dict.get("sku"):
        if db["product"].find_one({"sku": update_dict["sku"], "_id": {"$ne": obj_id}}):
            raise APIError(409, "SKU already exists", "DUPLICATE_SKU")
    if update_dict.get("categories") is not None:
        check_categories(db, update_dict["categories"])
    if data.options is not None:
        update_dict["options"] = build_options(db, data.options, product.get("options"))
    update_dict["updated_at"] = datetime.now(timezone.utc)
    db["product"].update_one({"_id": obj_id}, {"$set": update_dict})
    record_audit_log(db, admin, "update", "product", product_id, {"fields": ",".join(sorted(update_dict))})
    return product_detail(db, db["product"].find_one({"_id": obj_id}), include_files=True)


@router.delete("/admin/products/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db),
                   admin=Depends(require_permission(Feature.PRODUCTS, "delete"))):
    res = db["product"].delete_one({"_id": to_obj_id(product_id, "product id")})
    if res.deleted_count == 0:
        raise APIError(404, "Product not found", "PRODUCT_NOT_FOUND")
    record_audit_log(db, admin, "delete", "product", product_id)
    return {"ok": True}
