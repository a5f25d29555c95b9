import logging
import math
import time
from collections import defaultdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pymongo.database import Database
from pymongo.errors import PyMongoError

from embroidery_store.database import create_document, get_db
from embroidery_store.helpers import date_range_days_ago, escape_regex, format_store_date, skip_for
from embroidery_store.permissions import Feature
from embroidery_store.routers.products import many_summaries
from embroidery_store.schemas import SearchLog
from embroidery_store.security import get_optional_customer, require_permission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])


def log_search(db: Database, request: Request, term: str, customer: Optional[dict], results: int, elapsed_ms: int) -> None:
    entry = SearchLog(
        search_term=term,
        customer_id=customer["id"] if customer else None,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        results_count=results,
        search_time_ms=elapsed_ms,
    )
    try:
        create_document(db, "search_log", entry.model_dump())
    except PyMongoError as exc:
        logger.warning("Failed to log search query: %s", exc)


@router.get("")
def search_products(request: Request, q: str = "", page: int = Query(1, ge=1), limit: int = Query(6, ge=1, le=50),
                    status: Optional[bool] = None, db: Database = Depends(get_db),
                    customer: Optional[dict] = Depends(get_optional_customer)):
    started = time.perf_counter()
    term = q.strip()
    filters: Dict[str, Any] = {"status": True if status is None else status}
    if term:
        pattern = escape_regex(term)
        filters["$or"] = [
            {"product_model": {"$regex": pattern, "$options": "i"}},
            {"sku": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"meta_keywords": {"$regex": pattern, "$options": "i"}},
        ]
        category_ids = [str(c["_id"]) for c in db["category"].find({"name": {"$regex": pattern, "$options": "i"}}, {"_id": 1}).limit(10)]
        if category_ids:
            filters["$or"].append({"categories": {"$in": category_ids}})

    total = db["product"].count_documents(filters)
    products = list(
        db["product"].find(filters).sort([("viewed", -1), ("sales_count", -1)]).skip(skip_for(page, limit)).limit(limit)
    )
    total_pages = math.ceil(total / limit)

    if term:
        log_search(db, request, term, customer, len(products), int((time.perf_counter() - started) * 1000))

    return {
        "products": many_summaries(db, products),
        "pagination": {
            "currentPage": page,
            "totalPages": total_pages,
            "totalProducts": total,
            "limit": limit,
            "hasNextPage": page < total_pages,
            "hasPrevPage": page > 1,
        },
    }


@router.get("/popular")
def popular_searches(limit: int = Query(10, ge=1, le=100), db: Database = Depends(get_db)):
    rows = db["search_log"].aggregate([
        {"$match": {"search_term": {"$exists": True, "$ne": ""}}},
        {"$group": {"_id": "$search_term", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
        {"$limit": limit},
    ])
    return {"popularSearches": [{"query": r["_id"], "count": r["count"]} for r in rows]}


@router.get("/analytics")
def search_analytics(days: int = Query(30, ge=1, le=3650), db: Database = Depends(get_db),
                     admin=Depends(require_permission(Feature.ANALYTICS, "read"))):
    start, _ = date_range_days_ago(days)
    logs = list(db["search_log"].find({"created_at": {"$gte": start}}, {"search_term": 1, "results_count": 1,
                                                                        "search_time_ms": 1, "created_at": 1}))
    total = len(logs)
    by_day = defaultdict(list)
    zero = defaultdict(int)
    for entry in logs:
        by_day[format_store_date(entry["created_at"])].append(entry.get("results_count", 0))
        if entry.get("results_count", 0) == 0:
            zero[entry["search_term"]] += 1

    return {
        "period": f"{days} days",
        "overview": {
            "totalSearches": total,
            "averageResults": round(sum(e.get("results_count", 0) for e in logs) / total) if total else 0,
            "averageTime": round(sum(e.get("search_time_ms", 0) for e in logs) / total) if total else 0,
        },
        "searchesByDay": [
            {"date": day, "count": len(counts), "avgResults": round(sum(counts) / len(counts))}
            for day, counts in sorted(by_day.items())
        ],
        "zeroResultSearches": [
            {"query": term, "count": count}
            for term, count in sorted(zero.items(), key=lambda kv: kv[1], reverse=True)[:10]
        ],
    }
