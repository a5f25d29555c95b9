"""
Admin dashboard figures.

Day and month boundaries are taken in the store time zone; queries compare
against naive UTC bounds.
"""

from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pymongo.database import Database

from embroidery_store import config
from embroidery_store.database import get_db
from embroidery_store.helpers import (
    date_range_between, date_range_days_ago, format_store_date, is_valid_id, to_naive_utc, to_obj_id, to_store_time,
    utcnow, year_range,
)
from embroidery_store.permissions import Feature
from embroidery_store.routers.products import image_url
from embroidery_store.security import require_permission

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

can_view = require_permission(Feature.DASHBOARD, "read")


def customers_by_id(db: Database, ids: List[str]) -> Dict[str, Dict[str, Any]]:
    valid = [to_obj_id(i) for i in set(ids) if is_valid_id(i)]
    if not valid:
        return {}
    projection = {"first_name": 1, "last_name": 1, "email": 1}
    return {str(c["_id"]): c for c in db["customer"].find({"_id": {"$in": valid}}, projection)}


def full_name(customer: Optional[Dict[str, Any]]) -> str:
    if not customer:
        return "Unknown"
    return f"{customer.get('first_name', '')} {customer.get('last_name', '')}".strip()


@router.get("/sales-revenue")
def sales_revenue(days: Optional[int] = Query(None, ge=0), date_from: Optional[str] = Query(None, alias="dateFrom"),
                  date_to: Optional[str] = Query(None, alias="dateTo"), db: Database = Depends(get_db),
                  admin=Depends(can_view)):
    filters: Dict[str, Any] = {"order_status": "paid"}
    period = "All time"
    start = end = None

    if days is not None:
        start, end = date_range_days_ago(days)
        period = f"{days} days"
    if date_from or date_to:
        start, end = date_range_between(date_from, date_to)
        if date_from and date_to:
            period = f"Custom range ({date_from} to {date_to})"
        elif date_from:
            period = f"From {date_from}"
        else:
            period = f"Until {date_to}"

    created: Dict[str, Any] = {}
    if start is not None:
        created["$gte"] = start
    if end is not None:
        created["$lte"] = end
    if created:
        filters["created_at"] = created

    result = list(db["order"].aggregate([
        {"$match": filters},
        {"$group": {"_id": None, "totalSales": {"$sum": 1}, "totalRevenue": {"$sum": "$order_total"}}},
    ]))
    return {
        "period": period,
        "startDate": format_store_date(start),
        "endDate": format_store_date(end),
        "totalSales": result[0]["totalSales"] if result else 0,
        "totalRevenue": round(result[0]["totalRevenue"], 2) if result else 0,
    }


@router.get("/new-orders")
def new_orders(days: int = Query(7, ge=0), db: Database = Depends(get_db), admin=Depends(can_view)):
    start, end = date_range_days_ago(days)
    orders = list(db["order"].find({"created_at": {"$gte": start, "$lte": end}}).sort("created_at", -1))
    customers = customers_by_id(db, [o["customer_id"] for o in orders])
    return {
        "period": f"{days} days",
        "startDate": format_store_date(start),
        "endDate": format_store_date(end),
        "totalOrders": len(orders),
        "orders": [
            {
                "orderId": str(o["_id"]),
                "orderNumber": o.get("order_number"),
                "customer": full_name(customers.get(o["customer_id"])),
                "total": o.get("order_total", 0),
                "status": o.get("order_status"),
                "paymentMethod": o.get("payment_method"),
                "createdAt": o.get("created_at"),
            }
            for o in orders
        ],
    }


@router.get("/new-customers")
def new_customers(days: int = Query(30, ge=0), db: Database = Depends(get_db), admin=Depends(can_view)):
    start, end = date_range_days_ago(days)
    customers = list(db["customer"].find({"created_at": {"$gte": start, "$lte": end}}).sort("created_at", -1))
    return {
        "period": f"{days} days",
        "startDate": format_store_date(start),
        "endDate": format_store_date(end),
        "totalNewCustomers": len(customers),
        "totalCustomers": db["customer"].count_documents({}),
        "customers": [
            {
                "customerId": str(c["_id"]),
                "name": full_name(c),
                "email": c.get("email"),
                "ipAddress": c.get("ip_address"),
                "createdAt": c.get("created_at"),
            }
            for c in customers
        ],
    }


@router.get("/online-customers")
def online_customers(db: Database = Depends(get_db), admin=Depends(can_view)):
    since = to_naive_utc(utcnow() - timedelta(minutes=config.ONLINE_WINDOW_MINUTES))
    return {
        "totalOnline": db["online_user"].count_documents({"last_seen": {"$gte": since}}),
        "windowMinutes": config.ONLINE_WINDOW_MINUTES,
    }


@router.get("/yearly-revenue")
def yearly_revenue(year: Optional[int] = Query(None, ge=1970, le=9999), db: Database = Depends(get_db),
                   admin=Depends(can_view)):
    year = year or to_store_time(utcnow()).year
    start, end = year_range(year)
    buckets = defaultdict(lambda: {"revenue": 0.0, "orders": 0})
    paid = db["order"].find({"created_at": {"$gte": start, "$lte": end}, "order_status": "paid"},
                            {"created_at": 1, "order_total": 1})
    for order in paid:
        month = to_store_time(order["created_at"]).month
        buckets[month]["revenue"] += order.get("order_total", 0)
        buckets[month]["orders"] += 1

    monthly = [
        {"month": m, "revenue": round(buckets[m]["revenue"], 2), "orders": buckets[m]["orders"]}
        for m in range(1, 13)
    ]
    return {
        "year": year,
        "totalRevenue": round(sum(m["revenue"] for m in monthly), 2),
        "totalOrders": sum(m["orders"] for m in monthly),
        "monthlyData": monthly,
    }


@router.get("/top-products")
def top_products(days: int = Query(30, ge=0), limit: int = Query(10, ge=1, le=100), db: Database = Depends(get_db),
                 admin=Depends(can_view)):
    start, end = date_range_days_ago(days)
    rows = list(db["order"].aggregate([
        {"$match": {"created_at": {"$gte": start, "$lte": end}, "order_status": "paid"}},
        {"$unwind": "$products"},
        {"$unwind": "$products.options"},
        {"$group": {
            "_id": "$products.product_id",
            "totalSold": {"$sum": 1},
            "totalRevenue": {"$sum": "$products.options.price"},
        }},
        {"$sort": {"totalSold": -1}},
        {"$limit": limit},
    ]))
    ids = [to_obj_id(r["_id"]) for r in rows if is_valid_id(r["_id"])]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})} if ids else {}
    top = []
    for row in rows:
        product = products.get(row["_id"])
        if not product:
            continue
        top.append({
            "productId": row["_id"],
            "name": product.get("product_model"),
            "sku": product.get("sku"),
            "image": image_url(product.get("image")),
            "totalSold": row["totalSold"],
            "totalRevenue": round(row["totalRevenue"], 2),
        })
    return {"period": f"{days} days", "topProducts": top}


@router.get("/recent-orders")
def recent_orders(limit: int = Query(10, ge=1, le=100), db: Database = Depends(get_db), admin=Depends(can_view)):
    orders = list(db["order"].find({}).sort("created_at", -1).limit(limit))
    customers = customers_by_id(db, [o["customer_id"] for o in orders])
    recent = []
    for o in orders:
        customer = customers.get(o["customer_id"])
        recent.append({
            "orderId": str(o["_id"]),
            "orderNumber": o.get("order_number"),
            "customer": {"id": o["customer_id"], "name": full_name(customer), "email": customer.get("email")} if customer else None,
            "total": o.get("order_total", 0),
            "status": o.get("order_status"),
            "paymentMethod": o.get("payment_method"),
            "createdAt": o.get("created_at"),
        })
    return {"recentOrders": recent}
