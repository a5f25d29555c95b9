"""Lookups of product options a customer already owns through paid orders."""

from typing import Dict, Iterable, List, Set

from pymongo.database import Database

ALREADY_PURCHASED_MESSAGE = (
    "You have already purchased some of these product options. Please check your orders or downloads."
)


def purchased_options(db: Database, customer_id: str, product_ids: Iterable[str]) -> Dict[str, Set[str]]:
    """Map product id -> option ids (catalog option refs) bought in paid orders."""
    product_ids = list(product_ids)
    if not product_ids:
        return {}
    pipeline = [
        {"$match": {"customer_id": customer_id, "order_status": "paid"}},
        {"$unwind": "$products"},
        {"$match": {"products.product_id": {"$in": product_ids}}},
        {"$unwind": "$products.options"},
        {"$group": {"_id": "$products.product_id", "options": {"$addToSet": "$products.options.option_id"}}},
    ]
    return {row["_id"]: set(row["options"]) for row in db["order"].aggregate(pipeline)}


def duplicate_options(owned: Dict[str, Set[str]], product_id: str, option_ids: Iterable[str]) -> List[str]:
    already = owned.get(product_id, set())
    return [o for o in option_ids if o in already]
