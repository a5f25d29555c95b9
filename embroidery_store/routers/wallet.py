import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from embroidery_store import config
from embroidery_store.database import create_document, get_db
from embroidery_store.errors import APIError
from embroidery_store.helpers import serialize_doc
from embroidery_store.schemas import Wallet as WalletSchema
from embroidery_store.schemas import WalletTransaction
from embroidery_store.security import get_current_customer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])


class AddFundsInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: float = Field(..., ge=1)
    payment_reference: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=255)


def get_or_create_wallet(db: Database, customer_id: str) -> Dict[str, Any]:
    wallet = db["wallet"].find_one({"customer_id": customer_id})
    if not wallet:
        wallet = create_document(db, "wallet", WalletSchema(customer_id=customer_id, currency=config.DEFAULT_CURRENCY).model_dump())
    return wallet


def record_transaction(db: Database, wallet: Dict[str, Any], amount: float, kind: str, description: str,
                       reference_id: Optional[str] = None) -> Dict[str, Any]:
    entry = WalletTransaction(
        wallet_id=str(wallet["_id"]),
        customer_id=wallet["customer_id"],
        amount=amount,
        type=kind,
        description=description,
        reference_id=reference_id,
    )
    return create_document(db, "wallet_transaction", entry.model_dump())


def debit_wallet(db: Database, wallet: Dict[str, Any], amount: float, description: str, reference_id: str) -> float:
    """Atomically take `amount` from the wallet; returns the new balance."""
    if not wallet.get("is_active", True):
        raise APIError(400, "Wallet is not active", "WALLET_INACTIVE")
    res = db["wallet"].update_one(
        {"_id": wallet["_id"], "balance": {"$gte": amount}},
        {"$inc": {"balance": -amount}, "$set": {"updated_at": datetime.now(timezone.utc)}},
    )
    if res.modified_count == 0:
        raise APIError(400, "Insufficient wallet balance", "INSUFFICIENT_BALANCE",
                       balance=wallet.get("balance", 0), required=amount)
    record_transaction(db, wallet, amount, "DEBIT", description, reference_id)
    return db["wallet"].find_one({"_id": wallet["_id"]})["balance"]


def wallet_out(db: Database, wallet: Dict[str, Any]) -> Dict[str, Any]:
    transactions = db["wallet_transaction"].find({"wallet_id": str(wallet["_id"])}).sort("created_at", -1).limit(20)
    return {
        "id": str(wallet["_id"]),
        "balance": round(wallet.get("balance", 0), 2),
        "currency": wallet.get("currency", config.DEFAULT_CURRENCY),
        "is_active": wallet.get("is_active", True),
        "transactions": [serialize_doc(t) for t in transactions],
    }


@router.get("")
def get_wallet(db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    wallet = get_or_create_wallet(db, current_customer["id"])
    return {"success": True, "data": wallet_out(db, wallet)}


@router.post("/add-funds")
def add_funds(payload: AddFundsInput, db: Database = Depends(get_db), current_customer: dict = Depends(get_current_customer)):
    wallet = get_or_create_wallet(db, current_customer["id"])
    reference = payload.payment_reference
    if not wallet.get("is_active", True):
        raise APIError(400, "Wallet is not active", "WALLET_INACTIVE")

    # the CREDIT row is claimed before the balance moves, so a reference credits once
    now = datetime.now(timezone.utc)
    entry = WalletTransaction(
        wallet_id=str(wallet["_id"]),
        customer_id=wallet["customer_id"],
        amount=payload.amount,
        type="CREDIT",
        description=payload.description or "Wallet top-up",
        reference_id=reference,
    ).model_dump()
    try:
        claim = db["wallet_transaction"].update_one(
            {"reference_id": reference, "type": "CREDIT"},
            {"$setOnInsert": {**entry, "created_at": now, "updated_at": now}},
            upsert=True,
        )
        processed = claim.upserted_id is None
    except DuplicateKeyError:
        processed = True
    if processed:
        return {"success": True, "data": wallet_out(db, wallet), "message": "Transaction already processed"}

    db["wallet"].update_one(
        {"_id": wallet["_id"]},
        {"$inc": {"balance": payload.amount}, "$set": {"updated_at": now}},
    )
    logger.info("Wallet %s credited %.2f (ref %s)", wallet["_id"], payload.amount, reference)
    wallet = db["wallet"].find_one({"_id": wallet["_id"]})
    return {"success": True, "data": wallet_out(db, wallet), "message": "Funds added successfully"}
