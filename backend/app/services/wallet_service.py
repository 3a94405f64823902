"""Wallet ledger: atomic balance operations on the users collection.

Every balance movement is a single conditional $inc followed by an
immutable wallet_ledger entry.
"""

import logging
from typing import Optional

from bson import ObjectId

import app.database as _db
from app.errors import NotFoundError, ValidationError
from app.models.wallet import LedgerEntryType
from app.utils import utcnow

logger = logging.getLogger("fortunabet.wallet_service")


async def get_balance(user_id: str) -> float:
    user = await _db.db.users.find_one({"_id": ObjectId(user_id)}, {"balance": 1})
    if not user:
        raise NotFoundError("User not found.")
    return float(user.get("balance", 0.0))


async def debit(
    user_id: str, amount: float, entry_type: LedgerEntryType,
    reference_type: str, reference_id: Optional[str], description: str,
) -> dict:
    """Atomically debit the balance. Returns the updated user.

    Uses find_one_and_update with a balance >= amount guard to prevent
    overdraft.
    """
    user = await _db.db.users.find_one_and_update(
        {"_id": ObjectId(user_id), "balance": {"$gte": amount}},
        {
            "$inc": {"balance": -amount},
            "$set": {"updated_at": utcnow()},
        },
        return_document=True,
    )
    if not user:
        exists = await _db.db.users.find_one({"_id": ObjectId(user_id)}, {"_id": 1})
        if not exists:
            raise NotFoundError("User not found.")
        raise ValidationError("Insufficient funds.")

    await _log_entry(
        user_id=user_id,
        entry_type=entry_type,
        amount=-amount,
        balance_after=user["balance"],
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
    )
    return user


async def credit(
    user_id: str, amount: float, entry_type: LedgerEntryType,
    reference_type: str, reference_id: Optional[str], description: str,
) -> dict:
    """Credit the balance. Raises NotFoundError if the user is gone."""
    user = await _db.db.users.find_one_and_update(
        {"_id": ObjectId(user_id)},
        {
            "$inc": {"balance": amount},
            "$set": {"updated_at": utcnow()},
        },
        return_document=True,
    )
    if not user:
        logger.error("User not found for credit: %s", user_id)
        raise NotFoundError("User not found.")

    await _log_entry(
        user_id=user_id,
        entry_type=entry_type,
        amount=amount,
        balance_after=user["balance"],
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
    )
    return user


async def get_ledger(user_id: str, limit: int = 50, skip: int = 0) -> list[dict]:
    """Ledger history for a user, newest first."""
    return await _db.db.wallet_ledger.find(
        {"user_id": user_id},
    ).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)


async def _log_entry(
    user_id: str, entry_type: LedgerEntryType, amount: float,
    balance_after: float, description: str,
    reference_type: Optional[str] = None, reference_id: Optional[str] = None,
) -> None:
    """Insert an immutable ledger record."""
    try:
        await _db.db.wallet_ledger.insert_one({
            "user_id": user_id,
            "type": entry_type.value,
            "amount": amount,
            "balance_after": balance_after,
            "reference_type": reference_type,
            "reference_id": reference_id,
            "description": description,
            "created_at": utcnow(),
        })
    except Exception:
        # The balance write already happened; losing the trail entry must not undo it.
        logger.exception(
            "Failed to write ledger entry: user=%s type=%s amount=%.2f",
            user_id, entry_type.value, amount,
        )
