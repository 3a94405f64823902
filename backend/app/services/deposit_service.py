"""
backend/app/services/deposit_service.py

Purpose:
    Deposit request lifecycle: the user reports an external payment, an admin
    approves (credits the balance) or rejects it (no balance effect).

Dependencies:
    - app.database
    - app.services.request_lifecycle
    - app.services.wallet_service
"""

import logging

from bson import ObjectId

import app.database as _db
from app.config import settings
from app.errors import NotFoundError, ValidationError
from app.models.wallet import DepositMethod, LedgerEntryType, RequestStatus, TransactionType
from app.services import wallet_service
from app.services.request_lifecycle import claim_pending, release_claim
from app.utils import round_money, utcnow

logger = logging.getLogger("fortunabet.deposit_service")

_RESOLUTION_FIELDS = ["processed_by", "processed_at", "rejection_reason"]


def _validate_amount(amount) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("Invalid amount.")
    if not value > 0:
        raise ValidationError("Amount must be positive.")
    if value > settings.DEPOSIT_MAX:
        raise ValidationError(f"Maximum deposit is {settings.DEPOSIT_MAX:,.0f}.")
    return round_money(value)


async def create_deposit(user_id: str, amount, method: str, reference: str) -> dict:
    """Persist a pending deposit transaction. No balance effect yet."""
    value = _validate_amount(amount)
    if method not in {m.value for m in DepositMethod}:
        raise ValidationError("Unsupported deposit method.")
    reference = (reference or "").strip()
    if not reference:
        raise ValidationError("Payment reference is required.")
    if len(reference) > 100:
        raise ValidationError("Payment reference is too long.")

    doc = {
        "user_id": user_id,
        "type": TransactionType.deposit.value,
        "amount": value,
        "status": RequestStatus.pending.value,
        "method": method,
        "reference": reference,
        "processed_by": None,
        "processed_at": None,
        "rejection_reason": None,
        "created_at": utcnow(),
    }
    result = await _db.db.transactions.insert_one(doc)
    doc["_id"] = result.inserted_id

    logger.info("Deposit reported: user=%s amount=%.2f method=%s", user_id, value, method)
    return doc


async def approve_deposit(transaction_id: str, admin_id: str) -> dict:
    """Approve a pending deposit and credit the user's balance exactly once."""
    tx_oid = ObjectId(transaction_id)
    tx = await _db.db.transactions.find_one({"_id": tx_oid, "type": TransactionType.deposit.value})
    if tx is None:
        raise NotFoundError("Deposit not found.")

    tx = await claim_pending(
        _db.db.transactions,
        tx_oid,
        RequestStatus.approved.value,
        {"processed_by": admin_id, "processed_at": utcnow()},
        label="Deposit",
    )

    try:
        await wallet_service.credit(
            user_id=tx["user_id"],
            amount=tx["amount"],
            entry_type=LedgerEntryType.DEPOSIT_APPROVED,
            reference_type="transaction",
            reference_id=transaction_id,
            description=f"Deposit via {tx['method']} ({tx.get('reference') or '-'})",
        )
    except Exception:
        await release_claim(
            _db.db.transactions, tx_oid, RequestStatus.approved.value, _RESOLUTION_FIELDS,
        )
        raise

    logger.info(
        "Deposit approved: tx=%s user=%s amount=%.2f by=%s",
        transaction_id, tx["user_id"], tx["amount"], admin_id,
    )
    return tx


async def reject_deposit(transaction_id: str, admin_id: str, reason: str) -> dict:
    """Reject a pending deposit. No balance effect."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required.")

    tx_oid = ObjectId(transaction_id)
    tx = await _db.db.transactions.find_one({"_id": tx_oid, "type": TransactionType.deposit.value})
    if tx is None:
        raise NotFoundError("Deposit not found.")

    tx = await claim_pending(
        _db.db.transactions,
        tx_oid,
        RequestStatus.rejected.value,
        {"processed_by": admin_id, "processed_at": utcnow(), "rejection_reason": reason},
        label="Deposit",
    )
    logger.info("Deposit rejected: tx=%s by=%s reason=%s", transaction_id, admin_id, reason)
    return tx


async def list_pending_deposits(limit: int = 200) -> list[dict]:
    """Pending deposits, oldest first, with the requesting user's identity."""
    deposits = await _db.db.transactions.find(
        {"type": TransactionType.deposit.value, "status": RequestStatus.pending.value},
    ).sort("created_at", 1).limit(limit).to_list(length=limit)
    return await attach_user_details(deposits)


async def attach_user_details(rows: list[dict]) -> list[dict]:
    """Join username/email/full name onto rows carrying a user_id."""
    user_ids = {row["user_id"] for row in rows}
    if not user_ids:
        return rows
    users = await _db.db.users.find(
        {"_id": {"$in": [ObjectId(uid) for uid in user_ids]}},
        {"username": 1, "email": 1, "personal_info": 1},
    ).to_list(length=len(user_ids))
    by_id = {str(u["_id"]): u for u in users}

    for row in rows:
        user = by_id.get(row["user_id"], {})
        info = user.get("personal_info") or {}
        full_name = " ".join(p for p in (info.get("first_name"), info.get("last_name")) if p)
        row["username"] = user.get("username", row.get("username"))
        row["user_email"] = user.get("email")
        row["full_name"] = full_name or None
    return rows
