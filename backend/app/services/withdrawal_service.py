"""
backend/app/services/withdrawal_service.py

Purpose:
    Withdrawal request lifecycle. Funds are debited when the request is
    created, kept on approval (the payout happens off-platform) and refunded
    on rejection.

Dependencies:
    - app.database
    - app.services.request_lifecycle
    - app.services.wallet_service
    - app.services.audit_service
"""

import logging
from typing import Any

from bson import ObjectId

import app.database as _db
from app.config import settings
from app.errors import NotFoundError, ValidationError
from app.models.wallet import LedgerEntryType, PayoutMethodType, RequestStatus, TransactionType
from app.services import wallet_service
from app.services.audit_service import log_audit
from app.services.deposit_service import attach_user_details
from app.services.request_lifecycle import claim_pending, release_claim
from app.utils import round_money, utcnow

logger = logging.getLogger("fortunabet.withdrawal_service")

_RESOLUTION_FIELDS = ["processed_by", "processed_at", "rejection_reason"]


def _validate_amount(amount) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("Invalid amount.")
    if value != value or value <= 0:
        raise ValidationError("Amount must be positive.")
    if value < settings.WITHDRAWAL_MIN:
        raise ValidationError(f"Minimum withdrawal is {settings.WITHDRAWAL_MIN:,.2f}.")
    if value > settings.WITHDRAWAL_MAX:
        raise ValidationError(f"Maximum withdrawal is {settings.WITHDRAWAL_MAX:,.2f}.")
    return round_money(value)


async def create_withdrawal(
    user_id: str, amount, method_type: str, method_details: dict[str, Any],
) -> dict:
    """Reserve funds and persist a pending withdrawal request.

    The balance is debited first (guarded against overdraft). If persisting
    the linked records fails, the debit is refunded before re-raising.
    """
    value = _validate_amount(amount)
    if method_type not in {m.value for m in PayoutMethodType}:
        raise ValidationError("Unsupported payout method.")
    if not method_details:
        raise ValidationError("Payout details are required.")

    user = await _db.db.users.find_one({"_id": ObjectId(user_id)}, {"username": 1})
    if not user:
        raise NotFoundError("User not found.")

    await wallet_service.debit(
        user_id=user_id,
        amount=value,
        entry_type=LedgerEntryType.WITHDRAWAL_RESERVED,
        reference_type="withdrawal_request",
        reference_id=None,
        description=f"Withdrawal requested via {method_type}",
    )

    now = utcnow()
    tx_doc = {
        "user_id": user_id,
        "type": TransactionType.withdrawal.value,
        "amount": value,
        "status": RequestStatus.pending.value,
        "method": method_type,
        "reference": None,
        "processed_by": None,
        "processed_at": None,
        "rejection_reason": None,
        "created_at": now,
    }
    try:
        tx_result = await _db.db.transactions.insert_one(tx_doc)
        tx_doc["_id"] = tx_result.inserted_id

        request_doc = {
            "user_id": user_id,
            "username": user.get("username"),
            "amount": value,
            "method_type": method_type,
            "method_details": method_details,
            "status": RequestStatus.pending.value,
            "transaction_id": str(tx_result.inserted_id),
            "processed_by": None,
            "processed_at": None,
            "rejection_reason": None,
            "requested_at": now,
        }
        req_result = await _db.db.withdrawal_requests.insert_one(request_doc)
        request_doc["_id"] = req_result.inserted_id
    except Exception:
        logger.exception("Withdrawal persistence failed, refunding user=%s amount=%.2f", user_id, value)
        if "_id" in tx_doc:
            await _db.db.transactions.delete_one({"_id": tx_doc["_id"]})
        await wallet_service.credit(
            user_id=user_id,
            amount=value,
            entry_type=LedgerEntryType.WITHDRAWAL_REFUNDED,
            reference_type="withdrawal_request",
            reference_id=None,
            description="Withdrawal request failed",
        )
        raise

    logger.info(
        "Withdrawal requested: req=%s user=%s amount=%.2f method=%s",
        request_doc["_id"], user_id, value, method_type,
    )
    return request_doc


async def approve_withdrawal(request_id: str, admin_id: str) -> dict:
    """Approve a pending withdrawal. No further balance change.

    The audit record WITHDRAWAL_PAYOUT_DUE is the signal that the
    off-platform payout must be executed.
    """
    req_oid = ObjectId(request_id)
    request = await claim_pending(
        _db.db.withdrawal_requests,
        req_oid,
        RequestStatus.approved.value,
        {"processed_by": admin_id, "processed_at": utcnow()},
        label="Withdrawal request",
    )

    await _set_transaction_status(request, RequestStatus.approved.value, admin_id)
    await log_audit(
        actor_id=admin_id,
        target_id=request["user_id"],
        action="WITHDRAWAL_PAYOUT_DUE",
        metadata={
            "request_id": request_id,
            "amount": request["amount"],
            "method_type": request["method_type"],
            "method_details": request.get("method_details", {}),
        },
    )
    logger.info(
        "Withdrawal approved: req=%s user=%s amount=%.2f by=%s",
        request_id, request["user_id"], request["amount"], admin_id,
    )
    return request


async def reject_withdrawal(request_id: str, admin_id: str, reason: str) -> dict:
    """Reject a pending withdrawal and refund the reserved amount."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required.")

    req_oid = ObjectId(request_id)
    request = await claim_pending(
        _db.db.withdrawal_requests,
        req_oid,
        RequestStatus.rejected.value,
        {"processed_by": admin_id, "processed_at": utcnow(), "rejection_reason": reason},
        label="Withdrawal request",
    )

    try:
        await wallet_service.credit(
            user_id=request["user_id"],
            amount=request["amount"],
            entry_type=LedgerEntryType.WITHDRAWAL_REFUNDED,
            reference_type="withdrawal_request",
            reference_id=request_id,
            description=f"Withdrawal rejected: {reason}",
        )
    except Exception:
        await release_claim(
            _db.db.withdrawal_requests, req_oid, RequestStatus.rejected.value, _RESOLUTION_FIELDS,
        )
        raise

    await _set_transaction_status(request, RequestStatus.rejected.value, admin_id, reason)
    logger.info(
        "Withdrawal rejected: req=%s user=%s amount=%.2f by=%s reason=%s",
        request_id, request["user_id"], request["amount"], admin_id, reason,
    )
    return request


async def list_pending_withdrawals(limit: int = 200) -> list[dict]:
    """Pending withdrawal requests, oldest first."""
    rows = await _db.db.withdrawal_requests.find(
        {"status": RequestStatus.pending.value},
    ).sort("requested_at", 1).limit(limit).to_list(length=limit)
    return await attach_user_details(rows)


async def _set_transaction_status(
    request: dict, status: str, admin_id: str, reason: str | None = None,
) -> None:
    """Mirror the request's terminal status onto its linked transaction."""
    fields = {"status": status, "processed_by": admin_id, "processed_at": utcnow()}
    if reason:
        fields["rejection_reason"] = reason
    await _db.db.transactions.update_one(
        {"_id": ObjectId(request["transaction_id"]), "status": RequestStatus.pending.value},
        {"$set": fields},
    )
