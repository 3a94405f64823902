"""Admin console: dashboard, users, deposit/withdrawal review, manual settlement."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from app.models.betting_slip import SettleRequest, wager_to_response
from app.models.user import user_to_response
from app.models.wallet import RejectRequest
from app.services import admin_service, deposit_service, wager_service, withdrawal_service
from app.services.audit_service import log_audit
from app.services.auth_service import get_admin_user
from app.utils import as_utc

logger = logging.getLogger("fortunabet.admin")
router = APIRouter(prefix="/api/admin", tags=["admin"])


def _transaction_row(tx: dict) -> dict:
    return {
        "id": str(tx["_id"]),
        "user_id": tx["user_id"],
        "type": tx["type"],
        "amount": tx["amount"],
        "status": tx["status"],
        "method": tx.get("method"),
        "reference": tx.get("reference"),
        "processed_by": tx.get("processed_by"),
        "processed_at": as_utc(tx.get("processed_at")),
        "rejection_reason": tx.get("rejection_reason"),
        "created_at": as_utc(tx["created_at"]),
    }


# --- Dashboard ---

@router.get("/stats")
async def admin_stats(admin=Depends(get_admin_user)):
    """Admin dashboard totals."""
    return await admin_service.dashboard_stats()


# --- Users ---

@router.get("/users")
async def list_users(
    request: Request,
    q: Optional[str] = Query(None),
    admin=Depends(get_admin_user),
):
    """Users newest first, filtered by username, e-mail or id."""
    users = await admin_service.list_users(q)
    await log_audit(
        actor_id=str(admin["_id"]),
        target_id="*",
        action="USER_LIST_VIEWED",
        metadata={"q": q or "", "count": len(users)},
        request=request,
    )
    return [user_to_response(u) for u in users]


@router.get("/users/{user_id}/history")
async def user_history(user_id: str, request: Request, admin=Depends(get_admin_user)):
    history = await admin_service.user_history(user_id)
    await log_audit(
        actor_id=str(admin["_id"]),
        target_id=user_id,
        action="USER_HISTORY_VIEWED",
        request=request,
    )
    return {
        "user": user_to_response(history["user"]),
        "transactions": [_transaction_row(t) for t in history["transactions"]],
        "bets": [wager_to_response(b) for b in history["bets"]],
    }


# --- Deposits ---

@router.get("/deposits/pending")
async def pending_deposits(admin=Depends(get_admin_user)):
    rows = await deposit_service.list_pending_deposits()
    return [
        {
            **_transaction_row(tx),
            "username": tx.get("username"),
            "user_email": tx.get("user_email"),
            "full_name": tx.get("full_name"),
        }
        for tx in rows
    ]


@router.post("/deposits/approve/{transaction_id}")
async def approve_deposit(transaction_id: str, request: Request, admin=Depends(get_admin_user)):
    admin_id = str(admin["_id"])
    tx = await deposit_service.approve_deposit(transaction_id, admin_id)
    await log_audit(
        actor_id=admin_id,
        target_id=tx["user_id"],
        action="DEPOSIT_APPROVED",
        metadata={"transaction_id": transaction_id, "amount": tx["amount"]},
        request=request,
    )
    return {"message": f"Deposit of {tx['amount']:.2f} approved."}


@router.post("/deposits/reject/{transaction_id}")
async def reject_deposit(
    transaction_id: str,
    body: RejectRequest,
    request: Request,
    admin=Depends(get_admin_user),
):
    admin_id = str(admin["_id"])
    tx = await deposit_service.reject_deposit(transaction_id, admin_id, body.reason)
    await log_audit(
        actor_id=admin_id,
        target_id=tx["user_id"],
        action="DEPOSIT_REJECTED",
        metadata={"transaction_id": transaction_id, "reason": tx["rejection_reason"]},
        request=request,
    )
    return {"message": "Deposit rejected."}


# --- Withdrawals ---

@router.get("/withdrawals/pending")
async def pending_withdrawals(admin=Depends(get_admin_user)):
    rows = await withdrawal_service.list_pending_withdrawals()
    return [
        {
            "id": str(r["_id"]),
            "user_id": r["user_id"],
            "username": r.get("username"),
            "user_email": r.get("user_email"),
            "full_name": r.get("full_name"),
            "amount": r["amount"],
            "method_type": r["method_type"],
            "method_details": r.get("method_details", {}),
            "status": r["status"],
            "transaction_id": r["transaction_id"],
            "requested_at": as_utc(r["requested_at"]),
        }
        for r in rows
    ]


@router.post("/withdrawals/approve/{request_id}")
async def approve_withdrawal(request_id: str, admin=Depends(get_admin_user)):
    """Approve a withdrawal. Funds were already reserved; payout happens off-platform."""
    req = await withdrawal_service.approve_withdrawal(request_id, str(admin["_id"]))
    return {"message": f"Withdrawal of {req['amount']:.2f} approved. Execute the payout."}


@router.post("/withdrawals/reject/{request_id}")
async def reject_withdrawal(
    request_id: str,
    body: RejectRequest,
    request: Request,
    admin=Depends(get_admin_user),
):
    admin_id = str(admin["_id"])
    req = await withdrawal_service.reject_withdrawal(request_id, admin_id, body.reason)
    await log_audit(
        actor_id=admin_id,
        target_id=req["user_id"],
        action="WITHDRAWAL_REJECTED",
        metadata={"request_id": request_id, "amount": req["amount"], "reason": req["rejection_reason"]},
        request=request,
    )
    return {"message": "Withdrawal rejected and funds returned."}


# --- Wagers ---

@router.post("/bets/{wager_id}/settle")
async def settle_wager(
    wager_id: str,
    body: SettleRequest,
    request: Request,
    admin=Depends(get_admin_user),
):
    """Manually settle a pending wager as won or lost."""
    admin_id = str(admin["_id"])
    wager = await wager_service.settle_wager(wager_id, body.status.value, admin_id)
    await log_audit(
        actor_id=admin_id,
        target_id=wager["user_id"],
        action="BET_SETTLED",
        metadata={"wager_id": wager_id, "status": wager["status"], "payout": wager.get("payout")},
        request=request,
    )
    return {"message": f"Wager settled as {wager['status']}.", "bet": wager_to_response(wager)}
