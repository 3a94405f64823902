"""
backend/app/services/admin_service.py

Purpose:
    Read side of the admin console: dashboard totals, user search and
    per-user history. Approval actions live in the deposit, withdrawal and
    wager services.

Dependencies:
    - app.database
    - app.utils
"""

from __future__ import annotations

from bson import ObjectId

import app.database as _db
from app.errors import NotFoundError
from app.models.wallet import RequestStatus, TransactionType


def filter_users(users: list[dict], q: str | None) -> list[dict]:
    """Case-insensitive substring match over username, email and id."""
    needle = (q or "").strip().lower()
    if not needle:
        return list(users)
    return [
        u for u in users
        if needle in str(u.get("username", "")).lower()
        or needle in str(u.get("email", "")).lower()
        or needle in str(u.get("_id", "")).lower()
    ]


async def dashboard_stats() -> dict:
    total_users = await _db.db.users.count_documents({})
    pending_deposits = await _db.db.transactions.count_documents({
        "type": TransactionType.deposit.value,
        "status": RequestStatus.pending.value,
    })
    pending_withdrawals = await _db.db.withdrawal_requests.count_documents({
        "status": RequestStatus.pending.value,
    })
    pending_bets = await _db.db.bets.count_documents({"status": "pending"})

    rows = await _db.db.users.aggregate([
        {"$group": {"_id": None, "total": {"$sum": "$balance"}}},
    ]).to_list(length=1)
    total_balance = rows[0]["total"] if rows else 0.0

    return {
        "users": total_users,
        "total_balance": round(float(total_balance), 2),
        "pending_deposits": pending_deposits,
        "pending_withdrawals": pending_withdrawals,
        "pending_bets": pending_bets,
    }


async def list_users(q: str | None = None, limit: int = 500) -> list[dict]:
    """Users newest first, filtered in memory by filter_users()."""
    users = await _db.db.users.find(
        {},
        {"hashed_password": 0, "otp": 0, "password_change_code": 0, "personal_info.phone_otp": 0},
    ).sort("created_at", -1).limit(limit).to_list(length=limit)
    return filter_users(users, q)


async def user_history(user_id: str, limit: int = 200) -> dict:
    """A user's profile with their transactions and wagers, newest first."""
    user = await _db.db.users.find_one({"_id": ObjectId(user_id)})
    if not user:
        raise NotFoundError("User not found.")

    transactions = await _db.db.transactions.find(
        {"user_id": user_id},
    ).sort("created_at", -1).limit(limit).to_list(length=limit)
    bets = await _db.db.bets.find(
        {"user_id": user_id},
    ).sort("created_at", -1).limit(limit).to_list(length=limit)

    return {"user": user, "transactions": transactions, "bets": bets}
