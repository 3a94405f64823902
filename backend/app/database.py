"""
backend/app/database.py

Purpose:
    MongoDB connection bootstrap and index management for users, wallet
    requests, wagers and slip drafts.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - app.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import OperationFailure

from app.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("fortunabet.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=5,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def get_db() -> AsyncIOMotorDatabase:
    return db


async def _safe_create_index(collection, keys, **kwargs) -> None:
    """Create an index, skipping option conflicts with an existing one."""
    try:
        await collection.create_index(keys, **kwargs)
    except OperationFailure as exc:
        # 85 IndexOptionsConflict, 86 IndexKeySpecsConflict
        if exc.code in (85, 86):
            logger.warning("Index %s on %s already exists with other options", keys, collection.name)
            return
        raise


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Users ----
    await _safe_create_index(db.users, "email", unique=True)
    await _safe_create_index(db.users, "username", unique=True)
    await _safe_create_index(db.users, "role")
    await _safe_create_index(db.users, "is_verified")
    await _safe_create_index(db.users, "personal_info.phone", unique=True, sparse=True)
    await _safe_create_index(db.users, [("created_at", -1)])

    # ---- Transactions (deposits + withdrawals) ----
    await _safe_create_index(db.transactions, [("user_id", 1), ("created_at", -1)])
    await _safe_create_index(db.transactions, [("type", 1), ("status", 1), ("created_at", 1)])

    # ---- Wagers ----
    await _safe_create_index(db.bets, [("user_id", 1), ("created_at", -1)])
    await _safe_create_index(db.bets, [("status", 1), ("created_at", 1)])
    await _safe_create_index(db.bets, "selections.event_id", sparse=True)

    # ---- Withdrawal requests ----
    await _safe_create_index(db.withdrawal_requests, [("status", 1), ("requested_at", 1)])
    await _safe_create_index(db.withdrawal_requests, "user_id")
    await _safe_create_index(db.withdrawal_requests, "transaction_id")

    # ---- Payout methods ----
    await _safe_create_index(db.payout_methods, [("user_id", 1), ("is_primary", -1)])

    # ---- Slip drafts (one per user) ----
    await _safe_create_index(db.slip_drafts, "user_id", unique=True)

    # ---- Wallet ledger ----
    await _safe_create_index(db.wallet_ledger, [("user_id", 1), ("created_at", -1)])
    await _safe_create_index(db.wallet_ledger, [("reference_type", 1), ("reference_id", 1)])

    # ---- Audit / auth ----
    await _safe_create_index(db.audit_logs, [("target_id", 1), ("timestamp", -1)])
    await _safe_create_index(db.audit_logs, [("action", 1), ("timestamp", -1)])
    await _safe_create_index(db.access_blocklist, "jti", unique=True)
    await _safe_create_index(db.access_blocklist, "expires_at", expireAfterSeconds=0)

    logger.info("MongoDB indexes ensured")
