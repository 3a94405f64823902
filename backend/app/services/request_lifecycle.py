"""
backend/app/services/request_lifecycle.py

Purpose:
    Guarded pending -> terminal transitions shared by deposits, withdrawals
    and wager settlement.

    claim_pending() flips status with a conditional update keyed on
    status == "pending", so exactly one concurrent caller wins. The winner
    applies the balance side effect; if that fails it calls release_claim()
    to put the record back to pending before re-raising.
"""

import logging
from typing import Any

from bson import ObjectId

from app.errors import AlreadyResolvedError, NotFoundError

logger = logging.getLogger("fortunabet.request_lifecycle")

PENDING = "pending"


async def claim_pending(
    collection,
    record_id: ObjectId,
    new_status: str,
    fields: dict[str, Any] | None = None,
    *,
    label: str = "Record",
) -> dict:
    """Transition a pending record to `new_status`. Returns the updated doc."""
    update = {"status": new_status, **(fields or {})}
    doc = await collection.find_one_and_update(
        {"_id": record_id, "status": PENDING},
        {"$set": update},
        return_document=True,
    )
    if doc is not None:
        return doc

    existing = await collection.find_one({"_id": record_id}, {"status": 1})
    if existing is None:
        raise NotFoundError(f"{label} not found.")
    raise AlreadyResolvedError(f"{label} is already {existing.get('status')}.")


async def release_claim(
    collection,
    record_id: ObjectId,
    claimed_status: str,
    fields: list[str] | None = None,
) -> None:
    """Undo claim_pending() after a failed side effect."""
    update: dict[str, Any] = {"$set": {"status": PENDING}}
    if fields:
        update["$unset"] = {f: "" for f in fields}
    result = await collection.update_one(
        {"_id": record_id, "status": claimed_status},
        update,
    )
    if result.modified_count:
        logger.warning("Released %s claim on %s", claimed_status, record_id)
    else:
        logger.error("Could not release %s claim on %s", claimed_status, record_id)
