"""
backend/app/services/betting_slip_service.py

Purpose:
    Server-side slip drafts. Binds a BetSlip to the user's slip_drafts
    document so a slip survives reloads, and exposes the operations the
    /api/slip router calls.

Dependencies:
    - app.database
    - app.services.bet_slip
    - app.services.wager_service
"""

import logging
from typing import Any, Optional

import app.database as _db
from app.services.bet_slip import BetSlip, SlipStorage
from app.utils import utcnow

logger = logging.getLogger("fortunabet.betting_slip_service")


class DraftSlipStorage(SlipStorage):
    """SlipStorage backed by one slip_drafts document per user.

    BetSlip mutates synchronously, so save()/clear() only record the latest
    state; flush() writes it to MongoDB.
    """

    _UNCHANGED = object()

    def __init__(self, user_id: str, state: Optional[dict[str, Any]] = None):
        self.user_id = user_id
        self._state = state
        self._pending: Any = self._UNCHANGED

    @classmethod
    async def open(cls, user_id: str) -> "DraftSlipStorage":
        doc = await _db.db.slip_drafts.find_one({"user_id": user_id})
        state = None
        if doc:
            state = {"selections": doc.get("selections", []), "stake": doc.get("stake", 0.0)}
        return cls(user_id, state)

    def load(self) -> Optional[dict[str, Any]]:
        return self._state

    def save(self, state: dict[str, Any]) -> None:
        self._state = state
        self._pending = state

    def clear(self) -> None:
        self._state = None
        self._pending = None

    async def flush(self) -> None:
        if self._pending is self._UNCHANGED:
            return
        pending, self._pending = self._pending, self._UNCHANGED
        if pending is None:
            await _db.db.slip_drafts.delete_one({"user_id": self.user_id})
            return
        await _db.db.slip_drafts.update_one(
            {"user_id": self.user_id},
            {"$set": {
                "selections": pending["selections"],
                "stake": pending["stake"],
                "updated_at": utcnow(),
            }},
            upsert=True,
        )


async def open_slip(user_id: str) -> tuple[BetSlip, DraftSlipStorage]:
    storage = await DraftSlipStorage.open(user_id)
    return BetSlip.hydrate(storage), storage


def slip_to_response(slip: BetSlip, event: Optional[str] = None) -> dict:
    return {
        "selections": slip.selections,
        "stake": slip.stake,
        "total_odds": slip.total_odds(),
        "potential_payout": round(slip.compute_payout(), 2),
        "event": event,
    }


async def get_slip(user_id: str) -> dict:
    slip, _ = await open_slip(user_id)
    return slip_to_response(slip)


async def toggle_selection(user_id: str, selection: Any) -> dict:
    slip, storage = await open_slip(user_id)
    event = slip.toggle_selection(selection)
    await storage.flush()
    return slip_to_response(slip, event)


async def remove_selection(user_id: str, selection_id: str) -> dict:
    slip, storage = await open_slip(user_id)
    removed = slip.remove_selection(selection_id)
    await storage.flush()
    return slip_to_response(slip, "removed" if removed else None)


async def set_stake(user_id: str, amount: Any) -> dict:
    slip, storage = await open_slip(user_id)
    slip.set_stake(amount)
    await storage.flush()
    return slip_to_response(slip, "stake")


async def clear_slip(user_id: str) -> dict:
    slip, storage = await open_slip(user_id)
    slip.clear()
    await storage.flush()
    return slip_to_response(slip, "cleared")


async def submit_slip(user_id: str) -> dict:
    """Place the stored draft as a wager. The draft is kept on failure."""
    slip, storage = await open_slip(user_id)
    wager = await slip.submit(user_id)
    await storage.flush()
    logger.info("Slip submitted: user=%s wager=%s", user_id, wager["_id"])
    return wager


async def discard_draft(user_id: str) -> None:
    """Drop the user's draft (logout)."""
    storage = await DraftSlipStorage.open(user_id)
    slip = BetSlip.hydrate(storage)
    slip.close()
    await storage.flush()
