"""Wager placement and server-side bet slip drafts."""

from fastapi import APIRouter, Depends, Query, status

from app.models.betting_slip import (
    PlaceWagerRequest,
    SelectionIn,
    SlipResponse,
    StakeUpdate,
    WagerResponse,
    wager_to_response,
)
from app.services import betting_slip_service, wager_service
from app.services.auth_service import get_current_user

router = APIRouter(prefix="/api/bets", tags=["bets"])
slip_router = APIRouter(prefix="/api/slip", tags=["slip"])


def _placement_response(wager: dict) -> dict:
    return {
        "wager_id": str(wager["_id"]),
        "total_odds": wager["total_odds"],
        "stake": wager["stake"],
        "potential_payout": wager["potential_payout"],
        "status": wager["status"],
    }


# ---------- Wagers ----------

@router.post("", status_code=status.HTTP_201_CREATED)
async def place_wager(body: PlaceWagerRequest, user=Depends(get_current_user)):
    """Place a wager directly from selections and a stake."""
    wager = await wager_service.place_wager(str(user["_id"]), body.selections, body.stake)
    return _placement_response(wager)


@router.get("", response_model=list[WagerResponse])
async def list_my_wagers(
    limit: int = Query(50, ge=1, le=200),
    user=Depends(get_current_user),
):
    wagers = await wager_service.list_user_wagers(str(user["_id"]), limit=limit)
    return [wager_to_response(w) for w in wagers]


# ---------- Draft slip ----------

@slip_router.get("", response_model=SlipResponse)
async def get_slip(user=Depends(get_current_user)):
    return await betting_slip_service.get_slip(str(user["_id"]))


@slip_router.post("/selections", response_model=SlipResponse)
async def toggle_selection(body: SelectionIn, user=Depends(get_current_user)):
    """Add the selection, or remove it if it is already on the slip."""
    return await betting_slip_service.toggle_selection(str(user["_id"]), body)


@slip_router.delete("/selections/{selection_id}", response_model=SlipResponse)
async def remove_selection(selection_id: str, user=Depends(get_current_user)):
    return await betting_slip_service.remove_selection(str(user["_id"]), selection_id)


@slip_router.put("/stake", response_model=SlipResponse)
async def set_stake(body: StakeUpdate, user=Depends(get_current_user)):
    return await betting_slip_service.set_stake(str(user["_id"]), body.stake)


@slip_router.delete("", response_model=SlipResponse)
async def clear_slip(user=Depends(get_current_user)):
    return await betting_slip_service.clear_slip(str(user["_id"]))


@slip_router.post("/submit", status_code=status.HTTP_201_CREATED)
async def submit_slip(user=Depends(get_current_user)):
    """Place the stored slip as a wager and clear it."""
    wager = await betting_slip_service.submit_slip(str(user["_id"]))
    return _placement_response(wager)
