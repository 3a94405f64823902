from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class WagerStatus(str, Enum):
    pending = "pending"    # Submitted, awaiting settlement
    won = "won"
    lost = "lost"


class SelectionIn(BaseModel):
    """One leg as sent by the client.

    `event_id`, `sport_key` and `outcome` are optional; when present the
    wager resolver can settle the leg from the upstream scores feed.
    """
    label: str                                    # "Team A vs Team B - Team A"
    odds: float                                   # decimal odds, > 1.0
    id: Optional[str] = None                      # composite key; derived if missing
    event_id: Optional[str] = None                # upstream event id
    sport_key: Optional[str] = None               # upstream sport key
    outcome: Optional[str] = None                 # backed outcome name ("Team A", "Draw")


class WagerInDB(BaseModel):
    """Full wager document as stored in MongoDB."""
    user_id: str
    selections: List[Dict[str, Any]]              # snapshot at submission
    stake: float
    total_odds: float                             # product of selection odds, frozen
    potential_payout: float                       # stake * total_odds
    status: WagerStatus = WagerStatus.pending
    payout: Optional[float] = None                # credited amount once won
    settled_by: Optional[str] = None              # admin id or "SYSTEM"
    settled_at: Optional[datetime] = None
    created_at: datetime


# ---------- Request / Response models ----------

class PlaceWagerRequest(BaseModel):
    """Request body for POST /api/bets."""
    selections: List[SelectionIn] = []
    stake: Any = None                             # range-checked by wager_service


class WagerResponse(BaseModel):
    """Wager data returned to the client."""
    wager_id: str
    selections: List[Dict[str, Any]]
    stake: float
    total_odds: float
    potential_payout: float
    status: str
    payout: Optional[float] = None
    created_at: datetime
    settled_at: Optional[datetime] = None


class StakeUpdate(BaseModel):
    stake: Any = None


class SlipResponse(BaseModel):
    """Current state of the user's bet slip."""
    selections: List[Dict[str, Any]]
    stake: float
    total_odds: float
    potential_payout: float
    event: Optional[str] = None                   # "added" | "removed" | ...


class SettleRequest(BaseModel):
    """Manual settlement by an admin."""
    status: WagerStatus


def wager_to_response(wager: dict) -> WagerResponse:
    return WagerResponse(
        wager_id=str(wager["_id"]),
        selections=wager.get("selections", []),
        stake=wager["stake"],
        total_odds=wager["total_odds"],
        potential_payout=wager.get("potential_payout", 0.0),
        status=wager["status"],
        payout=wager.get("payout"),
        created_at=wager["created_at"],
        settled_at=wager.get("settled_at"),
    )
