"""
backend/app/services/wager_service.py

Purpose:
    Wager lifecycle: placement (stake debit + pending wager) and settlement
    (pending -> won|lost, payout credited exactly once on won).

Dependencies:
    - app.database
    - app.services.wallet_service
    - app.services.request_lifecycle
"""

import logging
import math
from functools import reduce
from operator import mul
from typing import Any, Optional

from bson import ObjectId

import app.database as _db
from app.config import settings
from app.errors import ValidationError
from app.models.betting_slip import WagerStatus
from app.models.wallet import LedgerEntryType
from app.services import wallet_service
from app.services.request_lifecycle import claim_pending, release_claim
from app.utils import round_money, utcnow

logger = logging.getLogger("fortunabet.wager_service")

SYSTEM_SETTLER = "SYSTEM"


def selection_id(label: str, odds: float) -> str:
    """Composite key identifying a selection on the slip."""
    return f"{label}:{float(odds)!r}"


def combined_odds(selections: list[dict]) -> float:
    """Product of the selections' decimal odds (1.0 for an empty list)."""
    return reduce(mul, (float(s["odds"]) for s in selections), 1.0)


def parse_odds(raw: Any, label: str) -> float:
    """Decimal odds as a finite float in (1.0, ODDS_MAX]."""
    try:
        odds = float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid odds for '{label}'.")
    if not math.isfinite(odds) or not odds > 1.0:
        raise ValidationError(f"Odds for '{label}' must be a number greater than 1.0.")
    if odds > settings.ODDS_MAX:
        raise ValidationError(f"Odds for '{label}' exceed the maximum of {settings.ODDS_MAX:,.0f}.")
    return odds


def _normalize_selections(selections: list[Any]) -> list[dict]:
    if not selections:
        raise ValidationError("At least one selection is required.")
    if len(selections) > settings.MAX_SELECTIONS:
        raise ValidationError(f"A wager can hold at most {settings.MAX_SELECTIONS} selections.")

    normalized: list[dict] = []
    for raw in selections:
        sel = raw.model_dump() if hasattr(raw, "model_dump") else dict(raw)
        label = (sel.get("label") or "").strip()
        if not label:
            raise ValidationError("Every selection needs a label.")
        odds = parse_odds(sel.get("odds"), label)

        normalized.append({
            "id": sel.get("id") or selection_id(label, odds),
            "label": label,
            "odds": odds,
            "event_id": sel.get("event_id"),
            "sport_key": sel.get("sport_key"),
            "outcome": sel.get("outcome"),
        })
    return normalized


def _validate_stake(stake: Any) -> float:
    try:
        value = float(stake)
    except (TypeError, ValueError):
        raise ValidationError("Stake must be a positive amount.")
    if not value > 0:
        raise ValidationError("Stake must be a positive amount.")
    if value > settings.STAKE_MAX:
        raise ValidationError(f"Maximum stake is {settings.STAKE_MAX:,.0f}.")
    return round_money(value)


async def place_wager(user_id: str, selections: list[Any], stake: Any) -> dict:
    """Debit the stake and persist a pending wager.

    The selections are snapshotted and total_odds is frozen at this point.
    If the insert fails after the debit, the stake is refunded.
    """
    legs = _normalize_selections(selections)
    amount = _validate_stake(stake)
    total_odds = combined_odds(legs)
    potential_payout = round_money(amount * total_odds)
    if not math.isfinite(potential_payout) or potential_payout > settings.PAYOUT_MAX:
        raise ValidationError(f"Potential payout exceeds the maximum of {settings.PAYOUT_MAX:,.0f}.")

    await wallet_service.debit(
        user_id=user_id,
        amount=amount,
        entry_type=LedgerEntryType.BET_PLACED,
        reference_type="bet",
        reference_id=None,
        description=f"Wager on {len(legs)} selection(s) @ {total_odds:.2f}",
    )

    doc = {
        "user_id": user_id,
        "selections": legs,
        "stake": amount,
        "total_odds": total_odds,
        "potential_payout": potential_payout,
        "status": WagerStatus.pending.value,
        "payout": None,
        "settled_by": None,
        "settled_at": None,
        "created_at": utcnow(),
    }
    try:
        result = await _db.db.bets.insert_one(doc)
    except Exception:
        logger.exception("Wager insert failed, refunding stake user=%s amount=%.2f", user_id, amount)
        await wallet_service.credit(
            user_id=user_id,
            amount=amount,
            entry_type=LedgerEntryType.BET_STAKE_REFUNDED,
            reference_type="bet",
            reference_id=None,
            description="Wager could not be placed",
        )
        raise
    doc["_id"] = result.inserted_id

    logger.info(
        "Wager placed: id=%s user=%s legs=%d stake=%.2f odds=%.3f",
        doc["_id"], user_id, len(legs), amount, total_odds,
    )
    return doc


async def settle_wager(wager_id: str, outcome: str, settled_by: str = SYSTEM_SETTLER) -> dict:
    """Transition a pending wager to won or lost.

    A won wager credits round(stake * total_odds, 2) once. Concurrent or
    repeated settlement attempts raise AlreadyResolvedError.
    """
    if outcome not in (WagerStatus.won.value, WagerStatus.lost.value):
        raise ValidationError("Outcome must be 'won' or 'lost'.")

    wager_oid = ObjectId(wager_id)
    now = utcnow()
    fields: dict[str, Any] = {"settled_by": settled_by, "settled_at": now, "payout": 0.0}

    if outcome == WagerStatus.won.value:
        current = await _db.db.bets.find_one({"_id": wager_oid}, {"stake": 1, "total_odds": 1})
        if current is not None:
            fields["payout"] = round_money(current["stake"] * current["total_odds"])

    wager = await claim_pending(_db.db.bets, wager_oid, outcome, fields, label="Wager")

    if outcome == WagerStatus.won.value:
        try:
            await wallet_service.credit(
                user_id=wager["user_id"],
                amount=wager["payout"],
                entry_type=LedgerEntryType.BET_WON,
                reference_type="bet",
                reference_id=wager_id,
                description=f"Wager won @ {wager['total_odds']:.2f}",
            )
        except Exception:
            await release_claim(
                _db.db.bets, wager_oid, outcome, ["settled_by", "settled_at", "payout"],
            )
            raise

    logger.info(
        "Wager settled: id=%s user=%s outcome=%s payout=%.2f by=%s",
        wager_id, wager["user_id"], outcome, wager.get("payout") or 0.0, settled_by,
    )
    return wager


def resolve_wager_outcome(wager: dict, results: dict[str, Optional[str]]) -> Optional[str]:
    """Decide a wager's outcome from per-selection results.

    `results` maps selection id -> "won" | "lost" | None (undecided).
    Any lost leg loses the wager; all legs won wins it; otherwise None.
    """
    legs = wager.get("selections", [])
    if not legs:
        return None

    all_won = True
    for leg in legs:
        result = results.get(leg["id"])
        if result == WagerStatus.lost.value:
            return WagerStatus.lost.value
        if result != WagerStatus.won.value:
            all_won = False
    return WagerStatus.won.value if all_won else None


async def list_user_wagers(user_id: str, limit: int = 50) -> list[dict]:
    """A user's wagers, newest first."""
    return await _db.db.bets.find(
        {"user_id": user_id},
    ).sort("created_at", -1).limit(limit).to_list(length=limit)


async def list_pending_wagers(limit: int = 500) -> list[dict]:
    return await _db.db.bets.find(
        {"status": WagerStatus.pending.value},
    ).sort("created_at", 1).limit(limit).to_list(length=limit)
