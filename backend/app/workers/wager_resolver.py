"""Settle pending wagers from the upstream scores feed."""

import logging
from typing import Any, Optional

from app.errors import AlreadyResolvedError, AppError
from app.models.betting_slip import WagerStatus
from app.providers.odds_api import odds_provider
from app.services import wager_service

logger = logging.getLogger("fortunabet.wager_resolver")


def leg_results(wager: dict, winners: dict[str, str]) -> dict[str, Optional[str]]:
    """Map each selection id to won/lost/None from event winners.

    Legs without event_id or outcome, or whose event has no final score
    yet, stay undecided.
    """
    results: dict[str, Optional[str]] = {}
    for leg in wager.get("selections", []):
        winner = winners.get(leg.get("event_id") or "")
        if winner is None or not leg.get("outcome"):
            results[leg["id"]] = None
            continue
        won = leg["outcome"].strip().lower() == winner.strip().lower()
        results[leg["id"]] = WagerStatus.won.value if won else WagerStatus.lost.value
    return results


async def _fetch_winners(sport_keys: set[str]) -> dict[str, str]:
    winners: dict[str, str] = {}
    for sport_key in sorted(sport_keys):
        for score in await odds_provider.get_scores(sport_key):
            winners[score["event_id"]] = score["winner"]
    return winners


async def resolve_wagers() -> dict[str, Any]:
    """Settle every pending wager whose legs are all decided (or any leg lost)."""
    pending = await wager_service.list_pending_wagers()
    if not pending:
        logger.debug("No pending wagers")
        return {"checked": 0, "won": 0, "lost": 0}

    sport_keys = {
        leg["sport_key"]
        for wager in pending
        for leg in wager.get("selections", [])
        if leg.get("sport_key") and leg.get("event_id")
    }
    winners = await _fetch_winners(sport_keys)

    won = lost = 0
    for wager in pending:
        outcome = wager_service.resolve_wager_outcome(wager, leg_results(wager, winners))
        if outcome is None:
            continue
        try:
            await wager_service.settle_wager(str(wager["_id"]), outcome, wager_service.SYSTEM_SETTLER)
        except AlreadyResolvedError:
            # Settled manually in the meantime.
            continue
        except AppError as exc:
            logger.error("Could not settle wager %s: %s", wager["_id"], exc.message)
            continue
        except Exception as e:
            logger.error("Settlement failed for wager %s: %s", wager["_id"], e)
            continue
        if outcome == WagerStatus.won.value:
            won += 1
        else:
            lost += 1

    if won or lost:
        logger.info("Wager resolver: %d won, %d lost (%d checked)", won, lost, len(pending))
    return {"checked": len(pending), "won": won, "lost": lost}
