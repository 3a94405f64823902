"""Odds proxy: sports list, events per sport, cached event lookup."""

from fastapi import APIRouter

from app.providers.odds_api import odds_provider

router = APIRouter(prefix="/api", tags=["sports"])


@router.get("/sports")
async def list_sports():
    return await odds_provider.get_sports()


@router.get("/events/{sport_key}")
async def list_events(sport_key: str):
    """Upcoming events with decimal odds. Empty list if the feed is down."""
    return await odds_provider.get_events(sport_key)


@router.get("/event/{sport_key}/{event_id}")
async def get_event(sport_key: str, event_id: str):
    return odds_provider.get_event(sport_key, event_id)
