"""
backend/app/providers/odds_api.py

Purpose:
    Cached proxy of TheOddsAPI: sports list, events with odds per sport,
    single-event lookup from cache, and completed scores for wager
    settlement. Upstream failures degrade to stale data or an empty list.

Dependencies:
    - app.providers.http_client
    - app.config
"""

import asyncio
import logging
import time
from typing import Any, Optional

from app.config import settings
from app.errors import NotFoundError, UpstreamError
from app.providers.http_client import ResilientClient

logger = logging.getLogger("fortunabet.odds_api")

EVENT_REGIONS = "us,eu,uk"
DEFAULT_MARKETS = "h2h,totals"
OUTRIGHT_MARKETS = "outrights"
SCORES_DAYS_FROM = 3
DRAW = "Draw"


def markets_for(sport_key: str) -> str:
    """Futures keys (…_winner, …_outright…) only offer the outrights market."""
    key = sport_key.lower()
    if "winner" in key or "outright" in key:
        return OUTRIGHT_MARKETS
    return DEFAULT_MARKETS


class OddsCache:
    """In-memory cache keeping stale entries around as a fallback.

    Each entry remembers its own TTL; is_fresh() decides whether to refetch,
    get() still returns the stale value when a refresh fails.
    """

    def __init__(self, default_ttl: int):
        self.default_ttl = default_ttl
        self._data: dict[str, dict[str, Any]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        return entry["data"] if entry else None

    def is_fresh(self, key: str) -> bool:
        entry = self._data.get(key)
        if not entry:
            return False
        return (time.time() - entry["timestamp"]) < entry["ttl"]

    def set(self, key: str, data: Any, ttl: Optional[int] = None) -> None:
        self._data[key] = {"data": data, "timestamp": time.time(), "ttl": ttl or self.default_ttl}
        self._cleanup()

    def _cleanup(self) -> None:
        """Drop entries far past their TTL."""
        now = time.time()
        expired = [k for k, v in self._data.items() if (now - v["timestamp"]) > v["ttl"] * 10]
        for k in expired:
            del self._data[k]
            self._locks.pop(k, None)

    def get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]


class TheOddsAPIProvider:
    """TheOddsAPI client with circuit breaker and stale-on-error cache."""

    def __init__(self, client: Optional[ResilientClient] = None, base_url: Optional[str] = None):
        self._client = client or ResilientClient(
            "odds_api",
            timeout=settings.ODDS_HTTP_TIMEOUT_SECONDS,
            max_retries=settings.ODDS_HTTP_MAX_RETRIES,
        )
        self._base_url = (base_url or settings.THEODDSAPI_BASE_URL).rstrip("/")
        self._cache = OddsCache(default_ttl=settings.ODDS_CACHE_TTL_SECONDS)

    async def _cached_fetch(
        self, cache_key: str, path: str, params: dict[str, Any], ttl: int,
    ) -> list[dict[str, Any]]:
        if self._cache.is_fresh(cache_key):
            return self._cache.get(cache_key) or []

        lock = self._cache.get_lock(cache_key)
        if lock.locked():
            # Another request is refreshing this key; serve what we have.
            return self._cache.get(cache_key) or []

        async with lock:
            if self._cache.is_fresh(cache_key):
                return self._cache.get(cache_key) or []

            if not settings.ODDS_API_KEY:
                logger.warning("ODDS_API_KEY not configured, cannot fetch %s", path)
                return self._cache.get(cache_key) or []

            try:
                data = await self._client.get_json(
                    f"{self._base_url}{path}",
                    params={"apiKey": settings.ODDS_API_KEY, **params},
                )
            except UpstreamError as exc:
                logger.error("TheOddsAPI error for %s: %s", path, exc.message)
                return self._cache.get(cache_key) or []

            if not isinstance(data, list):
                logger.error("TheOddsAPI returned unexpected payload for %s", path)
                return self._cache.get(cache_key) or []

            self._cache.set(cache_key, data, ttl)
            return data

    async def get_sports(self) -> list[dict[str, Any]]:
        return await self._cached_fetch(
            "sports", "/sports", {}, settings.SPORTS_CACHE_TTL_SECONDS,
        )

    async def get_events(self, sport_key: str) -> list[dict[str, Any]]:
        return await self._cached_fetch(
            f"events:{sport_key}",
            f"/sports/{sport_key}/odds",
            {"regions": EVENT_REGIONS, "markets": markets_for(sport_key), "oddsFormat": "decimal"},
            settings.ODDS_CACHE_TTL_SECONDS,
        )

    def get_event(self, sport_key: str, event_id: str) -> dict[str, Any]:
        """Look an event up in the cached events of its sport."""
        events = self._cache.get(f"events:{sport_key}")
        if not events:
            raise NotFoundError("No cached events for this sport. Load the sport first.")
        for event in events:
            if event.get("id") == event_id:
                return event
        raise NotFoundError("Event not found in cache.")

    async def get_scores(self, sport_key: str) -> list[dict[str, Any]]:
        """Completed events of a sport with their winning outcome name."""
        raw = await self._cached_fetch(
            f"scores:{sport_key}",
            f"/sports/{sport_key}/scores",
            {"daysFrom": SCORES_DAYS_FROM},
            settings.ODDS_CACHE_TTL_SECONDS,
        )
        return parse_scores(raw)

    @property
    def circuit_state(self) -> str:
        return self._client.circuit.state

    @property
    def circuit_open(self) -> bool:
        return self._client.circuit.is_open

    async def aclose(self) -> None:
        await self._client.aclose()


def parse_scores(raw: list[dict]) -> list[dict[str, Any]]:
    """Reduce raw score events to {event_id, home_team, away_team, winner}.

    Incomplete events and events with missing or unparseable scores are
    skipped. A level score yields winner "Draw".
    """
    results = []
    for event in raw:
        if not event.get("completed"):
            continue
        home_team = event.get("home_team")
        away_team = event.get("away_team")
        by_name: dict[str, int] = {}
        for s in event.get("scores") or []:
            try:
                by_name[s["name"]] = int(s["score"])
            except (KeyError, TypeError, ValueError):
                continue
        if home_team not in by_name or away_team not in by_name:
            continue

        home_score, away_score = by_name[home_team], by_name[away_team]
        if home_score > away_score:
            winner = home_team
        elif away_score > home_score:
            winner = away_team
        else:
            winner = DRAW

        results.append({
            "event_id": event["id"],
            "home_team": home_team,
            "away_team": away_team,
            "home_score": home_score,
            "away_score": away_score,
            "winner": winner,
        })
    return results


# Singleton provider instance
odds_provider = TheOddsAPIProvider()
