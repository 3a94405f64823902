"""
backend/tests/test_odds_provider.py

Purpose:
    TheOddsAPI proxy against an httpx.MockTransport: market selection,
    caching, stale fallback, circuit breaker and score parsing.
"""

import httpx
import pytest

from app.config import settings
from app.errors import NotFoundError
from app.providers.http_client import ResilientClient
from app.providers.odds_api import TheOddsAPIProvider, markets_for, parse_scores

EVENTS = [
    {"id": "ev1", "home_team": "Caracas FC", "away_team": "Monagas", "bookmakers": []},
    {"id": "ev2", "home_team": "Zamora", "away_team": "Táchira", "bookmakers": []},
]


class Upstream:
    """Scripted upstream: pops one response per call and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        status, body = item
        return httpx.Response(status, json=body)


def _provider(upstream: Upstream) -> TheOddsAPIProvider:
    client = ResilientClient(
        "odds_api_test", timeout=1, max_retries=0, base_delay=0,
        transport=httpx.MockTransport(upstream),
    )
    return TheOddsAPIProvider(client=client, base_url="https://odds.test/v4/")


@pytest.fixture(autouse=True)
def api_key(monkeypatch):
    monkeypatch.setattr(settings, "ODDS_API_KEY", "test-key")


def test_markets_for():
    assert markets_for("soccer_epl") == "h2h,totals"
    assert markets_for("soccer_fifa_world_cup_winner") == "outrights"
    assert markets_for("golf_masters_tournament_outright") == "outrights"


@pytest.mark.asyncio
async def test_get_events_queries_decimal_odds_and_caches():
    upstream = Upstream((200, EVENTS))
    provider = _provider(upstream)

    first = await provider.get_events("soccer_epl")
    second = await provider.get_events("soccer_epl")

    assert first == second == EVENTS
    assert len(upstream.requests) == 1
    req = upstream.requests[0]
    assert req.url.path == "/v4/sports/soccer_epl/odds"
    assert req.url.params["apiKey"] == "test-key"
    assert req.url.params["regions"] == "us,eu,uk"
    assert req.url.params["markets"] == "h2h,totals"
    assert req.url.params["oddsFormat"] == "decimal"
    await provider.aclose()


@pytest.mark.asyncio
async def test_upstream_failure_serves_stale_data():
    upstream = Upstream((200, EVENTS), (500, {"message": "boom"}))
    provider = _provider(upstream)

    await provider.get_events("soccer_epl")
    provider._cache._data["events:soccer_epl"]["timestamp"] -= 10_000

    assert await provider.get_events("soccer_epl") == EVENTS
    assert len(upstream.requests) == 2
    await provider.aclose()


@pytest.mark.asyncio
async def test_failure_without_cache_returns_empty_list():
    upstream = Upstream(httpx.ConnectError("refused"))
    provider = _provider(upstream)

    assert await provider.get_sports() == []
    await provider.aclose()


@pytest.mark.asyncio
async def test_non_list_payload_is_ignored():
    upstream = Upstream((200, {"message": "quota exceeded"}))
    provider = _provider(upstream)

    assert await provider.get_events("soccer_epl") == []
    await provider.aclose()


@pytest.mark.asyncio
async def test_missing_api_key_skips_upstream(monkeypatch):
    monkeypatch.setattr(settings, "ODDS_API_KEY", "")
    upstream = Upstream((200, EVENTS))
    provider = _provider(upstream)

    assert await provider.get_events("soccer_epl") == []
    assert upstream.requests == []
    await provider.aclose()


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures():
    upstream = Upstream((503, {}))
    provider = _provider(upstream)

    for sport in ("a", "b", "c"):
        await provider.get_events(sport)
    assert provider.circuit_state == "open"

    assert await provider.get_events("d") == []
    assert len(upstream.requests) == 3
    await provider.aclose()


@pytest.mark.asyncio
async def test_get_event_reads_from_cache():
    provider = _provider(Upstream((200, EVENTS)))

    with pytest.raises(NotFoundError):
        provider.get_event("soccer_epl", "ev1")

    await provider.get_events("soccer_epl")
    assert provider.get_event("soccer_epl", "ev2")["home_team"] == "Zamora"
    with pytest.raises(NotFoundError):
        provider.get_event("soccer_epl", "missing")
    await provider.aclose()


def test_parse_scores():
    raw = [
        {
            "id": "ev1", "completed": True, "home_team": "A", "away_team": "B",
            "scores": [{"name": "A", "score": "2"}, {"name": "B", "score": "1"}],
        },
        {
            "id": "ev2", "completed": True, "home_team": "C", "away_team": "D",
            "scores": [{"name": "C", "score": "0"}, {"name": "D", "score": "0"}],
        },
        {
            "id": "ev3", "completed": False, "home_team": "E", "away_team": "F",
            "scores": [{"name": "E", "score": "1"}, {"name": "F", "score": "0"}],
        },
        {
            "id": "ev4", "completed": True, "home_team": "G", "away_team": "H",
            "scores": None,
        },
    ]

    results = parse_scores(raw)

    assert [(r["event_id"], r["winner"]) for r in results] == [("ev1", "A"), ("ev2", "Draw")]
    assert results[0]["home_score"] == 2


@pytest.mark.asyncio
async def test_get_scores_parses_completed_events():
    upstream = Upstream((200, [{
        "id": "ev1", "completed": True, "home_team": "A", "away_team": "B",
        "scores": [{"name": "A", "score": "0"}, {"name": "B", "score": "3"}],
    }]))
    provider = _provider(upstream)

    scores = await provider.get_scores("soccer_epl")

    assert scores[0]["winner"] == "B"
    assert upstream.requests[0].url.params["daysFrom"] == "3"
    await provider.aclose()
