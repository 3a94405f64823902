"""
backend/app/services/bet_slip.py

Purpose:
    The bet slip as an explicit state container. One BetSlip per session:
    built from a SlipStorage at session start, cleared by a successful
    submit, closed on logout. Mutations persist to storage and notify
    subscribers synchronously with (event, slip).

Dependencies:
    - app.services.wager_service (default placement function)
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from app.errors import AuthRequiredError, ValidationError
from app.services import wager_service

logger = logging.getLogger("fortunabet.bet_slip")

Listener = Callable[[str, "BetSlip"], None]
PlaceFn = Callable[[str, list[dict], float], Awaitable[dict]]


class SlipStorage(ABC):
    """Durable storage for a slip's selections and stake."""

    @abstractmethod
    def load(self) -> Optional[dict[str, Any]]:
        """Return {"selections": [...], "stake": float} or None."""
        ...

    @abstractmethod
    def save(self, state: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class MemorySlipStorage(SlipStorage):
    """Process-local storage. Used for tests and anonymous sessions."""

    def __init__(self, state: Optional[dict[str, Any]] = None):
        self.state = state

    def load(self) -> Optional[dict[str, Any]]:
        return self.state

    def save(self, state: dict[str, Any]) -> None:
        self.state = state

    def clear(self) -> None:
        self.state = None


def _coerce_selection(selection: Any) -> dict:
    sel = selection.model_dump() if hasattr(selection, "model_dump") else dict(selection)
    label = (sel.get("label") or "").strip()
    if not label:
        raise ValidationError("Selection label is required.")
    odds = wager_service.parse_odds(sel.get("odds"), label)
    sel["label"] = label
    sel["odds"] = odds
    sel["id"] = sel.get("id") or wager_service.selection_id(label, odds)
    return sel


def _coerce_stake(amount: Any) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return 0.0
    # NaN fails the comparison as well
    if not value > 0:
        return 0.0
    return value


class BetSlip:
    """Ordered set of selections plus a stake."""

    def __init__(self, storage: SlipStorage):
        self._storage = storage
        self._selections: list[dict] = []
        self._stake: float = 0.0
        self._listeners: list[Listener] = []

    @classmethod
    def hydrate(cls, storage: SlipStorage) -> "BetSlip":
        """Build a slip from whatever the storage currently holds."""
        slip = cls(storage)
        state = storage.load() or {}
        for raw in state.get("selections") or []:
            try:
                sel = _coerce_selection(raw)
            except ValidationError:
                logger.warning("Dropping malformed stored selection: %r", raw)
                continue
            if slip._index_of(sel["id"]) is None:
                slip._selections.append(sel)
        slip._stake = _coerce_stake(state.get("stake"))
        return slip

    # ---------- Read side ----------

    @property
    def selections(self) -> list[dict]:
        return [dict(s) for s in self._selections]

    @property
    def stake(self) -> float:
        return self._stake

    def is_empty(self) -> bool:
        return not self._selections

    def total_odds(self) -> float:
        if not self._selections:
            return 0.0
        return wager_service.combined_odds(self._selections)

    def compute_payout(self) -> float:
        """stake * product(odds), 0 for an empty slip."""
        if not self._selections:
            return 0.0
        return self._stake * self.total_odds()

    def snapshot(self) -> dict[str, Any]:
        return {"selections": self.selections, "stake": self._stake}

    # ---------- Mutations ----------

    def toggle_selection(self, selection: Any) -> str:
        """Add the selection, or remove it if its id is already on the slip."""
        sel = _coerce_selection(selection)
        idx = self._index_of(sel["id"])
        if idx is not None:
            del self._selections[idx]
            event = "removed"
        else:
            self._selections.append(sel)
            event = "added"
        self._persist()
        self._notify(event)
        return event

    def remove_selection(self, selection_id: str) -> bool:
        idx = self._index_of(selection_id)
        if idx is None:
            return False
        del self._selections[idx]
        self._persist()
        self._notify("removed")
        return True

    def set_stake(self, amount: Any) -> float:
        self._stake = _coerce_stake(amount)
        self._persist()
        self._notify("stake")
        return self._stake

    def clear(self) -> None:
        self._selections = []
        self._stake = 0.0
        self._storage.clear()
        self._notify("cleared")

    async def submit(
        self, current_user_id: Optional[str], place: Optional[PlaceFn] = None,
    ) -> dict:
        """Place the slip as a wager and clear it.

        The slip is left untouched if validation or placement fails.
        """
        if not self._selections:
            raise ValidationError("The slip is empty.")
        if not self._stake > 0:
            raise ValidationError("Enter a valid stake.")
        if not current_user_id:
            raise AuthRequiredError("Log in to place a wager.")

        place = place or wager_service.place_wager
        wager = await place(current_user_id, self.selections, self._stake)

        self._selections = []
        self._stake = 0.0
        self._storage.clear()
        self._notify("submitted")
        return wager

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Session end: forget subscribers and the stored draft."""
        self._listeners.clear()
        self._selections = []
        self._stake = 0.0
        self._storage.clear()

    # ---------- Internals ----------

    def _index_of(self, selection_id: str) -> Optional[int]:
        for i, sel in enumerate(self._selections):
            if sel["id"] == selection_id:
                return i
        return None

    def _persist(self) -> None:
        self._storage.save(self.snapshot())

    def _notify(self, event: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, self)
            except Exception:
                logger.exception("Slip listener failed on %s", event)
