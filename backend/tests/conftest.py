"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import paths, required environment defaults and
    an in-memory stand-in for the Motor database (app.database.db).
"""

from __future__ import annotations

import asyncio
import copy
import os
import re
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]
_REPO_ROOT = _THIS_FILE.parents[2]

for candidate in (str(_BACKEND_DIR), str(_REPO_ROOT)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)

# Settings() requires these at import time.
os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017")
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production-use-0123456789")

from bson import ObjectId  # noqa: E402
from pymongo.errors import DuplicateKeyError, OperationFailure  # noqa: E402

_MISSING = object()


def _get(doc: Any, path: str) -> Any:
    cur = doc
    for part in path.split("."):
        if isinstance(cur, dict) and part in cur:
            cur = cur[part]
        else:
            return _MISSING
    return cur


def _set(doc: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    cur = doc
    for part in parts[:-1]:
        if not isinstance(cur.get(part), dict):
            cur[part] = {}
        cur = cur[part]
    cur[parts[-1]] = value


def _unset(doc: dict, path: str) -> None:
    parts = path.split(".")
    cur = doc
    for part in parts[:-1]:
        cur = cur.get(part)
        if not isinstance(cur, dict):
            return
    cur.pop(parts[-1], None)


def _is_operator_dict(cond: Any) -> bool:
    return isinstance(cond, dict) and bool(cond) and all(str(k).startswith("$") for k in cond)


def _match_value(value: Any, cond: Any) -> bool:
    if not _is_operator_dict(cond):
        if value is _MISSING:
            return cond is None
        return value == cond

    present = value is not _MISSING and value is not None
    for op, arg in cond.items():
        if op == "$options":
            continue
        if op == "$gte":
            ok = present and value >= arg
        elif op == "$gt":
            ok = present and value > arg
        elif op == "$lte":
            ok = present and value <= arg
        elif op == "$lt":
            ok = present and value < arg
        elif op == "$in":
            ok = value in arg
        elif op == "$nin":
            ok = value not in arg
        elif op == "$ne":
            ok = value != arg
        elif op == "$exists":
            ok = (value is not _MISSING) == bool(arg)
        elif op == "$regex":
            flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
            ok = isinstance(value, str) and re.search(arg, value, flags) is not None
        else:
            raise NotImplementedError(op)
        if not ok:
            return False
    return True


def matches(doc: dict, query: dict | None) -> bool:
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, q) for q in cond):
                return False
        elif key == "$and":
            if not all(matches(doc, q) for q in cond):
                return False
        elif not _match_value(_get(doc, key), cond):
            return False
    return True


def _apply_update(doc: dict, update: dict) -> None:
    for key, value in update.get("$set", {}).items():
        _set(doc, key, copy.deepcopy(value))
    for key, value in update.get("$inc", {}).items():
        current = _get(doc, key)
        _set(doc, key, (0 if current is _MISSING else current) + value)
    for key in update.get("$unset", {}):
        _unset(doc, key)


def _sort_key(value: Any):
    if value is _MISSING or value is None:
        return (0, 0)
    return (1, value)


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs

    def sort(self, key, direction=None):
        keys = key if isinstance(key, list) else [(key, direction or 1)]
        for field, order in reversed(keys):
            self._docs.sort(key=lambda d, f=field: _sort_key(_get(d, f)), reverse=order < 0)
        return self

    def skip(self, count: int):
        self._docs = self._docs[count:]
        return self

    def limit(self, count: int):
        if count:
            self._docs = self._docs[:count]
        return self

    async def to_list(self, length=None):
        if length is None:
            return list(self._docs)
        return list(self._docs)[:length]

    def __aiter__(self):
        self._iter = iter(self._docs)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """Subset of the Motor collection API backed by a list of dicts.

    `unique` lists fields enforced like a unique sparse index.
    `fail_on` names methods that raise `failure` when called.
    Async methods yield to the event loop once, so gathered calls interleave.
    """

    def __init__(self, name: str, unique: tuple[str, ...] = ()):
        self.name = name
        self.docs: list[dict] = []
        self.unique = unique
        self.fail_on: set[str] = set()
        self.failure: Exception = OperationFailure("injected failure")

    # ---------- test helpers ----------

    def seed(self, doc: dict) -> dict:
        doc = dict(doc)
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return doc

    def get(self, _id) -> dict | None:
        for doc in self.docs:
            if doc["_id"] == _id:
                return doc
        return None

    # ---------- internals ----------

    def _maybe_fail(self, method: str) -> None:
        if method in self.fail_on:
            raise self.failure

    def _check_unique(self, candidate: dict) -> None:
        for field in self.unique:
            value = _get(candidate, field)
            if value is _MISSING or value is None:
                continue
            for other in self.docs:
                if other["_id"] != candidate["_id"] and _get(other, field) == value:
                    raise DuplicateKeyError(f"E11000 duplicate key {field}")

    def _first(self, query: dict | None) -> dict | None:
        for doc in self.docs:
            if matches(doc, query):
                return doc
        return None

    # ---------- Motor API ----------

    async def insert_one(self, doc: dict):
        await asyncio.sleep(0)
        self._maybe_fail("insert_one")
        doc.setdefault("_id", ObjectId())
        stored = copy.deepcopy(doc)
        self._check_unique(stored)
        self.docs.append(stored)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query=None, projection=None):
        await asyncio.sleep(0)
        self._maybe_fail("find_one")
        doc = self._first(query)
        return copy.deepcopy(doc) if doc is not None else None

    def find(self, query=None, projection=None):
        self._maybe_fail("find")
        return FakeCursor([copy.deepcopy(d) for d in self.docs if matches(d, query)])

    async def find_one_and_update(self, query, update, return_document=False, upsert=False, **_kwargs):
        await asyncio.sleep(0)
        self._maybe_fail("find_one_and_update")
        doc = self._first(query)
        if doc is None:
            return None
        before = copy.deepcopy(doc)
        candidate = copy.deepcopy(doc)
        _apply_update(candidate, update)
        self._check_unique(candidate)
        doc.clear()
        doc.update(candidate)
        return copy.deepcopy(doc) if return_document else before

    async def update_one(self, query, update, upsert=False):
        await asyncio.sleep(0)
        self._maybe_fail("update_one")
        doc = self._first(query)
        if doc is None:
            if not upsert:
                return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
            new_doc = {k: v for k, v in query.items() if not k.startswith("$") and not _is_operator_dict(v)}
            new_doc.setdefault("_id", ObjectId())
            _apply_update(new_doc, update)
            self._check_unique(new_doc)
            self.docs.append(new_doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=new_doc["_id"])
        candidate = copy.deepcopy(doc)
        _apply_update(candidate, update)
        self._check_unique(candidate)
        changed = candidate != doc
        doc.clear()
        doc.update(candidate)
        return SimpleNamespace(matched_count=1, modified_count=int(changed), upserted_id=None)

    async def update_many(self, query, update):
        await asyncio.sleep(0)
        self._maybe_fail("update_many")
        modified = 0
        for doc in self.docs:
            if matches(doc, query):
                _apply_update(doc, update)
                modified += 1
        return SimpleNamespace(matched_count=modified, modified_count=modified)

    async def delete_one(self, query):
        await asyncio.sleep(0)
        self._maybe_fail("delete_one")
        doc = self._first(query)
        if doc is None:
            return SimpleNamespace(deleted_count=0)
        self.docs.remove(doc)
        return SimpleNamespace(deleted_count=1)

    async def delete_many(self, query):
        before = len(self.docs)
        self.docs = [d for d in self.docs if not matches(d, query)]
        return SimpleNamespace(deleted_count=before - len(self.docs))

    async def count_documents(self, query):
        return sum(1 for d in self.docs if matches(d, query))

    def aggregate(self, pipeline: list[dict]):
        rows = [copy.deepcopy(d) for d in self.docs]
        for stage in pipeline:
            if "$match" in stage:
                rows = [r for r in rows if matches(r, stage["$match"])]
            elif "$group" in stage:
                group = stage["$group"]
                grouped: dict[Any, dict] = {}
                for row in rows:
                    key_expr = group["_id"]
                    key = _get(row, key_expr[1:]) if isinstance(key_expr, str) else key_expr
                    out = grouped.setdefault(key, {"_id": key})
                    for field, acc in group.items():
                        if field == "_id":
                            continue
                        expr = acc["$sum"]
                        value = _get(row, expr[1:]) if isinstance(expr, str) else expr
                        out[field] = out.get(field, 0) + (0 if value in (_MISSING, None) else value)
                rows = list(grouped.values())
            else:
                raise NotImplementedError(stage)
        return FakeCursor(rows)

    async def create_index(self, *_args, **_kwargs):
        return "fake_index"


class FakeDatabase:
    """Lazily creates FakeCollections on attribute access."""

    _UNIQUE = {
        "users": ("email", "username", "personal_info.phone"),
        "slip_drafts": ("user_id",),
        "access_blocklist": ("jti",),
    }

    def __init__(self):
        self._collections: dict[str, FakeCollection] = {}

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        if name not in self._collections:
            self._collections[name] = FakeCollection(name, self._UNIQUE.get(name, ()))
        return self._collections[name]

    async def command(self, name: str):
        if name == "ping":
            return {"ok": 1.0}
        raise NotImplementedError(name)


@pytest.fixture
def fake_db(monkeypatch):
    """Swap app.database.db for an in-memory FakeDatabase."""
    import app.database as _db

    db = FakeDatabase()
    monkeypatch.setattr(_db, "db", db, raising=False)
    return db


@pytest.fixture
def make_user(fake_db):
    """Seed a verified user and return its document."""
    from app.utils import utcnow

    counter = {"n": 0}

    def _make(balance: float = 0.0, role: str = "user", **overrides) -> dict:
        counter["n"] += 1
        letters = "abcdefghijklmnopqrstuvwxyz"
        suffix = letters[counter["n"] % 26] * 2
        now = utcnow()
        doc = {
            "username": f"player{suffix}",
            "email": f"player{counter['n']}@example.com",
            "hashed_password": "x",
            "role": role,
            "balance": balance,
            "personal_info": {"phone_verified": False},
            "is_verified": True,
            "last_username_change": None,
            "created_at": now,
            "updated_at": now,
        }
        doc.update(overrides)
        return fake_db.users.seed(doc)

    return _make
