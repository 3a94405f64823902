"""
backend/tests/test_deposit_service.py

Purpose:
    Deposit request lifecycle: validation on create, exactly-once credit on
    approve, reason-required reject, claim release on failed credit.
"""

import asyncio
from datetime import timedelta

import pytest
from bson import ObjectId

from app.errors import AlreadyResolvedError, NotFoundError, ValidationError
from app.services import deposit_service


@pytest.mark.asyncio
async def test_create_deposit_is_pending_without_balance_effect(fake_db, make_user):
    user = make_user(balance=10.0)

    tx = await deposit_service.create_deposit(str(user["_id"]), 500, "zelle", "REF-123")

    assert tx["status"] == "pending"
    assert tx["type"] == "deposit"
    assert fake_db.transactions.get(tx["_id"])["amount"] == 500.0
    assert fake_db.users.get(user["_id"])["balance"] == 10.0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "amount, method, reference",
    [
        (0, "zelle", "REF"),
        (-5, "zelle", "REF"),
        (100_000_000, "zelle", "REF"),
        (50, "paypal", "REF"),
        (50, "zelle", "   "),
        (50, "zelle", "R" * 101),
    ],
)
async def test_create_deposit_validation(fake_db, make_user, amount, method, reference):
    user = make_user()
    with pytest.raises(ValidationError):
        await deposit_service.create_deposit(str(user["_id"]), amount, method, reference)
    assert fake_db.transactions.docs == []


@pytest.mark.asyncio
async def test_approve_credits_exactly_once(fake_db, make_user):
    user = make_user(balance=0.0)
    tx = await deposit_service.create_deposit(str(user["_id"]), 500, "pago_movil", "0102-9988")

    approved = await deposit_service.approve_deposit(str(tx["_id"]), "admin-1")

    assert approved["status"] == "approved"
    assert approved["processed_by"] == "admin-1"
    assert fake_db.users.get(user["_id"])["balance"] == 500.0

    with pytest.raises(AlreadyResolvedError):
        await deposit_service.approve_deposit(str(tx["_id"]), "admin-2")
    assert fake_db.users.get(user["_id"])["balance"] == 500.0

    ledger = fake_db.wallet_ledger.docs
    assert [(e["type"], e["amount"]) for e in ledger] == [("DEPOSIT_APPROVED", 500.0)]


@pytest.mark.asyncio
async def test_approve_unknown_deposit_is_not_found(fake_db):
    with pytest.raises(NotFoundError):
        await deposit_service.approve_deposit(str(ObjectId()), "admin-1")


@pytest.mark.asyncio
async def test_reject_requires_reason(fake_db, make_user):
    user = make_user()
    tx = await deposit_service.create_deposit(str(user["_id"]), 50, "usdt", "hash")

    with pytest.raises(ValidationError):
        await deposit_service.reject_deposit(str(tx["_id"]), "admin-1", "  ")
    assert fake_db.transactions.get(tx["_id"])["status"] == "pending"


@pytest.mark.asyncio
async def test_reject_stores_reason_without_balance_effect(fake_db, make_user):
    user = make_user(balance=7.0)
    tx = await deposit_service.create_deposit(str(user["_id"]), 50, "binance", "B-1")

    rejected = await deposit_service.reject_deposit(str(tx["_id"]), "admin-1", "Reference not found")

    assert rejected["status"] == "rejected"
    assert rejected["rejection_reason"] == "Reference not found"
    assert fake_db.users.get(user["_id"])["balance"] == 7.0

    with pytest.raises(AlreadyResolvedError):
        await deposit_service.approve_deposit(str(tx["_id"]), "admin-1")
    assert fake_db.users.get(user["_id"])["balance"] == 7.0


@pytest.mark.asyncio
async def test_failed_credit_releases_claim(fake_db, make_user):
    user = make_user()
    tx = await deposit_service.create_deposit(str(user["_id"]), 80, "zelle", "Z-9")
    fake_db.users.fail_on.add("find_one_and_update")

    with pytest.raises(Exception):
        await deposit_service.approve_deposit(str(tx["_id"]), "admin-1")

    stored = fake_db.transactions.get(tx["_id"])
    assert stored["status"] == "pending"
    assert "processed_by" not in stored


@pytest.mark.asyncio
async def test_list_pending_oldest_first_with_user_details(fake_db, make_user):
    user = make_user(personal_info={"first_name": "Ana", "last_name": "Pérez"})
    first = await deposit_service.create_deposit(str(user["_id"]), 10, "zelle", "A")
    second = await deposit_service.create_deposit(str(user["_id"]), 20, "zelle", "B")
    fake_db.transactions.get(second["_id"])["created_at"] += timedelta(minutes=1)
    done = await deposit_service.create_deposit(str(user["_id"]), 30, "zelle", "C")
    await deposit_service.reject_deposit(str(done["_id"]), "admin-1", "dup")

    rows = await deposit_service.list_pending_deposits()

    assert [r["_id"] for r in rows] == [first["_id"], second["_id"]]
    assert rows[0]["username"] == user["username"]
    assert rows[0]["user_email"] == user["email"]
    assert rows[0]["full_name"] == "Ana Pérez"


@pytest.mark.asyncio
async def test_concurrent_approvals_credit_once(fake_db, make_user):
    user = make_user(balance=0.0)
    tx = await deposit_service.create_deposit(str(user["_id"]), 500, "zelle", "REF-RACE")
    tx_id = str(tx["_id"])

    results = await asyncio.gather(
        deposit_service.approve_deposit(tx_id, "admin-1"),
        deposit_service.approve_deposit(tx_id, "admin-2"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, dict) for r in results) == 1
    assert sum(isinstance(r, AlreadyResolvedError) for r in results) == 1
    assert fake_db.users.get(user["_id"])["balance"] == 500.0
    assert [e["type"] for e in fake_db.wallet_ledger.docs] == ["DEPOSIT_APPROVED"]


@pytest.mark.asyncio
async def test_concurrent_approve_and_reject_apply_one(fake_db, make_user):
    user = make_user(balance=0.0)
    tx = await deposit_service.create_deposit(str(user["_id"]), 200, "zelle", "REF-RACE-2")
    tx_id = str(tx["_id"])

    results = await asyncio.gather(
        deposit_service.approve_deposit(tx_id, "admin-1"),
        deposit_service.reject_deposit(tx_id, "admin-2", "Duplicate"),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, dict)]
    assert len(winners) == 1
    assert sum(isinstance(r, AlreadyResolvedError) for r in results) == 1
    expected = 200.0 if winners[0]["status"] == "approved" else 0.0
    assert fake_db.users.get(user["_id"])["balance"] == expected
