"""
backend/tests/test_withdrawal_service.py

Purpose:
    Withdrawal lifecycle under debit-at-request: reservation on create,
    no balance change on approve, full refund on reject.
"""

import asyncio

import pytest

from app.config import settings
from app.errors import AlreadyResolvedError, ValidationError
from app.services import withdrawal_service

DETAILS = {"bank": "0102", "phone": "+584121234567", "id_number": "V12345678"}


@pytest.mark.asyncio
async def test_create_reserves_amount_and_links_transaction(fake_db, make_user):
    user = make_user(balance=100.0)

    req = await withdrawal_service.create_withdrawal(str(user["_id"]), 40, "pago_movil", DETAILS)

    assert fake_db.users.get(user["_id"])["balance"] == 60.0
    assert req["status"] == "pending"
    assert req["username"] == user["username"]

    tx = fake_db.transactions.docs[0]
    assert str(tx["_id"]) == req["transaction_id"]
    assert tx["type"] == "withdrawal"
    assert tx["amount"] == 40.0
    assert tx["status"] == "pending"
    assert fake_db.wallet_ledger.docs[0]["type"] == "WITHDRAWAL_RESERVED"


@pytest.mark.asyncio
async def test_create_with_insufficient_funds_writes_nothing(fake_db, make_user):
    user = make_user(balance=30.0)

    with pytest.raises(ValidationError, match="Insufficient funds"):
        await withdrawal_service.create_withdrawal(str(user["_id"]), 40, "zelle", {"email": "a@b.c"})

    assert fake_db.users.get(user["_id"])["balance"] == 30.0
    assert fake_db.transactions.docs == []
    assert fake_db.withdrawal_requests.docs == []


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, settings.WITHDRAWAL_MIN - 1, settings.WITHDRAWAL_MAX + 1, "x"])
async def test_create_amount_bounds(fake_db, make_user, amount):
    user = make_user(balance=1_000_000.0)
    with pytest.raises(ValidationError):
        await withdrawal_service.create_withdrawal(str(user["_id"]), amount, "zelle", {"email": "a@b.c"})


@pytest.mark.asyncio
async def test_create_requires_known_method_and_details(fake_db, make_user):
    user = make_user(balance=100.0)
    with pytest.raises(ValidationError):
        await withdrawal_service.create_withdrawal(str(user["_id"]), 20, "paypal", DETAILS)
    with pytest.raises(ValidationError):
        await withdrawal_service.create_withdrawal(str(user["_id"]), 20, "zelle", {})


@pytest.mark.asyncio
async def test_failed_persistence_refunds_reservation(fake_db, make_user):
    user = make_user(balance=100.0)
    fake_db.withdrawal_requests.fail_on.add("insert_one")

    with pytest.raises(Exception):
        await withdrawal_service.create_withdrawal(str(user["_id"]), 40, "zelle", {"email": "a@b.c"})

    assert fake_db.users.get(user["_id"])["balance"] == 100.0
    assert fake_db.transactions.docs == []


@pytest.mark.asyncio
async def test_approve_keeps_debit_and_flags_payout(fake_db, make_user):
    user = make_user(balance=100.0)
    req = await withdrawal_service.create_withdrawal(str(user["_id"]), 40, "pago_movil", DETAILS)

    approved = await withdrawal_service.approve_withdrawal(str(req["_id"]), "admin-1")

    assert approved["status"] == "approved"
    assert fake_db.users.get(user["_id"])["balance"] == 60.0
    assert fake_db.transactions.docs[0]["status"] == "approved"
    audit = fake_db.audit_logs.docs[-1]
    assert audit["action"] == "WITHDRAWAL_PAYOUT_DUE"
    assert audit["metadata"]["amount"] == 40.0

    with pytest.raises(AlreadyResolvedError):
        await withdrawal_service.reject_withdrawal(str(req["_id"]), "admin-2", "late")
    assert fake_db.users.get(user["_id"])["balance"] == 60.0


@pytest.mark.asyncio
async def test_reject_refunds_full_amount(fake_db, make_user):
    user = make_user(balance=100.0)
    req = await withdrawal_service.create_withdrawal(str(user["_id"]), 40, "pago_movil", DETAILS)

    rejected = await withdrawal_service.reject_withdrawal(str(req["_id"]), "admin-1", "Wrong account")

    assert rejected["status"] == "rejected"
    assert rejected["rejection_reason"] == "Wrong account"
    assert fake_db.users.get(user["_id"])["balance"] == 100.0
    assert fake_db.transactions.docs[0]["status"] == "rejected"
    types = [e["type"] for e in fake_db.wallet_ledger.docs]
    assert types == ["WITHDRAWAL_RESERVED", "WITHDRAWAL_REFUNDED"]

    with pytest.raises(AlreadyResolvedError):
        await withdrawal_service.reject_withdrawal(str(req["_id"]), "admin-1", "again")
    assert fake_db.users.get(user["_id"])["balance"] == 100.0


@pytest.mark.asyncio
async def test_reject_requires_reason(fake_db, make_user):
    user = make_user(balance=100.0)
    req = await withdrawal_service.create_withdrawal(str(user["_id"]), 40, "zelle", {"email": "a@b.c"})

    with pytest.raises(ValidationError):
        await withdrawal_service.reject_withdrawal(str(req["_id"]), "admin-1", "")
    assert fake_db.withdrawal_requests.get(req["_id"])["status"] == "pending"


@pytest.mark.asyncio
async def test_failed_refund_releases_claim(fake_db, make_user):
    user = make_user(balance=100.0)
    req = await withdrawal_service.create_withdrawal(str(user["_id"]), 40, "zelle", {"email": "a@b.c"})
    fake_db.users.fail_on.add("find_one_and_update")

    with pytest.raises(Exception):
        await withdrawal_service.reject_withdrawal(str(req["_id"]), "admin-1", "no")

    assert fake_db.withdrawal_requests.get(req["_id"])["status"] == "pending"


@pytest.mark.asyncio
async def test_list_pending_withdrawals(fake_db, make_user):
    user = make_user(balance=100.0)
    keep = await withdrawal_service.create_withdrawal(str(user["_id"]), 20, "zelle", {"email": "a@b.c"})
    done = await withdrawal_service.create_withdrawal(str(user["_id"]), 20, "zelle", {"email": "a@b.c"})
    await withdrawal_service.approve_withdrawal(str(done["_id"]), "admin-1")

    rows = await withdrawal_service.list_pending_withdrawals()

    assert [r["_id"] for r in rows] == [keep["_id"]]
    assert rows[0]["user_email"] == user["email"]


@pytest.mark.asyncio
async def test_concurrent_rejects_refund_once(fake_db, make_user):
    user = make_user(balance=100.0)
    req = await withdrawal_service.create_withdrawal(str(user["_id"]), 40, "zelle", {"email": "a@b.c"})
    req_id = str(req["_id"])

    results = await asyncio.gather(
        withdrawal_service.reject_withdrawal(req_id, "admin-1", "Wrong account"),
        withdrawal_service.reject_withdrawal(req_id, "admin-2", "Wrong account"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, dict) for r in results) == 1
    assert sum(isinstance(r, AlreadyResolvedError) for r in results) == 1
    assert fake_db.users.get(user["_id"])["balance"] == 100.0
    types = [e["type"] for e in fake_db.wallet_ledger.docs]
    assert types == ["WITHDRAWAL_RESERVED", "WITHDRAWAL_REFUNDED"]


@pytest.mark.asyncio
async def test_concurrent_approve_and_reject_apply_one(fake_db, make_user):
    user = make_user(balance=100.0)
    req = await withdrawal_service.create_withdrawal(str(user["_id"]), 40, "zelle", {"email": "a@b.c"})
    req_id = str(req["_id"])

    results = await asyncio.gather(
        withdrawal_service.approve_withdrawal(req_id, "admin-1"),
        withdrawal_service.reject_withdrawal(req_id, "admin-2", "Changed my mind"),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, dict)]
    assert len(winners) == 1
    assert sum(isinstance(r, AlreadyResolvedError) for r in results) == 1
    expected = 60.0 if winners[0]["status"] == "approved" else 100.0
    assert fake_db.users.get(user["_id"])["balance"] == expected
    assert fake_db.transactions.docs[0]["status"] == winners[0]["status"]
