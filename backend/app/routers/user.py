import logging

from fastapi import APIRouter, Depends, Query, Request, status

from app.models.betting_slip import wager_to_response
from app.models.user import (
    ChangePasswordRequest,
    ChangeUsernameRequest,
    CurrentPasswordRequest,
    PersonalInfoUpdate,
    PhoneCodeRequest,
    user_to_response,
)
from app.models.wallet import (
    DepositCreate,
    LedgerEntryResponse,
    PayoutMethodCreate,
    PayoutMethodResponse,
    TransactionResponse,
    WithdrawalCreate,
)
from app.services import account_service, auth_service, deposit_service, wager_service, wallet_service, withdrawal_service
from app.services.audit_service import log_audit
from app.services.auth_service import get_current_user

import app.database as _db

logger = logging.getLogger("fortunabet.user")
router = APIRouter(prefix="/api/user", tags=["user"])


def _payout_method_response(doc: dict) -> PayoutMethodResponse:
    return PayoutMethodResponse(
        id=str(doc["_id"]),
        method_type=doc["method_type"],
        details=doc["details"],
        is_primary=doc.get("is_primary", False),
        created_at=doc["created_at"],
    )


# ---------- Profile ----------

@router.get("/data")
async def get_user_data(user=Depends(get_current_user)):
    return user_to_response(user)


@router.put("/data")
async def update_user_data(
    body: PersonalInfoUpdate,
    request: Request,
    user=Depends(get_current_user),
):
    """Update personal data. Changing the phone number resets its verification."""
    updated = await account_service.update_personal_info(user, body.model_dump(exclude_unset=True))
    await log_audit(
        actor_id=str(user["_id"]),
        target_id=str(user["_id"]),
        action="PERSONAL_INFO_UPDATED",
        metadata={"fields": sorted(body.model_dump(exclude_unset=True))},
        request=request,
    )
    return user_to_response(updated)


@router.post("/change-username")
async def change_username(
    body: ChangeUsernameRequest,
    request: Request,
    user=Depends(get_current_user),
):
    updated = await account_service.change_username(user, body.new_username)
    await log_audit(
        actor_id=str(user["_id"]),
        target_id=str(user["_id"]),
        action="USERNAME_CHANGED",
        metadata={"old": user["username"], "new": updated["username"]},
        request=request,
    )
    return user_to_response(updated)


@router.post("/phone/request-code")
async def request_phone_code(user=Depends(get_current_user)):
    await account_service.request_phone_code(user)
    return {"message": "Verification code sent."}


@router.post("/phone/verify")
async def verify_phone(body: PhoneCodeRequest, user=Depends(get_current_user)):
    updated = await account_service.verify_phone_code(user, body.code)
    return user_to_response(updated)


@router.post("/validate-current-password")
async def validate_current_password(body: CurrentPasswordRequest, user=Depends(get_current_user)):
    auth_service.verify_current_password(user, body.current_password)
    return {"valid": True}


@router.post("/request-password-change-code")
async def request_password_change_code(user=Depends(get_current_user)):
    await auth_service.request_password_change_code(user)
    return {"message": "Verification code sent to your e-mail."}


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    user=Depends(get_current_user),
):
    await auth_service.change_password(user, body.current_password, body.new_password, body.code)
    await log_audit(
        actor_id=str(user["_id"]),
        target_id=str(user["_id"]),
        action="PASSWORD_CHANGED",
        request=request,
    )
    return {"message": "Password changed."}


# ---------- Payout methods ----------

@router.get("/payout-methods")
async def list_payout_methods(user=Depends(get_current_user)):
    methods = await account_service.list_payout_methods(str(user["_id"]))
    return [_payout_method_response(m) for m in methods]


@router.post("/payout-methods", status_code=status.HTTP_201_CREATED)
async def add_payout_method(body: PayoutMethodCreate, user=Depends(get_current_user)):
    doc = await account_service.add_payout_method(
        str(user["_id"]), body.method_type.value, body.details, body.is_primary,
    )
    return _payout_method_response(doc)


@router.post("/payout-methods/{method_id}/primary")
async def set_primary_payout_method(method_id: str, user=Depends(get_current_user)):
    doc = await account_service.set_primary_payout_method(str(user["_id"]), method_id)
    return _payout_method_response(doc)


@router.delete("/payout-methods/{method_id}")
async def delete_payout_method(method_id: str, user=Depends(get_current_user)):
    await account_service.delete_payout_method(str(user["_id"]), method_id)
    return {"message": "Payout method removed."}


# ---------- Wallet ----------

@router.post("/request-deposit", status_code=status.HTTP_201_CREATED)
async def request_deposit(body: DepositCreate, user=Depends(get_current_user)):
    """Report an external payment for admin review."""
    tx = await deposit_service.create_deposit(
        str(user["_id"]), body.amount, body.method.value, body.reference,
    )
    return {"message": "Deposit reported. It will be credited once reviewed.", "id": str(tx["_id"])}


@router.post("/withdraw", status_code=status.HTTP_201_CREATED)
async def request_withdrawal(body: WithdrawalCreate, user=Depends(get_current_user)):
    """Request a payout. The amount is reserved immediately."""
    user_id = str(user["_id"])
    method_type, details = await account_service.resolve_payout_target(
        user_id,
        body.method_id,
        body.method_type.value if body.method_type else None,
        body.method_details,
    )
    req = await withdrawal_service.create_withdrawal(user_id, body.amount, method_type, details)
    return {"message": "Withdrawal requested.", "id": str(req["_id"])}


@router.get("/transactions")
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    user=Depends(get_current_user),
):
    rows = await _db.db.transactions.find(
        {"user_id": str(user["_id"])},
    ).sort("created_at", -1).limit(limit).to_list(length=limit)
    return [
        TransactionResponse(
            id=str(t["_id"]),
            type=t["type"],
            amount=t["amount"],
            status=t["status"],
            method=t.get("method", ""),
            reference=t.get("reference"),
            rejection_reason=t.get("rejection_reason"),
            created_at=t["created_at"],
        )
        for t in rows
    ]


@router.get("/bets")
async def list_bets(
    limit: int = Query(50, ge=1, le=200),
    user=Depends(get_current_user),
):
    wagers = await wager_service.list_user_wagers(str(user["_id"]), limit=limit)
    return [wager_to_response(w) for w in wagers]


@router.get("/ledger")
async def list_ledger(
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    user=Depends(get_current_user),
):
    entries = await wallet_service.get_ledger(str(user["_id"]), limit=limit, skip=skip)
    return [
        LedgerEntryResponse(
            id=str(e["_id"]),
            type=e["type"],
            amount=e["amount"],
            balance_after=e["balance_after"],
            description=e["description"],
            created_at=e["created_at"],
        )
        for e in entries
    ]
