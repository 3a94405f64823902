"""Wallet models: ledger entries, deposits, withdrawals, payout methods."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


# ---------- Transactions ----------

class TransactionType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"


class RequestStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class DepositMethod(str, Enum):
    pago_movil = "pago_movil"
    zelle = "zelle"
    binance = "binance"
    usdt = "usdt"


class PayoutMethodType(str, Enum):
    pago_movil = "pago_movil"
    zelle = "zelle"
    other = "other"


class TransactionInDB(BaseModel):
    """A balance-affecting request (deposit or withdrawal)."""
    user_id: str
    type: TransactionType
    amount: float  # always positive
    status: RequestStatus = RequestStatus.pending
    method: str
    reference: Optional[str] = None
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime


class WithdrawalRequestInDB(BaseModel):
    """Admin-facing projection of a withdrawal transaction."""
    user_id: str
    username: str
    amount: float
    method_type: PayoutMethodType
    method_details: dict[str, Any]
    status: RequestStatus = RequestStatus.pending
    transaction_id: str
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    requested_at: datetime


class DepositCreate(BaseModel):
    """Request body for reporting an external payment."""
    amount: float
    method: DepositMethod
    reference: str


class WithdrawalCreate(BaseModel):
    """Request body for a withdrawal.

    Either a saved payout method (method_id) or inline method_type + details.
    """
    amount: float
    method_id: Optional[str] = None
    method_type: Optional[PayoutMethodType] = None
    method_details: Optional[dict[str, Any]] = None


class RejectRequest(BaseModel):
    reason: str = ""


class TransactionResponse(BaseModel):
    id: str
    type: str
    amount: float
    status: str
    method: str
    reference: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime


class WithdrawalRequestResponse(BaseModel):
    id: str
    user_id: str
    username: str
    amount: float
    method_type: str
    method_details: dict[str, Any]
    status: str
    transaction_id: str
    requested_at: datetime


# ---------- Wallet ledger ----------

class LedgerEntryType(str, Enum):
    DEPOSIT_APPROVED = "DEPOSIT_APPROVED"
    WITHDRAWAL_RESERVED = "WITHDRAWAL_RESERVED"
    WITHDRAWAL_REFUNDED = "WITHDRAWAL_REFUNDED"
    BET_PLACED = "BET_PLACED"
    BET_WON = "BET_WON"
    BET_STAKE_REFUNDED = "BET_STAKE_REFUNDED"


class LedgerEntryInDB(BaseModel):
    """Immutable audit trail for every balance movement."""
    user_id: str
    type: LedgerEntryType
    amount: float  # positive = credit, negative = debit
    balance_after: float
    reference_type: Optional[str] = None  # "transaction" | "withdrawal_request" | "bet"
    reference_id: Optional[str] = None
    description: str
    created_at: datetime


class LedgerEntryResponse(BaseModel):
    id: str
    type: str
    amount: float
    balance_after: float
    description: str
    created_at: datetime


# ---------- Payout methods ----------

class PayoutMethodCreate(BaseModel):
    method_type: PayoutMethodType
    details: dict[str, Any]
    is_primary: bool = False


class PayoutMethodResponse(BaseModel):
    id: str
    method_type: str
    details: dict[str, Any]
    is_primary: bool
    created_at: datetime
