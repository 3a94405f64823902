from datetime import datetime

from pydantic import BaseModel, Field


class AuditLog(BaseModel):
    """Immutable audit log entry for admin and account actions.

    Insert-only. No updates or deletes permitted on this collection.
    """

    timestamp: datetime
    actor_id: str  # User-ID, admin username or "SYSTEM"
    target_id: str  # User-ID, Transaction-ID, Wager-ID, ...
    action: str  # e.g. "DEPOSIT_APPROVED", "WITHDRAWAL_PAYOUT_DUE"
    metadata: dict = Field(default_factory=dict)
    ip_truncated: str = ""  # e.g. "192.168.1.xxx"
