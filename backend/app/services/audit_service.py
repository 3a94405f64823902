"""Immutable audit logging for account and admin actions.

All audit entries are insert-only. This module exposes NO update or delete
operations on the audit_logs collection.
"""

import logging
from typing import Optional

from fastapi import Request

import app.database as _db
from app.models.audit import AuditLog
from app.utils import utcnow

logger = logging.getLogger("fortunabet.audit")


def truncate_ip(ip: str) -> str:
    """Anonymize an IP address by replacing the last segment.

    IPv4: 192.168.1.42  -> 192.168.1.xxx
    IPv6: 2001:db8::1   -> 2001:db8::xxx
    """
    if not ip:
        return ""
    if "." in ip:
        parts = ip.split(".")
        if len(parts) == 4:
            return ".".join(parts[:3] + ["xxx"])
        return ip
    if ":" in ip:
        head, _, _ = ip.rpartition(":")
        return f"{head}:xxx"
    return ip


def _client_ip(request: Optional[Request]) -> str:
    if request is None:
        return ""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


async def log_audit(
    *,
    actor_id: str,
    target_id: str,
    action: str,
    metadata: Optional[dict] = None,
    request: Optional[Request] = None,
) -> None:
    """Write an immutable audit record. Never raises."""
    entry = AuditLog(
        timestamp=utcnow(),
        actor_id=actor_id,
        target_id=target_id,
        action=action,
        metadata=metadata or {},
        ip_truncated=truncate_ip(_client_ip(request)),
    )
    try:
        await _db.db.audit_logs.insert_one(entry.model_dump())
    except Exception:
        # Audit logging must never crash the request
        logger.exception("Failed to write audit log: action=%s actor=%s", action, actor_id)
