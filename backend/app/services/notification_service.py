"""
backend/app/services/notification_service.py

Purpose:
    Outbound one-time codes (e-mail verification, phone verification,
    password change) and password-reset links. Delivery providers are not
    wired in; the sink logs the message so operators can relay it in
    development.
"""

import logging
import secrets
from urllib.parse import urlencode

from app.config import settings

logger = logging.getLogger("fortunabet.notifications")


def generate_otp() -> str:
    """Six-digit numeric code."""
    return f"{secrets.randbelow(1_000_000):06d}"


async def send_email_otp(email: str, otp: str) -> None:
    logger.info("E-mail verification code for %s: %s", email, otp)


async def send_sms_otp(phone: str, otp: str) -> None:
    logger.info("SMS verification code for %s: %s", phone, otp)


async def send_password_change_code(email: str, code: str) -> None:
    logger.info("Password change code for %s: %s", email, code)


def password_reset_link(user_id: str, token: str) -> str:
    query = urlencode({"action": "reset", "id": user_id, "token": token})
    return f"{settings.FRONTEND_URL.rstrip('/')}/index.html?{query}"


async def send_password_reset(email: str, user_id: str, token: str) -> None:
    logger.info("Password reset link for %s: %s", email, password_reset_link(user_id, token))
