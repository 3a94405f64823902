"""
backend/app/services/account_service.py

Purpose:
    Account self-service: personal data, username change with cooldown,
    phone verification by SMS code and saved payout methods.

Dependencies:
    - app.database
    - app.services.notification_service
"""

import logging
import re
import secrets
from datetime import timedelta
from typing import Any, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

import app.database as _db
from app.config import settings
from app.errors import ConflictError, CooldownError, NotFoundError, ValidationError
from app.models.user import PHONE_PATTERN, USERNAME_PATTERN
from app.models.wallet import PayoutMethodType
from app.services import notification_service
from app.utils import ensure_utc, is_adult, parse_birth_date, utcnow

logger = logging.getLogger("fortunabet.account_service")

NAME_MAX_LENGTH = 25
VENEZUELA_PREFIX = "+58"


# ---------- Personal data ----------

async def update_personal_info(user: dict, changes: dict[str, Any]) -> dict:
    """Apply a partial personal_info update. Changing the phone resets verification."""
    current = dict(user.get("personal_info") or {})
    update: dict[str, Any] = {}

    for field in ("first_name", "last_name"):
        if changes.get(field) is not None:
            value = changes[field].strip()
            if len(value) > NAME_MAX_LENGTH:
                raise ValidationError(f"{field.replace('_', ' ').capitalize()} is too long.")
            update[f"personal_info.{field}"] = value

    if changes.get("birth_date") is not None:
        birth = parse_birth_date(changes["birth_date"])
        if birth is None:
            raise ValidationError("Invalid date of birth. Format: YYYY-MM-DD.")
        if not is_adult(birth):
            raise ValidationError("You must be at least 18 years old.")
        update["personal_info.birth_date"] = birth.isoformat()

    if changes.get("state") is not None:
        update["personal_info.state"] = changes["state"].strip()

    phone = changes.get("phone")
    if phone is not None:
        if not PHONE_PATTERN.match(phone):
            raise ValidationError("Invalid Venezuelan phone number (+58...).")
        if phone != current.get("phone"):
            update["personal_info.phone"] = phone
            update["personal_info.phone_verified"] = False

    if not update:
        return user

    update["updated_at"] = utcnow()
    try:
        updated = await _db.db.users.find_one_and_update(
            {"_id": user["_id"]},
            {"$set": update},
            return_document=True,
        )
    except DuplicateKeyError:
        raise ConflictError("This phone number is already in use.")
    return updated


# ---------- Username ----------

async def change_username(user: dict, new_username: str) -> dict:
    new_username = (new_username or "").strip()
    if not USERNAME_PATTERN.match(new_username):
        raise ValidationError("Username must be 4-20 letters without digits or spaces.")
    if new_username == user["username"]:
        raise ValidationError("That is already your username.")

    last_change = user.get("last_username_change")
    if last_change:
        next_allowed = ensure_utc(last_change) + timedelta(days=settings.USERNAME_CHANGE_COOLDOWN_DAYS)
        if utcnow() < next_allowed:
            remaining = (next_allowed - utcnow()).days + 1
            raise CooldownError(f"You can change your username again in {remaining} day(s).")

    taken = await _db.db.users.find_one(
        {
            "_id": {"$ne": user["_id"]},
            "username": {"$regex": f"^{re.escape(new_username)}$", "$options": "i"},
        },
        {"_id": 1},
    )
    if taken:
        raise ConflictError("This username is already taken.")

    now = utcnow()
    try:
        updated = await _db.db.users.find_one_and_update(
            {"_id": user["_id"]},
            {"$set": {"username": new_username, "last_username_change": now, "updated_at": now}},
            return_document=True,
        )
    except DuplicateKeyError:
        raise ConflictError("This username is already taken.")

    logger.info("Username changed: %s -> %s", user["username"], new_username)
    return updated


# ---------- Phone verification ----------

async def request_phone_code(user: dict) -> None:
    phone = (user.get("personal_info") or {}).get("phone")
    if not phone:
        raise ValidationError("Add a phone number first.")
    if not phone.startswith(VENEZUELA_PREFIX):
        raise ValidationError("Only Venezuelan numbers (+58) can be verified.")

    code = notification_service.generate_otp()
    await _db.db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {
            "personal_info.phone_otp": code,
            "personal_info.phone_otp_expires": utcnow() + timedelta(minutes=settings.OTP_TTL_MINUTES),
        }},
    )
    await notification_service.send_sms_otp(phone, code)


async def verify_phone_code(user: dict, code: str) -> dict:
    info = user.get("personal_info") or {}
    stored = info.get("phone_otp")
    expires = info.get("phone_otp_expires")
    code = (code or "").strip()

    if not stored or not expires:
        raise ValidationError("Request a verification code first.")
    if ensure_utc(expires) < utcnow():
        raise ValidationError("The verification code has expired.")
    if not secrets.compare_digest(str(stored), code):
        raise ValidationError("Invalid verification code.")

    return await _db.db.users.find_one_and_update(
        {"_id": user["_id"]},
        {
            "$set": {"personal_info.phone_verified": True, "updated_at": utcnow()},
            "$unset": {"personal_info.phone_otp": "", "personal_info.phone_otp_expires": ""},
        },
        return_document=True,
    )


# ---------- Payout methods ----------

async def list_payout_methods(user_id: str) -> list[dict]:
    """Saved payout methods, primary first."""
    return await _db.db.payout_methods.find(
        {"user_id": user_id},
    ).sort([("is_primary", -1), ("created_at", -1)]).to_list(length=50)


async def add_payout_method(
    user_id: str, method_type: str, details: dict[str, Any], is_primary: bool = False,
) -> dict:
    if method_type not in {m.value for m in PayoutMethodType}:
        raise ValidationError("Unsupported payout method.")
    if not details:
        raise ValidationError("Payout details are required.")

    # The first method saved is primary.
    if not is_primary:
        is_primary = await _db.db.payout_methods.count_documents({"user_id": user_id}) == 0
    if is_primary:
        await _db.db.payout_methods.update_many(
            {"user_id": user_id, "is_primary": True},
            {"$set": {"is_primary": False}},
        )

    doc = {
        "user_id": user_id,
        "method_type": method_type,
        "details": details,
        "is_primary": is_primary,
        "created_at": utcnow(),
    }
    result = await _db.db.payout_methods.insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


async def get_payout_method(user_id: str, method_id: str) -> dict:
    doc = await _db.db.payout_methods.find_one({"_id": ObjectId(method_id), "user_id": user_id})
    if not doc:
        raise NotFoundError("Payout method not found.")
    return doc


async def set_primary_payout_method(user_id: str, method_id: str) -> dict:
    method = await get_payout_method(user_id, method_id)
    await _db.db.payout_methods.update_many(
        {"user_id": user_id, "is_primary": True},
        {"$set": {"is_primary": False}},
    )
    await _db.db.payout_methods.update_one({"_id": method["_id"]}, {"$set": {"is_primary": True}})
    method["is_primary"] = True
    return method


async def delete_payout_method(user_id: str, method_id: str) -> None:
    result = await _db.db.payout_methods.delete_one({"_id": ObjectId(method_id), "user_id": user_id})
    if not result.deleted_count:
        raise NotFoundError("Payout method not found.")


async def resolve_payout_target(
    user_id: str,
    method_id: Optional[str],
    method_type: Optional[str],
    method_details: Optional[dict[str, Any]],
) -> tuple[str, dict[str, Any]]:
    """Pick the payout destination for a withdrawal: saved method or inline details."""
    if method_id:
        method = await get_payout_method(user_id, method_id)
        return method["method_type"], method["details"]
    if method_type and method_details:
        return method_type, method_details
    raise ValidationError("Choose a saved payout method or provide payout details.")
