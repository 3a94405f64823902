"""
backend/app/services/auth_service.py

Purpose:
    Password hashing, JWT session tokens, the access-token blocklist,
    registration/verification/login flows and the FastAPI auth dependencies.

Dependencies:
    - argon2-cffi
    - PyJWT
    - app.database
    - app.services.notification_service
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request, Response
import jwt
from jwt.exceptions import InvalidTokenError as JWTError
from pymongo.errors import DuplicateKeyError

from app.config import settings
import app.database as _db
from app.database import get_db
from app.errors import AuthorizationError, AuthRequiredError, ConflictError, NotFoundError, ValidationError
from app.models.user import Role
from app.services import notification_service
from app.utils import ensure_utc, utcnow

logger = logging.getLogger("fortunabet.auth")
ph = PasswordHasher()

ALGORITHM = "HS256"


@dataclass(frozen=True)
class AuthSession:
    """Identity carried by a validated access token."""
    user_id: str
    username: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin.value


def authorize(session: Optional[AuthSession], required_role: Optional[str] = None) -> AuthSession:
    """Check a session against a required role. Pure; raises on failure."""
    if session is None:
        raise AuthRequiredError()
    if required_role and session.role != required_role:
        raise AuthorizationError("Insufficient permissions.")
    return session


def decode_jwt(token: str) -> dict:
    """Decode a JWT, trying the current secret first, then the old one.

    Rotation: set JWT_SECRET to the new value and JWT_SECRET_OLD to the
    previous one; remove JWT_SECRET_OLD once old tokens have expired.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        if settings.JWT_SECRET_OLD:
            return jwt.decode(token, settings.JWT_SECRET_OLD, algorithms=[ALGORITHM])
        raise


def hash_password(password: str) -> str:
    return ph.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return ph.verify(hashed, password)
    except VerifyMismatchError:
        return False


def create_access_token(user: dict) -> str:
    expire = utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(user["_id"]),
        "username": user["username"],
        "role": user.get("role", Role.user.value),
        "exp": expire,
        "type": "access",
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


async def blocklist_access_token(jti: str, expires_at: datetime) -> None:
    """Add an access token JTI to the blocklist until it expires."""
    try:
        await _db.db.access_blocklist.insert_one({"jti": jti, "expires_at": expires_at})
    except DuplicateKeyError:
        pass


def set_auth_cookie(response: Response, access_token: str) -> None:
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie("access_token", path="/")


def extract_token(request: Request) -> Optional[str]:
    """Access token from the cookie, else from an Authorization: Bearer header."""
    token = request.cookies.get("access_token")
    if token:
        return token
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


# ---------- Flows ----------

async def register_user(username: str, email: str, password: str) -> dict:
    """Create an unverified user and send the e-mail OTP."""
    email = email.lower()
    if await _db.db.users.find_one({"email": email}, {"_id": 1}):
        raise ConflictError("This e-mail address is already registered.")
    pattern = f"^{re.escape(username)}$"
    if await _db.db.users.find_one({"username": {"$regex": pattern, "$options": "i"}}, {"_id": 1}):
        raise ConflictError("This username is already taken.")

    now = utcnow()
    otp = notification_service.generate_otp()
    doc = {
        "username": username,
        "email": email,
        "hashed_password": hash_password(password),
        "role": Role.user.value,
        "balance": 0.0,
        "personal_info": {"phone_verified": False},
        "is_verified": False,
        "otp": otp,
        "otp_expires": now + timedelta(minutes=settings.OTP_TTL_MINUTES),
        "last_username_change": None,
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = await _db.db.users.insert_one(doc)
    except DuplicateKeyError:
        raise ConflictError("Username or e-mail already registered.")
    doc["_id"] = result.inserted_id

    await notification_service.send_email_otp(email, otp)
    logger.info("User registered: %s (%s)", username, result.inserted_id)
    return doc


async def verify_email(email: str, otp: str) -> dict:
    """Mark the account verified when the OTP matches and has not expired."""
    user = await _db.db.users.find_one({"email": email.lower()})
    if not user:
        raise NotFoundError("User not found.")
    if user.get("is_verified"):
        return user

    expires = user.get("otp_expires")
    if not user.get("otp") or not secrets.compare_digest(str(user["otp"]), str(otp).strip()):
        raise ValidationError("Invalid verification code.")
    if not expires or ensure_utc(expires) < utcnow():
        raise ValidationError("The verification code has expired.")

    user = await _db.db.users.find_one_and_update(
        {"_id": user["_id"]},
        {"$set": {"is_verified": True, "updated_at": utcnow()}, "$unset": {"otp": "", "otp_expires": ""}},
        return_document=True,
    )
    logger.info("E-mail verified: %s", user["username"])
    return user


async def issue_otp(user: dict) -> None:
    """Store and send a fresh e-mail OTP."""
    otp = notification_service.generate_otp()
    await _db.db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"otp": otp, "otp_expires": utcnow() + timedelta(minutes=settings.OTP_TTL_MINUTES)}},
    )
    await notification_service.send_email_otp(user["email"], otp)


async def resend_otp(email: str) -> None:
    user = await _db.db.users.find_one({"email": email.lower()})
    if not user:
        raise NotFoundError("User not found.")
    if user.get("is_verified"):
        raise ValidationError("This account is already verified.")
    await issue_otp(user)


async def authenticate(identifier: str, password: str) -> dict:
    """Look up by username (case-insensitive) or e-mail and check the password.

    Unverified accounts receive a fresh OTP and are refused.
    """
    identifier = identifier.strip()
    if "@" in identifier:
        query = {"email": identifier.lower()}
    else:
        query = {"username": {"$regex": f"^{re.escape(identifier)}$", "$options": "i"}}
    user = await _db.db.users.find_one(query)
    if not user or not verify_password(password, user["hashed_password"]):
        raise AuthRequiredError("Invalid credentials.")

    if not user.get("is_verified"):
        await issue_otp(user)
        raise AuthorizationError("Please verify your e-mail. A new code has been sent.")
    return user


async def logout(token: Optional[str]) -> None:
    """Blocklist the token's jti until its natural expiry."""
    if not token:
        return
    try:
        payload = decode_jwt(token)
    except JWTError:
        return
    jti = payload.get("jti")
    if jti:
        await blocklist_access_token(jti, datetime.fromtimestamp(payload["exp"], tz=timezone.utc))


# ---------- Password reset and change ----------

def _reset_secret(user: dict) -> str:
    # Keyed on the stored hash, so a reset link dies once the password changes.
    return settings.JWT_SECRET + user["hashed_password"]


def create_password_reset_token(user: dict) -> str:
    expire = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_TTL_MINUTES)
    payload = {
        "sub": str(user["_id"]),
        "email": user["email"],
        "exp": expire,
        "type": "password_reset",
    }
    return jwt.encode(payload, _reset_secret(user), algorithm=ALGORITHM)


async def request_password_reset(email: str) -> None:
    """Send a reset link when the account exists. Silent otherwise."""
    user = await _db.db.users.find_one({"email": email.lower()})
    if not user:
        logger.info("Password reset requested for unknown e-mail")
        return
    token = create_password_reset_token(user)
    await notification_service.send_password_reset(user["email"], str(user["_id"]), token)
    logger.info("Password reset link issued for %s", user["username"])


async def reset_password(user_id: str, token: str, new_password: str) -> dict:
    """Set a new password from a reset link."""
    invalid = ValidationError("The reset link is invalid or has expired.")
    try:
        oid = ObjectId(user_id)
    except (InvalidId, TypeError):
        raise invalid
    user = await _db.db.users.find_one({"_id": oid})
    if not user:
        raise invalid
    try:
        payload = jwt.decode(token, _reset_secret(user), algorithms=[ALGORITHM])
    except JWTError:
        raise invalid
    if payload.get("type") != "password_reset" or payload.get("sub") != str(oid):
        raise invalid

    user = await _db.db.users.find_one_and_update(
        {"_id": oid},
        {"$set": {"hashed_password": hash_password(new_password), "updated_at": utcnow()}},
        return_document=True,
    )
    logger.info("Password reset: %s", user["username"])
    return user


def verify_current_password(user: dict, password: str) -> None:
    if not verify_password(password, user["hashed_password"]):
        raise AuthRequiredError("Current password is incorrect.")


async def request_password_change_code(user: dict) -> None:
    """Store and e-mail a six-digit code confirming a password change."""
    code = notification_service.generate_otp()
    await _db.db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {
            "password_change_code": code,
            "password_change_code_expires": utcnow() + timedelta(minutes=settings.OTP_TTL_MINUTES),
        }},
    )
    await notification_service.send_password_change_code(user["email"], code)


async def change_password(user: dict, current_password: str, new_password: str, code: str) -> dict:
    """Change the password of a logged-in user.

    A wrong or expired code burns the stored code; the user must request
    a new one.
    """
    stored = user.get("password_change_code")
    expires = user.get("password_change_code_expires")
    code_ok = bool(stored) and secrets.compare_digest(str(stored), str(code).strip())
    if not code_ok or not expires or ensure_utc(expires) < utcnow():
        await _db.db.users.update_one(
            {"_id": user["_id"]},
            {"$unset": {"password_change_code": "", "password_change_code_expires": ""}},
        )
        raise ValidationError("Invalid or expired verification code.")

    verify_current_password(user, current_password)
    if verify_password(new_password, user["hashed_password"]):
        raise ValidationError("The new password must differ from the current one.")

    user = await _db.db.users.find_one_and_update(
        {"_id": user["_id"]},
        {
            "$set": {"hashed_password": hash_password(new_password), "updated_at": utcnow()},
            "$unset": {"password_change_code": "", "password_change_code_expires": ""},
        },
        return_document=True,
    )
    logger.info("Password changed: %s", user["username"])
    return user


# ---------- FastAPI dependencies ----------

async def get_current_user(request: Request, db=Depends(get_db)) -> dict:
    """FastAPI dependency: the verified user behind the access token."""
    token = extract_token(request)
    if not token:
        raise AuthRequiredError("Not logged in.")

    try:
        payload = decode_jwt(token)
    except JWTError:
        raise AuthRequiredError("Invalid token.")

    if payload.get("type") != "access":
        raise AuthRequiredError("Invalid token type.")

    jti = payload.get("jti")
    if jti:
        blocked = await db.access_blocklist.find_one({"jti": jti}, {"_id": 1})
        if blocked:
            raise AuthRequiredError("Token revoked.")

    try:
        user = await db.users.find_one({"_id": ObjectId(payload.get("sub"))})
    except (InvalidId, TypeError):
        raise AuthRequiredError("Invalid token.")
    if not user:
        raise AuthRequiredError("User not found.")
    if not user.get("is_verified"):
        raise AuthorizationError("E-mail address not verified.")

    return user


def session_for(user: dict) -> AuthSession:
    return AuthSession(
        user_id=str(user["_id"]),
        username=user["username"],
        role=user.get("role", Role.user.value),
    )


async def get_session(user=Depends(get_current_user)) -> AuthSession:
    return session_for(user)


async def get_admin_user(request: Request, db=Depends(get_db)) -> dict:
    """FastAPI dependency: requires an authenticated admin user."""
    user = await get_current_user(request, db)
    authorize(session_for(user), Role.admin.value)
    return user
