import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, field_validator

USERNAME_PATTERN = re.compile(r"^[a-zA-Z]{4,20}$")
PHONE_PATTERN = re.compile(r"^\+58[0-9]{10,11}$")
_PASSWORD_SPECIALS = set("!@#$%^&*()_+-=[]{};':\"\\|,.<>/?")


class Role(str, Enum):
    user = "user"
    admin = "admin"


def check_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError("Password must be at least 8 characters long.")
    if not any(c.islower() for c in v):
        raise ValueError("Password must contain at least one lowercase letter.")
    if not any(c.isupper() for c in v):
        raise ValueError("Password must contain at least one uppercase letter.")
    if not any(c.isdigit() for c in v):
        raise ValueError("Password must contain at least one digit.")
    if not any(c in _PASSWORD_SPECIALS for c in v):
        raise ValueError("Password must contain at least one special character.")
    return v


class PersonalInfo(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[str] = None  # YYYY-MM-DD
    state: Optional[str] = None
    phone: Optional[str] = None
    phone_verified: bool = False


class UserInDB(BaseModel):
    """Full user document as stored in MongoDB."""
    username: str
    email: EmailStr
    hashed_password: str
    role: Role = Role.user
    balance: float = 0.0
    personal_info: PersonalInfo = PersonalInfo()
    is_verified: bool = False
    otp: Optional[str] = None
    otp_expires: Optional[datetime] = None
    password_change_code: Optional[str] = None
    password_change_code_expires: Optional[datetime] = None
    last_username_change: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class RegisterRequest(BaseModel):
    """Request body for registration."""
    username: str
    email: EmailStr
    password: str

    @field_validator("username")
    @classmethod
    def username_format(cls, v: str) -> str:
        if not USERNAME_PATTERN.match(v):
            raise ValueError("Username must be 4-20 letters without digits or spaces.")
        return v

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return check_password_strength(v)


class LoginRequest(BaseModel):
    """Login with username or e-mail."""
    identifier: str
    password: str


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    otp: str


class ResendOtpRequest(BaseModel):
    email: EmailStr


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Body of the link sent by forgot-password."""
    user_id: str
    token: str
    password: str

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return check_password_strength(v)


class PersonalInfoUpdate(BaseModel):
    """Request body for PUT /api/user/data."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[str] = None
    state: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def phone_format(cls, v: Optional[str]) -> Optional[str]:
        if v and not PHONE_PATTERN.match(v):
            raise ValueError("Invalid Venezuelan phone number (+58...).")
        return v or None


class ChangeUsernameRequest(BaseModel):
    new_username: str


class PhoneCodeRequest(BaseModel):
    code: str


class CurrentPasswordRequest(BaseModel):
    current_password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str
    code: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return check_password_strength(v)


class UserResponse(BaseModel):
    """User data returned to the client (never includes secrets)."""
    id: str
    username: str
    email: str
    role: str
    balance: float
    is_verified: bool
    personal_info: PersonalInfo
    last_username_change: Optional[datetime] = None
    created_at: datetime


def user_to_response(user: dict) -> UserResponse:
    info = dict(user.get("personal_info") or {})
    info.pop("phone_otp", None)
    info.pop("phone_otp_expires", None)
    return UserResponse(
        id=str(user["_id"]),
        username=user["username"],
        email=user["email"],
        role=user.get("role", Role.user.value),
        balance=user.get("balance", 0.0),
        is_verified=user.get("is_verified", False),
        personal_info=PersonalInfo(**info),
        last_username_change=user.get("last_username_change"),
        created_at=user["created_at"],
    )
