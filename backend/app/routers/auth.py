import logging

from fastapi import APIRouter, Depends, Request, Response, status

from app.models.user import (
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResendOtpRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
    user_to_response,
)
from app.services import auth_service, betting_slip_service
from app.services.audit_service import log_audit
from app.services.auth_service import get_current_user

logger = logging.getLogger("fortunabet.auth")
router = APIRouter(prefix="/api/auth", tags=["auth"])


def _session_payload(user: dict, response: Response) -> dict:
    token = auth_service.create_access_token(user)
    auth_service.set_auth_cookie(response, token)
    return {"access_token": token, "token_type": "bearer", "user": user_to_response(user)}


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, request: Request):
    """Create an account. A verification code is sent to the e-mail address."""
    user = await auth_service.register_user(body.username, body.email, body.password)
    await log_audit(
        actor_id=str(user["_id"]),
        target_id=str(user["_id"]),
        action="USER_REGISTERED",
        request=request,
    )
    return {"message": "Registration successful. Check your e-mail for the verification code."}


@router.post("/verify-email")
async def verify_email(body: VerifyEmailRequest, request: Request, response: Response):
    user = await auth_service.verify_email(body.email, body.otp)
    await log_audit(
        actor_id=str(user["_id"]),
        target_id=str(user["_id"]),
        action="EMAIL_VERIFIED",
        request=request,
    )
    return _session_payload(user, response)


@router.post("/resend-otp")
async def resend_otp(body: ResendOtpRequest):
    await auth_service.resend_otp(body.email)
    return {"message": "A new verification code has been sent."}


@router.post("/login")
async def login(body: LoginRequest, request: Request, response: Response):
    """Log in with username or e-mail."""
    user = await auth_service.authenticate(body.identifier, body.password)
    await log_audit(
        actor_id=str(user["_id"]),
        target_id=str(user["_id"]),
        action="LOGIN",
        request=request,
    )
    logger.info("User logged in: %s", user["username"])
    return _session_payload(user, response)


@router.post("/logout")
async def logout(request: Request, response: Response):
    """Revoke the current access token and drop the draft slip."""
    token = auth_service.extract_token(request)
    if token:
        try:
            payload = auth_service.decode_jwt(token)
        except auth_service.JWTError:
            payload = {}
        if payload.get("sub"):
            await betting_slip_service.discard_draft(payload["sub"])
    await auth_service.logout(token)
    auth_service.clear_auth_cookie(response)
    return {"message": "Logged out."}


@router.post("/forgot-password")
async def forgot_password(body: ForgotPasswordRequest):
    """Send a password reset link. The reply never reveals whether the account exists."""
    await auth_service.request_password_reset(body.email)
    return {"message": "If the e-mail is registered, a reset link has been sent."}


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest, request: Request):
    user = await auth_service.reset_password(body.user_id, body.token, body.password)
    await log_audit(
        actor_id=str(user["_id"]),
        target_id=str(user["_id"]),
        action="PASSWORD_RESET",
        request=request,
    )
    return {"message": "Password updated. You can now log in."}

@router.get("/me")
async def me(user=Depends(get_current_user)):
    return user_to_response(user)
