# routers/auth.py — Authentication endpoints with token revocation
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from activity import record_audit
from auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES, RESET_TOKEN_HOURS,
    AuthService, UserRegister, UserLogin, TokenResponse, RefreshRequest,
    get_current_user, CurrentUser, check_password_policy, user_token_claims,
)
from database import get_db_session
from email_service import (
    client_url, queue_password_reset_email, queue_verification_email, queue_welcome_email,
)
from models import User, UserRole, as_utc, utcnow

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


# --- Schemas ---

class VerifyEmailRequest(BaseModel):
    token: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return check_password_policy(v)


def _user_out(user_obj: User) -> dict:
    return {
        "id": user_obj.id,
        "email": user_obj.email,
        "name": user_obj.name or "",
        "first_name": user_obj.first_name,
        "last_name": user_obj.last_name,
        "avatar_url": user_obj.avatar_url,
        "role": user_obj.role.value if isinstance(user_obj.role, UserRole) else user_obj.role,
        "email_verified": bool(user_obj.email_verified),
    }


def _build_token_response(user_obj: User) -> TokenResponse:
    """Build token response from a user ORM instance"""
    claims = user_token_claims(user_obj)
    return TokenResponse(
        access_token=AuthService.create_access_token(claims),
        refresh_token=AuthService.create_refresh_token(claims),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=_user_out(user_obj),
    )


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    user_data: UserRegister,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a new user account and queue the verification + welcome emails"""
    user, verification_token = await AuthService.register_user(user_data, db)

    queue_verification_email(
        db, user.email, user.first_name or user.name,
        f"{client_url()}/verify-email?token={verification_token}",
    )
    queue_welcome_email(db, user.email, user.first_name or user.name)
    record_audit(db, "user.registered", user_id=user.id, resource_type="user",
                 resource_id=user.id, request=request)
    await db.commit()
    return _build_token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive tokens"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    record_audit(db, "user.login", user_id=user.id, resource_type="user",
                 resource_id=user.id, request=request)
    await db.commit()
    return _build_token_response(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    refresh_req: RefreshRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Refresh access token using a refresh token"""
    payload = AuthService.verify_token(refresh_req.refresh_token)

    if payload.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Invalid token type. Expected refresh token.")

    jti = payload.get("jti")
    if jti and await AuthService.is_token_revoked(jti, db):
        raise HTTPException(status_code=401, detail="Refresh token has been revoked")

    result = await db.execute(select(User).where(User.id == payload.get("sub")))
    user = result.scalar_one_or_none()

    if not user or not user.is_active or user.deleted_at is not None:
        raise HTTPException(status_code=401, detail="User not found or inactive")

    return _build_token_response(user)


@router.post("/logout")
async def logout(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Logout and revoke the presented access token"""
    if user.token_jti:
        expires_at = (
            datetime.fromtimestamp(user.token_exp, tz=timezone.utc) if user.token_exp else utcnow()
        )
        # revoke_token commits the audit row along with the revocation
        record_audit(db, "user.logout", user_id=user.id, resource_type="user",
                     resource_id=user.id, request=request)
        await AuthService.revoke_token(user.token_jti, user.id, expires_at, db)
    return {"status": "logged_out", "message": "Session terminated"}


@router.get("/me")
async def get_current_user_info(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Get current authenticated user information"""
    user_obj = await db.get(User, user.id)
    return _user_out(user_obj)


@router.post("/verify-email")
async def verify_email(
    body: VerifyEmailRequest,
    db: AsyncSession = Depends(get_db_session),
):
    token_hash = AuthService.hash_token(body.token)
    result = await db.execute(select(User).where(User.verification_token_hash == token_hash))
    user = result.scalar_one_or_none()

    if not user or not user.verification_expires_at or as_utc(user.verification_expires_at) < utcnow():
        raise HTTPException(status_code=400, detail="Invalid or expired verification token")

    user.email_verified = True
    user.verification_token_hash = None
    user.verification_expires_at = None
    await db.commit()
    return {"status": "verified", "message": "Email verified successfully"}


@router.post("/forgot-password")
async def forgot_password(
    body: ForgotPasswordRequest,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    """Always answers 200 so the endpoint cannot be used to probe for accounts"""
    email = body.email.lower().strip()
    result = await db.execute(select(User).where(User.email == email, User.deleted_at.is_(None)))
    user = result.scalar_one_or_none()

    if user and user.is_active:
        raw, token_hash, expires_at = AuthService.issue_email_token(RESET_TOKEN_HOURS)
        user.reset_token_hash = token_hash
        user.reset_expires_at = expires_at
        queue_password_reset_email(
            db, user.email, user.first_name or user.name,
            f"{client_url()}/reset-password?token={raw}",
        )
        record_audit(db, "user.password_reset_requested", user_id=user.id,
                     resource_type="user", resource_id=user.id, request=request)
        await db.commit()

    return {"message": "If an account exists for that email, a reset link has been sent"}


@router.post("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    token_hash = AuthService.hash_token(body.token)
    result = await db.execute(select(User).where(User.reset_token_hash == token_hash))
    user = result.scalar_one_or_none()

    if not user or not user.reset_expires_at or as_utc(user.reset_expires_at) < utcnow():
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")

    user.password_hash = AuthService.hash_password(body.password)
    user.reset_token_hash = None
    user.reset_expires_at = None
    record_audit(db, "user.password_reset", user_id=user.id, resource_type="user",
                 resource_id=user.id, request=request)
    await db.commit()
    return {"status": "password_reset", "message": "Password updated successfully"}
