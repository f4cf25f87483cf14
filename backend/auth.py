# auth.py — Authentication for Todoria
# Features:
# - JWT access/refresh tokens with JTI for revocation
# - Platform roles (admin, member); workspace roles live in workspace_access.py
# - Password policy enforcement (8+ chars, upper, lower, digit)
# - Brute force protection
# - Single-use hashed tokens for email verification and password reset

import os
import uuid
import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple
from collections import defaultdict

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import User, UserRole, RevokedToken, utcnow

logger = logging.getLogger("todoria.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
MAX_LOGIN_ATTEMPTS = 5
LOGIN_LOCKOUT_MINUTES = 15
VERIFICATION_TOKEN_HOURS = 24
RESET_TOKEN_HOURS = 1

security = HTTPBearer()

# In-memory brute force tracker (per process)
_login_attempts: Dict[str, list] = defaultdict(list)


def check_password_policy(v: str) -> str:
    if len(v) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(v) > MAX_PASSWORD_LENGTH:
        raise ValueError(f"Password must be {MAX_PASSWORD_LENGTH} characters or less")
    if not any(c.isupper() for c in v):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in v):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in v):
        raise ValueError("Password must contain at least one digit")
    return v


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(..., min_length=1, max_length=100)
    tos_accepted: bool = False

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return check_password_policy(v)


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


class CurrentUser(BaseModel):
    id: str
    email: str
    name: str
    role: str
    is_active: bool
    email_verified: bool = False
    token_jti: Optional[str] = None
    token_exp: Optional[int] = None

    @property
    def is_platform_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


class RefreshRequest(BaseModel):
    refresh_token: str


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Account, password and token operations"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def _create_token(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + expires_delta,
            "iat": now,
            "type": token_type,
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        delta = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        return AuthService._create_token(data, "access", delta)

    @staticmethod
    def create_refresh_token(data: Dict[str, Any]) -> str:
        return AuthService._create_token(data, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    def _check_brute_force(email: str) -> None:
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=LOGIN_LOCKOUT_MINUTES)
        _login_attempts[email] = [t for t in _login_attempts[email] if t > cutoff]
        if len(_login_attempts[email]) >= MAX_LOGIN_ATTEMPTS:
            raise HTTPException(
                status_code=429,
                detail=f"Too many login attempts. Try again in {LOGIN_LOCKOUT_MINUTES} minutes.",
            )

    @staticmethod
    def _record_failed_attempt(email: str) -> None:
        _login_attempts[email].append(datetime.now(timezone.utc))

    @staticmethod
    def _clear_attempts(email: str) -> None:
        _login_attempts.pop(email, None)

    @staticmethod
    def hash_token(raw_token: str) -> str:
        return hashlib.sha256(raw_token.encode()).hexdigest()

    @staticmethod
    def issue_email_token(hours: int) -> Tuple[str, str, datetime]:
        """Returns (raw_token, token_hash, expires_at). Only the hash is stored."""
        raw = secrets.token_hex(32)
        return raw, AuthService.hash_token(raw), utcnow() + timedelta(hours=hours)

    @staticmethod
    async def register_user(user_data: UserRegister, db: AsyncSession) -> Tuple[User, str]:
        """Create the account. Returns (user, raw verification token)."""
        if not user_data.tos_accepted:
            raise HTTPException(status_code=400, detail="You must accept the Terms of Service")

        email = user_data.email.lower().strip()
        result = await db.execute(select(User).where(User.email == email))
        if result.scalar_one_or_none():
            raise HTTPException(status_code=409, detail="An account with this email already exists")

        raw_token, token_hash, expires_at = AuthService.issue_email_token(VERIFICATION_TOKEN_HOURS)
        now = utcnow()
        name = user_data.name.strip()
        first, _, last = name.partition(" ")
        new_user = User(
            email=email,
            name=name,
            first_name=first or None,
            last_name=last or None,
            password_hash=AuthService.hash_password(user_data.password),
            role=UserRole.MEMBER,
            verification_token_hash=token_hash,
            verification_expires_at=expires_at,
            tos_accepted_at=now,
            is_active=True,
        )
        db.add(new_user)
        await db.commit()
        await db.refresh(new_user)
        return new_user, raw_token

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
        email = email.lower().strip()
        AuthService._check_brute_force(email)

        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if not user or not AuthService.verify_password(password, user.password_hash):
            AuthService._record_failed_attempt(email)
            return None

        if not user.is_active or user.deleted_at is not None:
            return None

        AuthService._clear_attempts(email)
        user.last_login_at = utcnow()
        await db.commit()
        return user

    @staticmethod
    async def is_token_revoked(jti: str, db: AsyncSession) -> bool:
        result = await db.execute(select(RevokedToken).where(RevokedToken.jti == jti))
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def revoke_token(jti: str, user_id: str, expires_at: datetime, db: AsyncSession) -> None:
        db.add(RevokedToken(jti=jti, user_id=user_id, expires_at=expires_at))
        await db.commit()


def user_token_claims(user: User) -> Dict[str, Any]:
    return {
        "sub": user.id,
        "email": user.email,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
    }


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    payload = AuthService.verify_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    jti = payload.get("jti")
    if jti and await AuthService.is_token_revoked(jti, db):
        raise HTTPException(status_code=401, detail="Token has been revoked")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user or not user.is_active or user.deleted_at is not None:
        raise HTTPException(status_code=401, detail="User not found or inactive")

    return CurrentUser(
        id=user.id,
        email=user.email,
        name=user.name or "",
        role=user.role.value if isinstance(user.role, UserRole) else user.role,
        is_active=user.is_active,
        email_verified=bool(user.email_verified),
        token_jti=jti,
        token_exp=payload.get("exp"),
    )


def require_role(*roles: UserRole):
    """Dependency factory: require user to have one of the specified platform roles"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if UserRole(user.role) not in roles:
            raise HTTPException(status_code=403, detail="Insufficient role privileges")
        return user
    return _check


require_platform_admin = require_role(UserRole.ADMIN)


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None or request.client is None:
        return None
    return request.client.host
