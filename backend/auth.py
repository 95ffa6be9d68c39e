# auth.py — Identity provider for the Planets backend
# Features:
# - JWT access/refresh tokens with JTI for revocation
# - Global roles (user, admin); admin bypasses planet membership checks
# - Password policy enforcement (min 12 chars)
# - Brute force protection on login
# - Optional admin account bootstrap from the environment

import os
import uuid
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
from collections import defaultdict

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import User, RevokedToken, GlobalRole
from schemas import CamelModel

logger = logging.getLogger("planets.auth")

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
MIN_PASSWORD_LENGTH = 12
MAX_PASSWORD_BYTES = 72  # bcrypt input limit
MAX_LOGIN_ATTEMPTS = 5
LOGIN_LOCKOUT_MINUTES = 15

security = HTTPBearer()

# In-memory brute force tracker (use Redis in production)
_login_attempts: Dict[str, list] = defaultdict(list)


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(CamelModel):
    first_name: str = Field(..., min_length=1, max_length=19)
    last_name: str = Field(..., min_length=1, max_length=19)
    username: str = Field(..., min_length=1, max_length=9)
    email: EmailStr
    password: str

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return check_password_policy(v)


class UserLogin(BaseModel):
    email: str  # email address or username
    password: str


class TokenResponse(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


class CurrentUser(BaseModel):
    id: str
    email: str
    username: str
    role: str
    jti: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == GlobalRole.ADMIN.value


class RefreshRequest(CamelModel):
    refresh_token: str


def check_password_policy(password: str) -> str:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    if not any(c.isupper() for c in password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.isdigit() for c in password):
        raise ValueError("Password must contain at least one digit")
    return password


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Password hashing, token issuance and account lookup"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            return False
        return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))

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
    def token_claims(user: User) -> Dict[str, Any]:
        return {
            "sub": user.id,
            "email": user.email,
            "role": user.role.value if isinstance(user.role, GlobalRole) else user.role,
        }

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
            return payload
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    def _check_brute_force(identifier: str) -> None:
        """Check if login attempts exceed threshold"""
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=LOGIN_LOCKOUT_MINUTES)
        _login_attempts[identifier] = [t for t in _login_attempts[identifier] if t > cutoff]
        if len(_login_attempts[identifier]) >= MAX_LOGIN_ATTEMPTS:
            raise HTTPException(
                status_code=429,
                detail=f"Too many login attempts. Try again in {LOGIN_LOCKOUT_MINUTES} minutes.",
            )

    @staticmethod
    def _record_failed_attempt(identifier: str) -> None:
        _login_attempts[identifier].append(datetime.now(timezone.utc))

    @staticmethod
    def _clear_attempts(identifier: str) -> None:
        _login_attempts.pop(identifier, None)

    @staticmethod
    async def ensure_unique_identity(
        db: AsyncSession, email: Optional[str], username: Optional[str], exclude_user_id: Optional[str] = None,
    ) -> None:
        """Raise 409 when the email or username belongs to another account"""
        if email:
            stmt = select(User.id).where(User.email == email.lower())
            if exclude_user_id:
                stmt = stmt.where(User.id != exclude_user_id)
            if (await db.execute(stmt)).first():
                raise HTTPException(status_code=409, detail=f"Email {email} is taken.")
        if username:
            stmt = select(User.id).where(User.username == username)
            if exclude_user_id:
                stmt = stmt.where(User.id != exclude_user_id)
            if (await db.execute(stmt)).first():
                raise HTTPException(status_code=409, detail=f"Username {username} is taken.")

    @staticmethod
    async def register_user(user_data: UserRegister, db: AsyncSession) -> User:
        await AuthService.ensure_unique_identity(db, user_data.email, user_data.username)

        new_user = User(
            username=user_data.username,
            email=user_data.email,
            first_name=user_data.first_name,
            last_name=user_data.last_name,
            password_hash=AuthService.hash_password(user_data.password),
            role=GlobalRole.USER,
        )
        db.add(new_user)
        await db.commit()
        await db.refresh(new_user)

        logger.info(f"Registered user {new_user.id} ({new_user.username})")
        return new_user

    @staticmethod
    async def authenticate_user(identifier: str, password: str, db: AsyncSession) -> Optional[User]:
        """Match the identifier against email or username and check the password"""
        AuthService._check_brute_force(identifier)

        stmt = select(User).where(or_(User.email == identifier.lower(), User.username == identifier))
        result = await db.execute(stmt)
        candidates: List[User] = list(result.scalars().all())

        for user in candidates:
            if AuthService.verify_password(password, user.password_hash):
                AuthService._clear_attempts(identifier)
                logger.info(f"Successful login for account {identifier}")
                return user

        AuthService._record_failed_attempt(identifier)
        logger.info(f"Unsuccessful login for account {identifier}")
        return None

    @staticmethod
    async def is_token_revoked(jti: str, db: AsyncSession) -> bool:
        stmt = select(RevokedToken).where(RevokedToken.jti == jti)
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def revoke_token(jti: str, user_id: str, expires_at: datetime, db: AsyncSession) -> None:
        revoked = RevokedToken(jti=jti, user_id=user_id, expires_at=expires_at)
        db.add(revoked)
        await db.commit()

    @staticmethod
    async def ensure_admin_user(db: AsyncSession) -> Optional[User]:
        """Create the bootstrap admin account from ADMIN_* variables if missing"""
        email = os.getenv("ADMIN_EMAIL", "").lower()
        password = os.getenv("ADMIN_PASSWORD", "")
        if not email or not password:
            return None

        result = await db.execute(select(User).where(User.email == email))
        admin = result.scalar_one_or_none()
        if admin:
            return admin

        admin = User(
            username=os.getenv("ADMIN_USERNAME", "admin")[:9],
            email=email,
            first_name="Admin",
            last_name="Admin",
            password_hash=AuthService.hash_password(password),
            role=GlobalRole.ADMIN,
        )
        db.add(admin)
        await db.commit()
        await db.refresh(admin)
        logger.info(f"Bootstrapped admin account {email}")
        return admin


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

    # Check revocation
    jti = payload.get("jti")
    if jti and await AuthService.is_token_revoked(jti, db):
        raise HTTPException(status_code=401, detail="Token has been revoked")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    stmt = select(User).where(User.id == user_id)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    exp = payload.get("exp")
    return CurrentUser(
        id=user.id,
        email=user.email,
        username=user.username,
        role=user.role.value if isinstance(user.role, GlobalRole) else user.role,
        jti=jti,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    )
