# routers/auth.py — Authentication endpoints with token revocation
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserRegister, UserLogin, TokenResponse, RefreshRequest,
    get_current_user, CurrentUser, ACCESS_TOKEN_EXPIRE_MINUTES,
)
from database import get_db_session
from models import User
from schemas import user_to_out

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _build_token_response(user_obj: User) -> TokenResponse:
    """Build token response from a user ORM instance"""
    token_data = AuthService.token_claims(user_obj)
    return TokenResponse(
        access_token=AuthService.create_access_token(token_data),
        refresh_token=AuthService.create_refresh_token(token_data),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=user_to_out(user_obj).model_dump(by_alias=True),
    )


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a new user account"""
    user = await AuthService.register_user(user_data, db)
    return _build_token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate with email or username and receive tokens"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _build_token_response(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    refresh_req: RefreshRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Exchange a refresh token for a new token pair"""
    payload = AuthService.verify_token(refresh_req.refresh_token)

    if payload.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Invalid token type. Expected refresh token.")

    jti = payload.get("jti")
    if jti and await AuthService.is_token_revoked(jti, db):
        raise HTTPException(status_code=401, detail="Refresh token has been revoked")

    user_id = payload.get("sub")
    user = await db.get(User, user_id) if user_id else None
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return _build_token_response(user)


@router.post("/logout")
async def logout(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Revoke the access token used for this request"""
    if user.jti and user.expires_at:
        await AuthService.revoke_token(user.jti, user.id, user.expires_at, db)
    return {"status": "logged_out", "message": "Session terminated"}


@router.get("/me")
async def get_current_user_info(user: CurrentUser = Depends(get_current_user)):
    """Get current authenticated user information"""
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "role": user.role,
    }
