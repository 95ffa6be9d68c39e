# routers/users.py — User profiles, their planets and pending invites
import logging
from typing import Optional, List

from fastapi import APIRouter, Depends
from pydantic import EmailStr, Field, field_validator
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from access import get_membership
from auth import AuthService, CurrentUser, get_current_user, check_password_policy
from database import get_db_session
from errors import NotFoundError, ForbiddenError, ConflictError, InternalError
from models import User, Planet, PlanetCollaborator, PlanetInvite, PlanetRole
from rate_limit import rate_limit
from schemas import (
    CamelModel, UserOut, InviteOut, UserPlanetsOut,
    user_to_out, planet_to_out, invite_to_out,
)

logger = logging.getLogger("planets.users")

router = APIRouter(prefix="/users", tags=["Users"])


# --- Schemas ---

class UserUpdate(CamelModel):
    username: Optional[str] = Field(None, min_length=1, max_length=9)
    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(None, min_length=1, max_length=19)
    last_name: Optional[str] = Field(None, min_length=1, max_length=19)
    password: Optional[str] = None
    pfp_link: Optional[str] = Field(None, min_length=1)

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v):
        return v.lower() if v else v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        return check_password_policy(v) if v is not None else v


# --- Helpers ---

async def _get_user_or_404(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def _ensure_self_or_admin(caller: CurrentUser, user_id: str) -> None:
    if caller.id != user_id and not caller.is_admin:
        raise ForbiddenError("You do not have permission to access this user's data")


async def _get_invite_for_invitee(db: AsyncSession, invite_id: str, caller: CurrentUser) -> PlanetInvite:
    """Load an invite the caller may answer, checking that its planet and user still exist"""
    invite = await db.get(PlanetInvite, invite_id)
    if not invite:
        raise NotFoundError("Invite not found")
    if invite.invited_user_id != caller.id and not caller.is_admin:
        raise ForbiddenError("You do not have permission to answer this invite")
    if not await db.get(Planet, invite.planet_id):
        logger.warning(f"Invite {invite.id} references deleted planet {invite.planet_id}")
        raise NotFoundError("Planet has been deleted")
    if not await db.get(User, invite.invited_user_id):
        logger.warning(f"Invite {invite.id} references deleted user {invite.invited_user_id}")
        raise NotFoundError("User has been deleted")
    return invite


# --- Endpoints ---

@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: str,
    caller: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Profile of a user; self or admin only"""
    user = await _get_user_or_404(db, user_id)
    _ensure_self_or_admin(caller, user_id)
    return user_to_out(user)


@router.get("/{user_id}/planets", response_model=UserPlanetsOut)
async def get_user_planets(
    user_id: str,
    caller: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Planets the user owns and planets they collaborate on"""
    await _get_user_or_404(db, user_id)
    _ensure_self_or_admin(caller, user_id)

    stmt = (
        select(Planet, PlanetCollaborator.role)
        .join(PlanetCollaborator, PlanetCollaborator.planet_id == Planet.id)
        .where(PlanetCollaborator.user_id == user_id)
        .order_by(Planet.created_at)
    )
    result = await db.execute(stmt)

    out = UserPlanetsOut()
    for planet, role in result.all():
        if role == PlanetRole.OWNER:
            out.owned_planets.append(planet_to_out(planet))
        else:
            out.collaborated_planets.append(planet_to_out(planet))
    return out


@router.get("/{user_id}/invites", response_model=List[InviteOut])
async def get_user_invites(
    user_id: str,
    caller: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Pending invites addressed to the user"""
    await _get_user_or_404(db, user_id)
    _ensure_self_or_admin(caller, user_id)

    stmt = (
        select(PlanetInvite)
        .where(PlanetInvite.invited_user_id == user_id)
        .order_by(PlanetInvite.created_at)
    )
    result = await db.execute(stmt)
    return [invite_to_out(i) for i in result.scalars().all()]


@router.post("/invites/{invite_id}/accept", dependencies=[Depends(rate_limit)])
async def accept_invite(
    invite_id: str,
    caller: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Turn a pending invite into a collaborator link"""
    invite = await _get_invite_for_invitee(db, invite_id, caller)

    if await get_membership(db, invite.planet_id, invite.invited_user_id):
        raise ConflictError("User is already a collaborator on this planet")

    try:
        db.add(PlanetCollaborator(
            planet_id=invite.planet_id,
            user_id=invite.invited_user_id,
            role=PlanetRole.COLLABORATOR,
        ))
        await db.delete(invite)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("User is already a collaborator on this planet") from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Accepting invite {invite_id} failed: {e}")
        raise InternalError() from e

    logger.info(f"User {invite.invited_user_id} joined planet {invite.planet_id}")
    return {"status": "accepted", "message": "Invite accepted successfully."}


@router.post("/invites/{invite_id}/decline", dependencies=[Depends(rate_limit)])
async def decline_invite(
    invite_id: str,
    caller: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a pending invite"""
    invite = await _get_invite_for_invitee(db, invite_id, caller)
    await db.delete(invite)
    await db.commit()
    return {"status": "declined", "message": "Invite declined successfully."}


@router.put("/{user_id}", response_model=UserOut, dependencies=[Depends(rate_limit)])
async def update_user(
    user_id: str,
    data: UserUpdate,
    caller: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update the caller's own profile"""
    user = await _get_user_or_404(db, user_id)
    if caller.id != user_id:
        raise ForbiddenError("You do not have permission to edit this user")

    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    await AuthService.ensure_unique_identity(
        db, changes.get("email"), changes.get("username"), exclude_user_id=user_id,
    )

    password = changes.pop("password", None)
    if password:
        user.password_hash = AuthService.hash_password(password)
    for field, value in changes.items():
        setattr(user, field, value)

    await db.commit()
    await db.refresh(user)
    return user_to_out(user)
