# access.py — Planet-scoped authorization gate
#
# Every planet, column, task and invite route loads its record, resolves the
# owning planet, and calls authorize_member or authorize_owner before reading
# or mutating anything. Global admins pass both checks without a membership.
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from errors import NotFoundError, ForbiddenError
from models import Planet, PlanetColumn, PlanetTask, PlanetCollaborator, PlanetRole

logger = logging.getLogger("planets.access")


async def get_membership(db: AsyncSession, planet_id: str, user_id: str) -> Optional[PlanetCollaborator]:
    stmt = select(PlanetCollaborator).where(
        PlanetCollaborator.planet_id == planet_id,
        PlanetCollaborator.user_id == user_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_planet_or_404(db: AsyncSession, planet_id: str) -> Planet:
    planet = await db.get(Planet, planet_id)
    if not planet:
        raise NotFoundError("Planet not found")
    return planet


async def get_column_or_404(db: AsyncSession, column_id: str, detail: str = "Column not found") -> PlanetColumn:
    column = await db.get(PlanetColumn, column_id)
    if not column:
        raise NotFoundError(detail)
    return column


async def get_task_or_404(db: AsyncSession, task_id: str) -> PlanetTask:
    task = await db.get(PlanetTask, task_id)
    if not task:
        raise NotFoundError("Task not found")
    return task


async def authorize_member(db: AsyncSession, user: CurrentUser, planet_id: str) -> Optional[PlanetCollaborator]:
    """Allow admins and any collaborator of the planet.

    Returns the caller's membership link, or None for an admin who is not a
    member.
    """
    link = await get_membership(db, planet_id, user.id)
    if link or user.is_admin:
        return link
    logger.info(f"User {user.id} denied access to planet {planet_id}")
    raise ForbiddenError("You are not a collaborator on this planet")


async def authorize_owner(db: AsyncSession, user: CurrentUser, planet_id: str) -> Optional[PlanetCollaborator]:
    """Allow admins and the planet's owner"""
    link = await get_membership(db, planet_id, user.id)
    if user.is_admin or (link and link.role == PlanetRole.OWNER):
        return link
    logger.info(f"User {user.id} denied owner access to planet {planet_id}")
    raise ForbiddenError("Only the planet owner can perform this action")
