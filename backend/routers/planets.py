# routers/planets.py — Planets, their columns and tasks, invites and membership
import re
import logging
from typing import Optional, List, Literal

from fastapi import APIRouter, Depends, Response
from pydantic import Field, field_validator
from sqlalchemy import select, delete, update
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import task_order
from access import (
    authorize_member, authorize_owner, get_membership,
    get_planet_or_404, get_column_or_404, get_task_or_404,
)
from auth import CurrentUser, get_current_user
from database import get_db_session
from errors import NotFoundError, ForbiddenError, ConflictError, InvalidInputError, InternalError
from locks import KeyedLocks
from models import (
    User, Planet, PlanetCollaborator, PlanetColumn, PlanetTask, PlanetInvite,
    PlanetRole, GlobalRole, DEFAULT_PLANET_COLOR, default_theme,
)
from rate_limit import rate_limit
from schemas import (
    CamelModel, HEX_COLOR_PATTERN, PlanetOut, PlanetDetailOut, ColumnOut, ColumnWithTasksOut,
    TaskOut, InviteOut,
    planet_to_out, collaborator_to_out, column_to_out, task_to_out, invite_to_out,
)

logger = logging.getLogger("planets.planets")

router = APIRouter(prefix="/planets", tags=["Planets"])

THEME_SIZE = 5

# ownership changes on one planet run one at a time
planet_locks = KeyedLocks()


# ============================================================
# SCHEMAS
# ============================================================

def _check_theme(theme: Optional[List[str]]) -> Optional[List[str]]:
    if theme is None:
        return theme
    if len(theme) != THEME_SIZE:
        raise ValueError(f"Theme must contain exactly {THEME_SIZE} colors")
    for color in theme:
        if not re.match(HEX_COLOR_PATTERN, color):
            raise ValueError(f"{color} is not a valid hex color")
    return theme


# --- Planet ---
class PlanetCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=20)
    description: str = Field(..., min_length=1, max_length=50)
    color: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)
    theme: Optional[List[str]] = None
    owner_id: Optional[str] = None

    @field_validator("theme")
    @classmethod
    def validate_theme(cls, v):
        return _check_theme(v)


class PlanetUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=20)
    description: Optional[str] = Field(None, min_length=1, max_length=50)
    color: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)
    theme: Optional[List[str]] = None

    @field_validator("theme")
    @classmethod
    def validate_theme(cls, v):
        return _check_theme(v)


# --- Column ---
class ColumnCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=15)


# --- Task ---
class TaskCreate(CamelModel):
    content: Optional[str] = Field(None, max_length=30)


class TaskUpdate(CamelModel):
    order: Optional[int] = None
    column_id: Optional[str] = None
    content: Optional[str] = Field(None, min_length=1, max_length=30)
    description: Optional[str] = Field(None, max_length=500)
    priority: Optional[Literal["1", "2", "3", "4"]] = None
    assigned_user_id: Optional[str] = None


# --- Invite ---
class InviteCreate(CamelModel):
    user_email: str = Field(..., min_length=1)
    message: Optional[str] = Field(None, min_length=1, max_length=24)


# ============================================================
# PLANETS
# ============================================================

@router.post("", response_model=PlanetOut, status_code=201, dependencies=[Depends(rate_limit)])
async def create_planet(
    data: PlanetCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a planet together with its single owner link"""
    owner_id = data.owner_id or user.id
    if not await db.get(User, owner_id):
        raise NotFoundError("User (owner) not found")
    if owner_id != user.id and not user.is_admin:
        raise ForbiddenError("You do not have permission to create a planet on behalf of this user")

    planet = Planet(
        name=data.name,
        description=data.description,
        color=data.color or DEFAULT_PLANET_COLOR,
        theme=data.theme or default_theme(),
    )
    db.add(planet)
    await db.flush()
    db.add(PlanetCollaborator(planet_id=planet.id, user_id=owner_id, role=PlanetRole.OWNER))
    await db.commit()
    await db.refresh(planet)

    logger.info(f"Planet {planet.id} created for owner {owner_id}")
    return planet_to_out(planet)


@router.get("/{planet_id}", response_model=PlanetDetailOut)
async def get_planet(
    planet_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Planet with its collaborators (owner first) and the caller's role"""
    planet = await get_planet_or_404(db, planet_id)
    link = await authorize_member(db, user, planet_id)

    stmt = (
        select(User, PlanetCollaborator)
        .join(PlanetCollaborator, PlanetCollaborator.user_id == User.id)
        .where(PlanetCollaborator.planet_id == planet_id)
        .order_by(PlanetCollaborator.created_at)
    )
    rows = (await db.execute(stmt)).all()
    rows.sort(key=lambda row: row[1].role != PlanetRole.OWNER)

    return PlanetDetailOut(
        planet=planet_to_out(planet),
        collaborators=[collaborator_to_out(u, c) for u, c in rows],
        role=link.role.value if link else None,
    )


@router.put("/{planet_id}", response_model=PlanetOut, dependencies=[Depends(rate_limit)])
async def update_planet(
    planet_id: str,
    data: PlanetUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Edit planet fields; owner or admin"""
    planet = await get_planet_or_404(db, planet_id)
    await authorize_owner(db, user, planet_id)

    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(planet, field, value)

    await db.commit()
    await db.refresh(planet)
    return planet_to_out(planet)


@router.delete("/{planet_id}", dependencies=[Depends(rate_limit)])
async def delete_planet(
    planet_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a planet with its columns, tasks, collaborators and invites"""
    planet = await get_planet_or_404(db, planet_id)
    await authorize_owner(db, user, planet_id)

    column_ids = select(PlanetColumn.id).where(PlanetColumn.planet_id == planet_id)
    try:
        await db.execute(delete(PlanetTask).where(PlanetTask.column_id.in_(column_ids)))
        await db.execute(delete(PlanetColumn).where(PlanetColumn.planet_id == planet_id))
        await db.execute(delete(PlanetCollaborator).where(PlanetCollaborator.planet_id == planet_id))
        await db.execute(delete(PlanetInvite).where(PlanetInvite.planet_id == planet_id))
        await db.delete(planet)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Deleting planet {planet_id} failed: {e}")
        raise InternalError() from e

    logger.info(f"Planet {planet_id} deleted by {user.id}")
    return {"status": "deleted", "planet_id": planet_id}


# ============================================================
# COLUMNS
# ============================================================

@router.get("/{planet_id}/columns", response_model=List[ColumnWithTasksOut])
async def list_columns(
    planet_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Columns of a planet, each with its tasks in rank order"""
    await get_planet_or_404(db, planet_id)
    await authorize_member(db, user, planet_id)

    stmt = (
        select(PlanetColumn)
        .where(PlanetColumn.planet_id == planet_id)
        .order_by(PlanetColumn.created_at)
    )
    columns = (await db.execute(stmt)).scalars().all()

    out = []
    for col in columns:
        tasks = await task_order.column_tasks(db, col.id)
        out.append(ColumnWithTasksOut(
            **column_to_out(col).model_dump(),
            tasks=[task_to_out(t) for t in tasks],
        ))
    return out


@router.post("/{planet_id}/columns", response_model=ColumnOut, status_code=201, dependencies=[Depends(rate_limit)])
async def create_column(
    planet_id: str,
    data: ColumnCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Add a column to a planet; any member"""
    await get_planet_or_404(db, planet_id)
    await authorize_member(db, user, planet_id)

    column = PlanetColumn(planet_id=planet_id, name=data.name)
    db.add(column)
    await db.commit()
    await db.refresh(column)
    return column_to_out(column)


@router.delete("/columns/{column_id}", dependencies=[Depends(rate_limit)])
async def delete_column(
    column_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a column and every task in it"""
    column = await get_column_or_404(db, column_id)
    await authorize_member(db, user, column.planet_id)

    await task_order.remove_column(db, column_id)
    return {"status": "deleted", "column_id": column_id}


# ============================================================
# TASKS
# ============================================================

@router.post("/columns/{column_id}/task", response_model=TaskOut, status_code=201, dependencies=[Depends(rate_limit)])
async def create_task(
    column_id: str,
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Append a task to the bottom of a column"""
    if not data.content:
        raise InvalidInputError("Missing information. Cannot create task without task content.")

    column = await get_column_or_404(db, column_id, "Cannot add task to non-existent column")
    await authorize_member(db, user, column.planet_id)

    task = await task_order.append_task(db, column_id, data.content)
    return task_to_out(task)


@router.put("/tasks/{task_id}", response_model=TaskOut, dependencies=[Depends(rate_limit)])
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Edit task fields and/or move it within or across columns.

    Only the fields present in the body are applied; `assignedUserId: null`
    unassigns. A body with none of the task fields is a no-op (204).
    """
    supplied = data.model_dump(exclude_unset=True)
    if not supplied:
        return Response(status_code=204)

    task = await get_task_or_404(db, task_id)
    column = await get_column_or_404(db, task.column_id, "Task's column not found")
    planet = await get_planet_or_404(db, column.planet_id)
    await authorize_member(db, user, planet.id)

    new_order = supplied.pop("order", None)
    new_column_id = supplied.pop("column_id", None)
    if new_column_id and new_column_id != column.id:
        target = await db.get(PlanetColumn, new_column_id)
        if not target or target.planet_id != planet.id:
            raise NotFoundError("Target column not found")

    if "assigned_user_id" in supplied and supplied["assigned_user_id"] is not None:
        assignee_id = supplied["assigned_user_id"]
        if not await db.get(User, assignee_id):
            raise InvalidInputError("New assigned user not found")
        if not await get_membership(db, planet.id, assignee_id):
            raise InvalidInputError("New assigned user does not have permission to work on this task")

    # content is NOT NULL; an explicit null leaves it unchanged
    if supplied.get("content", "") is None:
        supplied.pop("content")

    task = await task_order.reposition_task(
        db, task_id, new_order=new_order, new_column_id=new_column_id, fields=supplied,
    )
    return task_to_out(task)


@router.delete("/tasks/{task_id}", dependencies=[Depends(rate_limit)])
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a task and renumber the rest of its column"""
    task = await get_task_or_404(db, task_id)
    column = await get_column_or_404(db, task.column_id, "Task's column not found")
    await authorize_member(db, user, column.planet_id)

    await task_order.remove_task(db, task_id)
    return {"status": "deleted", "task_id": task_id}


# ============================================================
# INVITES & MEMBERSHIP
# ============================================================

@router.post("/{planet_id}/invite", response_model=InviteOut, status_code=201, dependencies=[Depends(rate_limit)])
async def send_invite(
    planet_id: str,
    data: InviteCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Invite a non-member by email; owner or admin"""
    planet = await get_planet_or_404(db, planet_id)
    await authorize_owner(db, user, planet_id)

    result = await db.execute(select(User).where(User.email == data.user_email.lower()))
    invitee = result.scalar_one_or_none()
    if not invitee:
        raise NotFoundError("Cannot send invite to non-existent user")
    if invitee.role == GlobalRole.ADMIN:
        raise InvalidInputError(f"Cannot invite user with email {data.user_email} to planet")
    if await get_membership(db, planet_id, invitee.id):
        raise ConflictError("User is already a member of this planet")

    pending = await db.execute(
        select(PlanetInvite.id).where(
            PlanetInvite.planet_id == planet_id,
            PlanetInvite.invited_user_id == invitee.id,
        )
    )
    if pending.first():
        raise ConflictError("User has already been invited to this planet")

    invite = PlanetInvite(
        planet_id=planet_id,
        planet_name=planet.name,
        invited_user_id=invitee.id,
        inviting_user_email=user.email,
        message=data.message,
    )
    db.add(invite)
    try:
        await db.commit()
    except IntegrityError as e:
        # a concurrent request sent the same invite first
        await db.rollback()
        raise ConflictError("User has already been invited to this planet") from e
    await db.refresh(invite)

    logger.info(f"User {invitee.id} invited to planet {planet_id} by {user.id}")
    return invite_to_out(invite)


async def _lock_planet_links(db: AsyncSession, planet_id: str) -> List[PlanetCollaborator]:
    """Lock the planet row and re-read all of its membership links"""
    planet_stmt = (
        select(Planet)
        .where(Planet.id == planet_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if not (await db.execute(planet_stmt)).scalar_one_or_none():
        raise NotFoundError("Planet not found")

    links_stmt = (
        select(PlanetCollaborator)
        .where(PlanetCollaborator.planet_id == planet_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list((await db.execute(links_stmt)).scalars().all())


async def _check_target_member(db: AsyncSession, planet_id: str, user_id: str) -> None:
    if not await db.get(User, user_id):
        raise NotFoundError("User not found")
    if not await get_membership(db, planet_id, user_id):
        raise NotFoundError("User is not a member of this planet")


@router.delete("/{planet_id}/users/{user_id}", status_code=204, dependencies=[Depends(rate_limit)])
async def remove_user(
    planet_id: str,
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Remove a collaborator and unassign their tasks on this planet"""
    await get_planet_or_404(db, planet_id)
    await _check_target_member(db, planet_id, user_id)
    await authorize_owner(db, user, planet_id)

    async with planet_locks.hold(planet_id):
        links = await _lock_planet_links(db, planet_id)
        # roles may have changed while waiting for the lock
        await authorize_owner(db, user, planet_id)
        link = next((m for m in links if m.user_id == user_id), None)
        if not link:
            raise NotFoundError("User is not a member of this planet")
        if link.role == PlanetRole.OWNER:
            raise ConflictError("The planet owner cannot be removed; promote another member first")

        column_ids = select(PlanetColumn.id).where(PlanetColumn.planet_id == planet_id)
        try:
            await db.execute(
                update(PlanetTask)
                .where(PlanetTask.column_id.in_(column_ids), PlanetTask.assigned_user_id == user_id)
                .values(assigned_user_id=None)
            )
            await db.delete(link)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Removing user {user_id} from planet {planet_id} failed: {e}")
            raise InternalError() from e

    logger.info(f"User {user_id} removed from planet {planet_id} by {user.id}")
    return Response(status_code=204)


@router.put("/{planet_id}/users/{user_id}/promote", dependencies=[Depends(rate_limit)])
async def promote_user(
    planet_id: str,
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Make a member the owner; the previous owner becomes a collaborator"""
    await get_planet_or_404(db, planet_id)
    await _check_target_member(db, planet_id, user_id)
    await authorize_owner(db, user, planet_id)

    async with planet_locks.hold(planet_id):
        links = await _lock_planet_links(db, planet_id)
        # a concurrent promotion may already have demoted the caller
        await authorize_owner(db, user, planet_id)
        link = next((m for m in links if m.user_id == user_id), None)
        if not link:
            raise NotFoundError("User is not a member of this planet")
        if link.role == PlanetRole.OWNER:
            raise ConflictError("User is already the owner of this planet")

        try:
            for previous in links:
                if previous.role == PlanetRole.OWNER:
                    previous.role = PlanetRole.COLLABORATOR
            # uq_planet_single_owner is checked per row, so demote before promoting
            await db.flush()
            link.role = PlanetRole.OWNER
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"Concurrent ownership change on planet {planet_id}: {e}")
            raise ConflictError("Ownership of this planet changed concurrently; retry") from e
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Promotion on planet {planet_id} failed: {e}")
            raise InternalError() from e

    logger.info(f"User {user_id} promoted to owner of planet {planet_id} by {user.id}")
    return {"status": "promoted", "message": "User promoted successfully."}
