# schemas.py — Wire models shared across routers
# Fields are declared in snake_case and serialised as camelCase
# (columnId, assignedUserId, createdAt, ...). Input accepts either form.
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from models import (
    User, Planet, PlanetCollaborator, PlanetColumn, PlanetTask, PlanetInvite,
    GlobalRole, PlanetRole,
)

HEX_COLOR_PATTERN = r"^#([A-Fa-f0-9]{3}){1,2}([A-Fa-f0-9]{2})?$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Output models ---

class UserOut(CamelModel):
    id: str
    username: str
    email: str
    first_name: str
    last_name: str
    pfp_link: str
    role: str
    created_at: str
    updated_at: str


class CollaboratorOut(CamelModel):
    id: str
    username: str
    email: str
    first_name: str
    last_name: str
    pfp_link: str
    role: str  # role within the planet


class PlanetOut(CamelModel):
    id: str
    name: str
    description: str
    color: str
    theme: List[str]
    created_at: str
    updated_at: str


class PlanetDetailOut(CamelModel):
    planet: PlanetOut
    collaborators: List[CollaboratorOut]
    role: Optional[str] = None


class TaskOut(CamelModel):
    id: str
    column_id: str
    assigned_user_id: Optional[str] = None
    content: str
    description: Optional[str] = None
    priority: Optional[str] = None
    order: int
    created_at: str
    updated_at: str


class ColumnOut(CamelModel):
    id: str
    planet_id: str
    name: str
    created_at: str
    updated_at: str


class ColumnWithTasksOut(ColumnOut):
    tasks: List[TaskOut] = []


class InviteOut(CamelModel):
    id: str
    planet_id: str
    planet_name: str
    invited_user_id: str
    inviting_user_email: str
    message: Optional[str] = None
    created_at: str
    updated_at: str


class UserPlanetsOut(CamelModel):
    owned_planets: List[PlanetOut] = []
    collaborated_planets: List[PlanetOut] = []


# --- Helpers ---

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _enum_value(value) -> str:
    return value.value if isinstance(value, (GlobalRole, PlanetRole)) else value


def user_to_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        username=u.username,
        email=u.email,
        first_name=u.first_name,
        last_name=u.last_name,
        pfp_link=u.pfp_link or "default.jpg",
        role=_enum_value(u.role),
        created_at=_ts(u.created_at) or "",
        updated_at=_ts(u.updated_at) or "",
    )


def collaborator_to_out(u: User, link: PlanetCollaborator) -> CollaboratorOut:
    return CollaboratorOut(
        id=u.id,
        username=u.username,
        email=u.email,
        first_name=u.first_name,
        last_name=u.last_name,
        pfp_link=u.pfp_link or "default.jpg",
        role=_enum_value(link.role),
    )


def planet_to_out(p: Planet) -> PlanetOut:
    return PlanetOut(
        id=p.id,
        name=p.name,
        description=p.description,
        color=p.color,
        theme=list(p.theme or []),
        created_at=_ts(p.created_at) or "",
        updated_at=_ts(p.updated_at) or "",
    )


def column_to_out(c: PlanetColumn) -> ColumnOut:
    return ColumnOut(
        id=c.id,
        planet_id=c.planet_id,
        name=c.name,
        created_at=_ts(c.created_at) or "",
        updated_at=_ts(c.updated_at) or "",
    )


def task_to_out(t: PlanetTask) -> TaskOut:
    return TaskOut(
        id=t.id,
        column_id=t.column_id,
        assigned_user_id=t.assigned_user_id,
        content=t.content,
        description=t.description,
        priority=t.priority,
        order=t.order,
        created_at=_ts(t.created_at) or "",
        updated_at=_ts(t.updated_at) or "",
    )


def invite_to_out(i: PlanetInvite) -> InviteOut:
    return InviteOut(
        id=i.id,
        planet_id=i.planet_id,
        planet_name=i.planet_name,
        invited_user_id=i.invited_user_id,
        inviting_user_email=i.inviting_user_email,
        message=i.message,
        created_at=_ts(i.created_at) or "",
        updated_at=_ts(i.updated_at) or "",
    )
