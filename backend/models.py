# models.py — Database models for the Planets task-board backend
# - UUID string primary keys everywhere
# - Records reference each other by id only (no embedded documents)
# - Global role (user/admin) is separate from the per-planet role (owner/collaborator)

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint, text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

DEFAULT_PLANET_COLOR = "#b5b3b3"
DEFAULT_PLANET_THEME = ["#FF0000", "#FF0000", "#FF0000", "#FF0000", "#FF0000"]


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def default_theme():
    return list(DEFAULT_PLANET_THEME)


# ============================================================
# ENUMS
# ============================================================

class GlobalRole(str, PyEnum):
    USER = "user"
    ADMIN = "admin"


class PlanetRole(str, PyEnum):
    OWNER = "owner"
    COLLABORATOR = "collaborator"


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    username = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    pfp_link = Column(String, nullable=False, default="default.jpg")
    role = Column(SQLEnum(GlobalRole), default=GlobalRole.USER, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    id = Column(String, primary_key=True, default=new_uuid)
    jti = Column(String, unique=True, nullable=False, index=True)  # JWT ID
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    revoked_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)  # When the token would have expired


# ============================================================
# PLANETS (boards) and membership
# ============================================================

class Planet(Base):
    """Top-level collaborative workspace"""
    __tablename__ = "planets"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    description = Column(String, nullable=False)
    color = Column(String, nullable=False, default=DEFAULT_PLANET_COLOR)
    theme = Column(JSON, nullable=False, default=default_theme)  # exactly five hex colours
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class PlanetCollaborator(Base):
    """Membership link binding a user to a planet"""
    __tablename__ = "planet_collaborators"

    id = Column(String, primary_key=True, default=new_uuid)
    planet_id = Column(String, ForeignKey("planets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(PlanetRole), nullable=False, default=PlanetRole.COLLABORATOR)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("planet_id", "user_id", name="uq_planet_member"),
        Index("idx_collab_planet_role", "planet_id", "role"),
        # at most one owner link per planet
        Index(
            "uq_planet_single_owner", "planet_id", unique=True,
            postgresql_where=text("role = 'OWNER'"),
            sqlite_where=text("role = 'OWNER'"),
        ),
    )


class PlanetColumn(Base):
    """Ordered lane of tasks within a planet"""
    __tablename__ = "planet_columns"

    id = Column(String, primary_key=True, default=new_uuid)
    planet_id = Column(String, ForeignKey("planets.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class PlanetTask(Base):
    """Task card; `order` is its dense 1-based rank within the column"""
    __tablename__ = "planet_tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    column_id = Column(String, ForeignKey("planet_columns.id", ondelete="CASCADE"), nullable=False)
    assigned_user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    content = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(String, nullable=True)  # "1".."4"
    order = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_task_column_order", "column_id", "order"),
    )


class PlanetInvite(Base):
    """Pending offer of membership; deleted on accept or decline"""
    __tablename__ = "planet_invites"

    id = Column(String, primary_key=True, default=new_uuid)
    planet_id = Column(String, ForeignKey("planets.id", ondelete="CASCADE"), nullable=False, index=True)
    planet_name = Column(String, nullable=False)  # snapshot at send time
    invited_user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    inviting_user_email = Column(String, nullable=False)
    message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("planet_id", "invited_user_id", name="uq_pending_invite"),
    )
