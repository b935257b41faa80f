"""SQLAlchemy ORM models — accounts, profiles, roles, refresh tokens.

Learn: SQLAlchemy 2.0 style (Mapped[] + mapped_column). The generic Uuid
type maps to native UUID on PostgreSQL and CHAR(32) elsewhere, so the
same models run against Postgres in production and SQLite in tests.

Access tokens are deliberately absent: they are self-verifying and never
stored. Refresh tokens are the only mutable shared state of the auth
subsystem.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


# ══════════════════════════════════════════════════════════════
# Accounts & roles
# ══════════════════════════════════════════════════════════════


account_roles = Table(
    "account_roles",
    Base.metadata,
    Column(
        "account_id",
        Uuid,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "role_id",
        Uuid,
        ForeignKey("roles.id", ondelete="RESTRICT"),
        primary_key=True,
    ),
)


class Role(Base):
    """A named capability (ADMIN, MEMBER, ...). Globally unique by name."""

    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    accounts: Mapped[list["Account"]] = relationship(
        secondary=account_roles, back_populates="roles"
    )


class Account(Base):
    """A login identity. Email is the login id; the password is stored hashed.

    Learn: is_active is a suspension switch, not a soft delete. Disabling an
    account blocks login and refresh and revokes every refresh token it owns.
    """

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    profile: Mapped["Profile"] = relationship(
        back_populates="account",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    roles: Mapped[list["Role"]] = relationship(
        secondary=account_roles, back_populates="accounts", lazy="selectin"
    )

    @property
    def role_names(self) -> list[str]:
        return sorted(role.name for role in self.roles)


class Profile(Base):
    """Display data for an account (1:1). Kept apart so auth queries stay lean."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    account: Mapped["Account"] = relationship(back_populates="profile")


# ══════════════════════════════════════════════════════════════
# Refresh tokens
# ══════════════════════════════════════════════════════════════


class RefreshToken(Base):
    """An opaque, single-use refresh token.

    Learn: Usable iff not revoked and not expired. Rotation flips
    is_revoked on the consumed row in the same transaction that inserts
    its successor. Expired rows can be purged whatever their revoked state.
    owner_id is a plain reference; tokens are purged by age,
    not by cascading from accounts.
    """

    __tablename__ = "refresh_tokens"
    __table_args__ = (
        Index("ix_refresh_tokens_owner_revoked", "owner_id", "is_revoked"),
        Index("ix_refresh_tokens_expires_at", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
