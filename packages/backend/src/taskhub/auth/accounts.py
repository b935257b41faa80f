"""Account lookup and account/role management.

Learn: AccountRepository is the one place that knows how to find an
account. SessionIssuer, CredentialVerifier and AccountService all take
it as a dependency instead of reaching into each other, so the issuer
and account management never import one another.

AccountService owns the "disable account" operation: flipping is_active
off also revokes every refresh token the account holds, a session-wide
logout across all devices.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.auth.refresh_store import RefreshTokenStore
from taskhub.db.models import Account, Profile, Role, account_roles
from taskhub.errors import AccountNotFound, RoleInUse, RoleNotFound

logger = structlog.get_logger()

ROLE_ADMIN = "ADMIN"
ROLE_MEMBER = "MEMBER"

DEFAULT_ROLES: list[dict[str, str]] = [
    {"name": ROLE_ADMIN, "description": "Administrator. Full access."},
    {"name": ROLE_MEMBER, "description": "Regular user. Own resources only."},
]


class AccountRepository:
    """Account persistence shared by the issuer and account management."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, account_id: uuid.UUID) -> Optional[Account]:
        # populate_existing re-runs the eager loaders after an earlier rollback
        return await self.db.get(Account, account_id, populate_existing=True)

    async def get_by_email(self, email: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account)
            .where(Account.email == normalize_email(email))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def email_exists(self, email: str) -> bool:
        result = await self.db.execute(
            select(func.count())
            .select_from(Account)
            .where(Account.email == normalize_email(email))
        )
        return result.scalar_one() > 0

    async def add(
        self,
        email: str,
        password_hash: str,
        display_name: str,
        roles: list[Role],
    ) -> Account:
        account = Account(
            email=normalize_email(email),
            password_hash=password_hash,
            is_active=True,
            roles=list(roles),
            profile=Profile(display_name=display_name),
        )
        self.db.add(account)
        await self.db.flush()
        return account


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountService:
    """Administrative account operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.accounts = AccountRepository(db)
        self.tokens = RefreshTokenStore(db)

    async def set_active(self, account_id: uuid.UUID, active: bool) -> Account:
        """Enable or disable an account. Disabling revokes all its refresh tokens."""
        account = await self.accounts.get(account_id)
        if not account:
            raise AccountNotFound(account_id)

        account.is_active = active
        revoked = 0
        if not active:
            revoked = await self.tokens.revoke_all_for_owner(account.id)
        await self.db.commit()

        logger.info(
            "account.status_changed",
            account_id=str(account.id),
            active=active,
            revoked_tokens=revoked,
        )
        return account


class RoleService:
    """Role seeding and deletion."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_name(self, name: str) -> Optional[Role]:
        result = await self.db.execute(select(Role).where(Role.name == name))
        return result.scalars().first()

    async def seed_defaults(self) -> list[str]:
        """Create ADMIN and MEMBER if missing. Idempotent; returns names created."""
        created = []
        for role in DEFAULT_ROLES:
            if await self.get_by_name(role["name"]):
                continue
            self.db.add(Role(name=role["name"], description=role["description"]))
            created.append(role["name"])
        if created:
            await self.db.commit()
        logger.info("roles.seeded", created=created)
        return created

    async def delete(self, name: str) -> None:
        """Delete a role. Refused while any account still holds it."""
        role = await self.get_by_name(name)
        if not role:
            raise RoleNotFound(name)

        result = await self.db.execute(
            select(func.count())
            .select_from(account_roles)
            .where(account_roles.c.role_id == role.id)
        )
        assigned = result.scalar_one()
        if assigned:
            raise RoleInUse(name, assigned)

        await self.db.execute(delete(Role).where(Role.id == role.id))
        await self.db.commit()
        logger.info("roles.deleted", role=name)
