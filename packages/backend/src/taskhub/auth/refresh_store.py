"""Refresh token store — persistence for opaque, single-use refresh tokens.

Learn: A refresh token row is usable iff is_revoked is false AND now <
expires_at. All expiry checks happen in SQL against a UTC timestamp, so
the rule is applied identically whichever process asks.

The write contention point of the whole auth subsystem is here: two
requests presenting the same refresh token at once. `revoke(id)` is a
conditional UPDATE (`... WHERE id = :id AND is_revoked = false`), i.e. a
compare-and-set: the database serializes the two UPDATEs on the row and
only one of them sees rowcount == 1. `consume()` builds on that: look the
token up, then win the compare-and-set, or report the token as gone.
The caller commits the consumption together with the successor token,
so rotation is atomic.
"""

import uuid
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from taskhub.db.models import RefreshToken, utcnow


class RefreshTokenStore:
    """Refresh token CRUD + atomic consume."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._clock = clock

    async def create(
        self, owner_id: uuid.UUID, token: str, expires_at: datetime
    ) -> RefreshToken:
        row = RefreshToken(
            owner_id=owner_id,
            token=token,
            expires_at=expires_at,
            is_revoked=False,
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def find_valid(self, token: str) -> Optional[RefreshToken]:
        """Return the token row only if it is unrevoked and unexpired."""
        result = await self.db.execute(
            select(RefreshToken)
            .where(
                RefreshToken.token == token,
                RefreshToken.is_revoked.is_(False),
                RefreshToken.expires_at > self._clock(),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def revoke(self, token_id: uuid.UUID) -> bool:
        """Revoke one token by id. True only for the caller that flipped it."""
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def revoke_by_token(self, token: str) -> bool:
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.token == token, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def revoke_all_for_owner(self, owner_id: uuid.UUID) -> int:
        """Revoke every live token of an account (logout from all devices)."""
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.owner_id == owner_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_expired(self) -> int:
        """Purge expired tokens, revoked or not."""
        result = await self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at <= self._clock())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def consume(self, token: str) -> Optional[RefreshToken]:
        """find_valid + revoke as one logical step.

        Returns the consumed row, or None if the token was unusable or
        another caller consumed it first. Nothing is committed here.
        """
        row = await self.find_valid(token)
        if row is None:
            return None
        if not await self.revoke(row.id):
            return None
        set_committed_value(row, "is_revoked", True)
        return row
