"""Session issuer — register, login, refresh, logout, whoami.

Learn: This is the only component that signs access tokens and the only
writer of refresh tokens. A session is a pair:
- Access token: JWT, 15 min, verified at the gateway by signature alone
- Refresh token: 64 hex chars of randomness, 7 days, stored server-side

Refresh Token Rotation: every successful refresh consumes the presented
token and issues a successor in the same transaction. A token can be
exchanged exactly once, so a stolen-but-already-used token is useless
and shows up as an InvalidRefreshToken.

Error ordering on login matters: unknown email and wrong password are
indistinguishable (InvalidCredentials); only a caller who got the
password right learns that the account is disabled.
"""

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.auth.accounts import ROLE_MEMBER, AccountRepository, RoleService
from taskhub.auth.credentials import CredentialVerifier
from taskhub.auth.password import DEFAULT_ROUNDS, hash_password, needs_rehash
from taskhub.auth.refresh_store import RefreshTokenStore
from taskhub.auth.schemas import AccountRead, ProfileRead
from taskhub.auth.tokens import TokenCodec
from taskhub.db.models import Account, utcnow
from taskhub.errors import (
    AccountDisabled,
    AccountNotFound,
    EmailAlreadyExists,
    InvalidRefreshToken,
)

logger = structlog.get_logger()

REFRESH_TOKEN_BYTES = 32


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class AuthResult:
    account: AccountRead
    access_token: str
    refresh_token: str


def account_summary(account: Account) -> AccountRead:
    """Public view of an account (no password hash)."""
    return AccountRead(
        id=account.id,
        email=account.email,
        is_active=account.is_active,
        created_at=account.created_at,
        updated_at=account.updated_at,
        profile=ProfileRead.model_validate(account.profile),
        roles=account.role_names,
    )


class SessionIssuer:
    """Issues, rotates and revokes token pairs."""

    def __init__(
        self,
        db: AsyncSession,
        codec: TokenCodec,
        *,
        refresh_lifetime: timedelta = timedelta(days=7),
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.codec = codec
        self.refresh_lifetime = refresh_lifetime
        self.bcrypt_rounds = bcrypt_rounds
        self._clock = clock
        self.accounts = AccountRepository(db)
        self.roles = RoleService(db)
        self.tokens = RefreshTokenStore(db, clock=clock)
        self.credentials = CredentialVerifier(self.accounts)

    # ─── Register ───────────────────────────────────────

    async def register(
        self, email: str, password: str, display_name: str | None = None
    ) -> AuthResult:
        """Create a MEMBER account and sign it in."""
        if await self.accounts.email_exists(email):
            raise EmailAlreadyExists(email)

        member = await self.roles.get_by_name(ROLE_MEMBER)
        if member is None:
            # Seeded at user-service startup; missing means a broken deployment
            raise RuntimeError("MEMBER role not found. Run `taskhub seed-roles`.")

        try:
            account = await self.accounts.add(
                email=email,
                password_hash=hash_password(password, self.bcrypt_rounds),
                display_name=display_name or email.split("@")[0],
                roles=[member],
            )
        except IntegrityError:
            # A concurrent registration took the email after the check above
            await self.db.rollback()
            logger.info("session.register_conflict")
            raise EmailAlreadyExists(email)

        pair = await self._issue_pair(account)
        await self.db.commit()

        logger.info("session.registered", account_id=str(account.id))
        return AuthResult(account_summary(account), pair.access_token, pair.refresh_token)

    # ─── Login ──────────────────────────────────────────

    async def login(self, email: str, password: str) -> AuthResult:
        """Verify credentials, then check the account is active, then issue."""
        account = await self.credentials.verify(email, password)

        if not account.is_active:
            logger.info("session.login_disabled", account_id=str(account.id))
            raise AccountDisabled()

        if needs_rehash(account.password_hash, self.bcrypt_rounds):
            account.password_hash = hash_password(password, self.bcrypt_rounds)

        pair = await self._issue_pair(account)
        await self.db.commit()

        logger.info("session.login", account_id=str(account.id))
        return AuthResult(account_summary(account), pair.access_token, pair.refresh_token)

    # ─── Refresh ────────────────────────────────────────

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair (rotation)."""
        consumed = await self.tokens.consume(refresh_token)
        if consumed is None:
            await self.db.rollback()
            logger.info("session.refresh_rejected")
            raise InvalidRefreshToken()

        account = await self.accounts.get(consumed.owner_id)
        if account is None:
            # Leave the orphaned token untouched; it ages out
            await self.db.rollback()
            raise InvalidRefreshToken()
        if not account.is_active:
            await self.db.rollback()
            raise AccountDisabled()

        pair = await self._issue_pair(account)
        # Revocation of the old token and the new row commit together
        await self.db.commit()

        logger.info("session.refreshed", account_id=str(account.id))
        return pair

    # ─── Logout ─────────────────────────────────────────

    async def logout(self, refresh_token: str) -> None:
        """Revoke a refresh token. Unknown or already revoked tokens are fine."""
        revoked = await self.tokens.revoke_by_token(refresh_token)
        await self.db.commit()
        logger.info("session.logout", revoked=revoked)

    # ─── Who am I ───────────────────────────────────────

    async def whoami(self, account_id: uuid.UUID) -> AccountRead:
        account = await self.accounts.get(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account_summary(account)

    # ─── Internals ──────────────────────────────────────

    async def _issue_pair(self, account: Account) -> TokenPair:
        access = self.codec.encode(
            subject_id=str(account.id),
            email=account.email,
            roles=account.role_names,
        )
        refresh = secrets.token_hex(REFRESH_TOKEN_BYTES)
        await self.tokens.create(
            owner_id=account.id,
            token=refresh,
            expires_at=self._clock() + self.refresh_lifetime,
        )
        return TokenPair(access_token=access, refresh_token=refresh)
