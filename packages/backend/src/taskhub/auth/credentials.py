"""Credential verifier — email/password against the stored bcrypt hash."""

from taskhub.auth.accounts import AccountRepository
from taskhub.auth.password import hash_password, verify_password
from taskhub.db.models import Account
from taskhub.errors import InvalidCredentials

# Checked when the email is unknown so both failure paths cost one bcrypt verify
_DUMMY_HASH = hash_password("taskhub-dummy-password")


class CredentialVerifier:
    def __init__(self, accounts: AccountRepository):
        self.accounts = accounts

    async def verify(self, email: str, password: str) -> Account:
        """Return the matching account or raise InvalidCredentials.

        Unknown email and wrong password raise the same error. The account's
        active flag is not looked at here.
        """
        account = await self.accounts.get_by_email(email)
        if account is None:
            verify_password(password, _DUMMY_HASH)
            raise InvalidCredentials()

        if not verify_password(password, account.password_hash):
            raise InvalidCredentials()

        return account
