"""Password hashing utilities.

Learn: Uses bcrypt for password hashing. bcrypt salts automatically and
encodes its cost factor in the hash ("$2b$10$..."), which lets us notice
hashes made with a lower cost than currently configured and re-hash them
on the next successful login. Passwords are truncated to 72 bytes
(bcrypt's limit).
"""

import bcrypt

DEFAULT_ROUNDS = 10


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a password with bcrypt at the given cost factor."""
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash. Malformed hashes never match."""
    try:
        pw_bytes = password.encode("utf-8")[:72]
        return bcrypt.checkpw(pw_bytes, password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def needs_rehash(password_hash: str, rounds: int = DEFAULT_ROUNDS) -> bool:
    """True if the hash was made with a lower cost than `rounds`."""
    return hash_rounds(password_hash) < rounds


def hash_rounds(password_hash: str) -> int:
    """Extract the cost factor from a "$2b$NN$..." hash (0 if unparseable)."""
    try:
        return int(password_hash.split("$")[2])
    except (IndexError, ValueError):
        return 0
