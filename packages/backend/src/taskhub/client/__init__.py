"""Client library — talks to the gateway and keeps the session alive.

Usage:
    async with SessionClient("http://localhost:3000") as client:
        await client.login("alice@example.com", "s3cret-pass")
        response = await client.request("GET", "/api/projects")
"""

from taskhub.client.session import RenewalFailed, SessionClient, is_public_path
from taskhub.client.storage import (
    FileTokenStorage,
    MemoryTokenStorage,
    StoredSession,
    TokenStorage,
)

__all__ = [
    "FileTokenStorage",
    "MemoryTokenStorage",
    "RenewalFailed",
    "SessionClient",
    "StoredSession",
    "TokenStorage",
    "is_public_path",
]
