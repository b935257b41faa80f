"""Where the client keeps its token pair between requests.

Learn: A browser keeps the pair in localStorage; a Python client keeps it
in memory (scripts, tests) or in a JSON file (the CLI, so `taskhub login`
survives across invocations). The file holds a live refresh token, so it
is created owner-read/write only (0600).
"""

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Protocol

import structlog

logger = structlog.get_logger()

DEFAULT_SESSION_FILE = "~/.taskhub/session.json"


@dataclass
class StoredSession:
    access_token: str
    refresh_token: str
    # Account summary as returned by the API (camelCase keys)
    account: Optional[dict] = None

    @property
    def roles(self) -> list[str]:
        return list((self.account or {}).get("roles") or [])


class TokenStorage(Protocol):
    def load(self) -> Optional[StoredSession]: ...

    def save(self, session: StoredSession) -> None: ...

    def clear(self) -> None: ...


class MemoryTokenStorage:
    """Process-local storage. Gone when the process exits."""

    def __init__(self, session: Optional[StoredSession] = None):
        self._session = session

    def load(self) -> Optional[StoredSession]:
        return self._session

    def save(self, session: StoredSession) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class FileTokenStorage:
    """JSON file storage, written atomically with 0600 permissions."""

    def __init__(self, path: Optional[Path | str] = None):
        self.path = Path(path or default_session_path()).expanduser()

    def load(self) -> Optional[StoredSession]:
        try:
            data = json.loads(self.path.read_text())
            return StoredSession(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                account=data.get("account"),
            )
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError) as e:
            # Unreadable file counts as signed out
            logger.warning("client.session_file_invalid", path=str(self.path), error=str(e))
            return None

    def save(self, session: StoredSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(asdict(session), f)
        os.replace(tmp, self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def default_session_path() -> Path:
    return Path(os.environ.get("TASKHUB_SESSION_FILE", DEFAULT_SESSION_FILE)).expanduser()
