"""TaskHub — authentication and session lifecycle.

The identity layer of the TaskHub project/task manager: short-lived
signed access tokens, single-use rotating refresh tokens, a gateway that
verifies tokens once at the edge, internal services that trust the
identity it forwards, and a client that renews sessions on its own.
"""

__version__ = "0.1.0"
