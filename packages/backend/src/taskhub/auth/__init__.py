"""Authentication and session lifecycle.

Learn: Layered leaf-first:
1. tokens      → sign / verify access tokens (stateless)
2. refresh_store → single-use refresh tokens (the only shared mutable state)
3. credentials → email + password against the bcrypt hash
4. sessions    → register / login / refresh / logout / whoami
5. identity    → the envelope internal services trust instead of a JWT

Account lookup lives in accounts.py so the issuer and account management
share it without depending on each other.
"""
