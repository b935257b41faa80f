#!/usr/bin/env python3
"""
TaskHub Quickstart — a full session lifecycle in one script.

Register → call a protected route → let the access token expire →
watch the client renew it → log out → see the old tokens refused.

Run with: python examples/quickstart.py

Requires: pip install -e .
Gateway must be running: http://localhost:3000
(set TASKHUB_ACCESS_TOKEN_EXPIRE_MINUTES=1 on both services to see a renewal)
"""

import asyncio
import os
import sys
import uuid

import httpx

from taskhub.client import RenewalFailed, SessionClient

BASE = os.environ.get("TASKHUB_API_URL", "http://localhost:3000")


async def main():
    run_id = uuid.uuid4().hex[:6]
    signed_out = []

    async with SessionClient(BASE, on_signed_out=lambda: signed_out.append(True)) as client:
        # ── Health check ──────────────────────────────────────────────
        print("Checking gateway health...")
        try:
            resp = await client.get("/api/health")
        except httpx.ConnectError:
            print(f"Gateway not reachable at {BASE}")
            sys.exit(1)
        health = resp.json()
        print(f"  Gateway:      {health['gateway']}")
        print(f"  User service: {health['userService']}")

        # ── Register ──────────────────────────────────────────────────
        print("\n1. Registering...")
        account = await client.register(
            f"demo-{run_id}@example.com", "demo-password-123", display_name="Demo"
        )
        print(f"   Account: {account['email']} roles={account['roles']}")

        # ── Protected route ───────────────────────────────────────────
        print("\n2. Calling /api/auth/me with the bearer token...")
        me = await client.me()
        print(f"   Hello, {me['profile']['displayName']}")

        # ── Renewal ───────────────────────────────────────────────────
        print("\n3. Forcing a stale access token...")
        stale = client.session
        stale.access_token = "expired.or.garbage"
        client.storage.save(stale)
        old_refresh = stale.refresh_token

        results = await asyncio.gather(*(client.get("/api/auth/me") for _ in range(3)))
        print(f"   3 concurrent requests → {[r.status_code for r in results]}")
        print(f"   Refresh token rotated: {client.session.refresh_token != old_refresh}")

        # ── Logout ────────────────────────────────────────────────────
        print("\n4. Logging out...")
        kept = client.session
        await client.logout()
        print(f"   Signed in: {client.is_authenticated}  (on_signed_out fired: {bool(signed_out)})")

        # ── Old tokens ────────────────────────────────────────────────
        print("\n5. Replaying the old session...")
        client.storage.save(kept)
        resp = await client.get("/api/auth/me")
        print(f"   Access token until it expires: {resp.status_code}")
        kept.access_token = "expired.or.garbage"
        client.storage.save(kept)
        try:
            await client.get("/api/auth/me")
        except RenewalFailed as e:
            print(f"   Revoked refresh token refused: {e.__cause__}")

    print("\nDone.")


if __name__ == "__main__":
    asyncio.run(main())
