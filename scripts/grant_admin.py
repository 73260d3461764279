#!/usr/bin/env python3
"""Grant the admin tier to a Supabase user so they can reach /api/admin routes.

Usage:
    # Using environment variables:
    ADMIN_USER_ID=<supabase uuid> DATABASE_URL=postgresql://... python scripts/grant_admin.py

    # Or with command line args:
    python scripts/grant_admin.py --user-id <supabase uuid> --email admin@example.com

Environment Variables:
    ADMIN_USER_ID: Supabase user id (the ``sub`` claim of the access token)
    ADMIN_EMAIL: Email stored on a newly created profile (optional)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def grant_admin(user_id: str, email: Optional[str] = None, dry_run: bool = False) -> dict:
    """Create or promote the profile for ``user_id``.

    Returns:
        dict with user_id and status ('created', 'promoted', 'already_admin' or 'dry_run')
    """
    # Import here so the environment defaults below apply to the settings
    from wessley.service.runtime import get_runtime

    store = get_runtime().store
    profile = store.get_profile(user_id)

    if profile and profile.is_admin:
        print(f"Profile {user_id} already has the admin tier")
        return {"user_id": user_id, "status": "already_admin"}

    if dry_run:
        action = "promote" if profile else "create"
        print(f"[DRY RUN] Would {action} admin profile {user_id}")
        return {"user_id": user_id, "status": "dry_run"}

    fields = {"subscription_tier": "admin", "subscription_status": "active"}
    if profile:
        store.update_profile(user_id, **fields)
        print(f"Promoted profile {user_id} to admin")
        return {"user_id": user_id, "status": "promoted"}

    store.upsert_profile(user_id, email=email, **fields)
    print(f"Created admin profile {user_id}")
    return {"user_id": user_id, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Grant the Wessley admin tier to a user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--user-id",
        default=os.environ.get("ADMIN_USER_ID"),
        help="Supabase user id (or set ADMIN_USER_ID env var)",
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Email for a newly created profile (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.user_id:
        print("Error: --user-id or ADMIN_USER_ID environment variable required")
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    # A one-shot script does not need Redis for rate limits or idempotency
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = grant_admin(args.user_id, args.email, args.dry_run)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "already_admin":
        print("\nNo changes needed - profile is already an admin.")


if __name__ == "__main__":
    main()
