#!/usr/bin/env python3
"""Admin tooling for the key and membership store.

Commands:
- init-db       create tables
- create-org    create an organization
- add-member    add (or re-role) a subject in an organization
- issue-key     issue an API key for a subject; prints the plaintext once
- list-keys     list a subject's keys (never prints plaintext)
- revoke-key    revoke a subject's key
- cleanup-keys  physically delete all keys of a subject

The database comes from ``--database-url`` or ``DATABASE_URL``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime
from pathlib import Path
import sys
from typing import Any

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from dotenv import load_dotenv  # noqa: E402

from common.models import Role  # noqa: E402
from common.settings import Settings  # noqa: E402
from db.postgres import (  # noqa: E402
    add_member,
    close_db,
    configure_engine,
    create_organization,
    get_organization_by_id,
    get_session,
    init_db,
)
from rest.services.api_keys import ApiKeyService  # noqa: E402


def _key_summary(api_key) -> dict[str, Any]:
    return {
        "id": api_key.id,
        "key_prefix": api_key.key_prefix,
        "label": api_key.label,
        "created_at": api_key.created_at.isoformat(),
        "last_used_at": api_key.last_used_at.isoformat() if api_key.last_used_at else None,
        "expires_at": api_key.expires_at.isoformat() if api_key.expires_at else None,
        "revoked": api_key.revoked,
    }


async def run(args: argparse.Namespace) -> dict[str, Any]:
    """Execute one command against an already configured engine."""
    if args.cmd == "init-db":
        await init_db()
        return {"status": "ok"}

    async with get_session() as session:
        if args.cmd == "create-org":
            org = await create_organization(session, args.name)
            return {"status": "ok", "org_id": org.id, "name": org.name}

        if args.cmd == "add-member":
            if not await get_organization_by_id(session, args.org_id):
                raise SystemExit(f"organization not found: {args.org_id}")
            membership = await add_member(session, args.org_id, args.user_id, Role(args.role))
            return {
                "status": "ok",
                "org_id": membership.org_id,
                "user_id": membership.user_id,
                "role": membership.role.value,
            }

        service = ApiKeyService(session)
        if args.cmd == "issue-key":
            expires_at = datetime.fromisoformat(args.expires_at) if args.expires_at else None
            full_key, api_key = await service.create(args.user_id, label=args.label, expires_at=expires_at)
            return {"status": "ok", "key": full_key, **_key_summary(api_key)}

        if args.cmd == "list-keys":
            keys = await service.list(args.user_id)
            return {"count": len(keys), "keys": [_key_summary(k) for k in keys]}

        if args.cmd == "revoke-key":
            await service.revoke(args.user_id, args.key_id)
            return {"status": "ok", "key_id": args.key_id}

        if args.cmd == "cleanup-keys":
            deleted = await service.delete_all(args.user_id)
            return {"status": "ok", "deleted": deleted}

    raise SystemExit("unhandled command")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage analytics API keys and memberships.")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy async URL (default: DATABASE_URL).")

    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init-db", help="Create database tables.")

    p_org = sub.add_parser("create-org", help="Create an organization.")
    p_org.add_argument("--name", required=True, help="Organization name.")

    p_member = sub.add_parser("add-member", help="Add a subject to an organization.")
    p_member.add_argument("--org-id", required=True, help="Organization ID.")
    p_member.add_argument("--user-id", required=True, help="Subject ID from the identity provider.")
    p_member.add_argument("--role", default=Role.MEMBER.value, choices=[r.value for r in Role])

    p_issue = sub.add_parser("issue-key", help="Issue an API key.")
    p_issue.add_argument("--user-id", required=True, help="Key owner.")
    p_issue.add_argument("--label", default=None, help="Human readable name.")
    p_issue.add_argument("--expires-at", default=None, help="ISO-8601 expiry (UTC if naive).")

    p_list = sub.add_parser("list-keys", help="List a subject's API keys.")
    p_list.add_argument("--user-id", required=True, help="Key owner.")

    p_revoke = sub.add_parser("revoke-key", help="Revoke an API key.")
    p_revoke.add_argument("--user-id", required=True, help="Key owner.")
    p_revoke.add_argument("--key-id", required=True, help="API key ID.")

    p_cleanup = sub.add_parser("cleanup-keys", help="Delete every API key of a subject.")
    p_cleanup.add_argument("--user-id", required=True, help="Key owner.")

    return parser


async def _amain(args: argparse.Namespace) -> dict[str, Any]:
    settings = Settings.from_env()
    configure_engine(args.database_url or settings.database_url, pool_timeout=settings.db_pool_timeout)
    try:
        return await run(args)
    finally:
        await close_db()


def main() -> int:
    load_dotenv()
    args = build_parser().parse_args()
    result = asyncio.run(_amain(args))
    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
