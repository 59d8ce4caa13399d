"""Command-line tools for the family tree service.

Usage:
    python -m familytree.cli init-db
    python -m familytree.cli snapshot <person_id>
    python -m familytree.cli layout <person_id> --expand <id> --expand <id>
    python -m familytree.cli issue-token --user-id=42 --email=jan@example.org --role=admin
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import psycopg

from familytree.auth import create_jwt
from familytree.db import get_database_url
from familytree.resolve import PersonNotFound, resolve_snapshot
from familytree.serialize import _layout_to_public, _snapshot_to_public
from familytree.session import TreeSession
from familytree.store import StoreError, open_store

_SCHEMA_SQL = Path(__file__).resolve().parent.parent / "sql" / "schema.sql"


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def cmd_init_db(args: argparse.Namespace) -> None:
    schema_sql = Path(args.schema_sql)
    if not schema_sql.exists():
        raise SystemExit(f"schema file not found: {schema_sql}")
    with psycopg.connect(get_database_url()) as conn:
        conn.execute(schema_sql.read_text(encoding="utf-8"))
        conn.commit()
    print(f"Schema applied from {schema_sql}.")


async def _snapshot(person_id: str) -> dict[str, Any]:
    async with open_store() as store:
        snap = await resolve_snapshot(store, person_id)
    return _snapshot_to_public(snap, skip_privacy=True)


async def _layout(person_id: str, expand: list[str]) -> dict[str, Any]:
    session = TreeSession(open_store)
    await session.select_person(person_id)
    for pid in expand:
        if session.layout.position_of(pid) is None:
            logging.getLogger(__name__).warning("%s is not on screen yet, expanding at origin", pid)
        await session.expand(pid)
    return _layout_to_public(session.layout, skip_privacy=True)


def cmd_snapshot(args: argparse.Namespace) -> None:
    _print_json(asyncio.run(_snapshot(args.person_id)))


def cmd_layout(args: argparse.Namespace) -> None:
    _print_json(asyncio.run(_layout(args.person_id, args.expand or [])))


def cmd_issue_token(args: argparse.Namespace) -> None:
    print(create_jwt(user_id=args.user_id, email=args.email, role=args.role))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Family tree tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create the members/unions tables")
    p.add_argument("--schema-sql", default=str(_SCHEMA_SQL), help="Path to schema.sql")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("snapshot", help="Print the one-hop neighborhood of a member as JSON")
    p.add_argument("person_id")
    p.set_defaults(func=cmd_snapshot)

    p = sub.add_parser("layout", help="Print a positioned tree for a member as JSON")
    p.add_argument("person_id")
    p.add_argument("--expand", action="append", help="Expand this member after the root (repeatable)")
    p.set_defaults(func=cmd_layout)

    p = sub.add_parser("issue-token", help="Mint a session token for local testing")
    p.add_argument("--user-id", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--role", default="user", choices=["user", "admin"])
    p.set_defaults(func=cmd_issue_token)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        args.func(args)
    except PersonNotFound as e:
        raise SystemExit(f"member not found: {e.person_id}")
    except (StoreError, RuntimeError) as e:
        raise SystemExit(f"error: {e}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
