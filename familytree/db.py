from __future__ import annotations

import os
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator

import psycopg

_SCHEMA_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set")
    return url


def get_schema() -> str | None:
    schema = (os.environ.get("TREE_DB_SCHEMA") or "").strip().lower()
    if not schema:
        return None
    if not _SCHEMA_RE.match(schema):
        raise RuntimeError(f"TREE_DB_SCHEMA is not a valid schema name: {schema!r}")
    return schema


@asynccontextmanager
async def db_conn() -> AsyncIterator[psycopg.AsyncConnection]:
    """Yield an async autocommit connection with the configured ``search_path``.

    Lookups are read-only; each statement runs in its own transaction.

    - If ``TREE_DB_SCHEMA`` is set, the schema comes first, then ``public``.
    - Otherwise the server default search path is left alone.
    """
    async with await psycopg.AsyncConnection.connect(get_database_url(), autocommit=True) as conn:
        schema = get_schema()
        if schema:
            await conn.execute(f"SET search_path TO {schema}, public")
        yield conn
