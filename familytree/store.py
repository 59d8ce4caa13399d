"""Read access to members and unions.

Every list returned here is ordered by ``(created_at, id)`` so that callers
building layouts from it get the same result on every run.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Protocol

import psycopg

try:
    from .db import db_conn
    from .models import Known, Person, PersonFilter, Sex, Union, UnionKind, Unknown
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from db import db_conn
    from models import Known, Person, PersonFilter, Sex, Union, UnionKind, Unknown

log = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """A lookup against the backing store failed."""


class TreeStore(Protocol):
    async def get_person(self, person_id: str) -> Person | None: ...

    async def list_persons_by(self, flt: PersonFilter) -> list[Person]: ...

    async def list_unions_involving(self, person_id: str) -> list[Union]: ...

    async def find_union_between(self, a: str, b: str) -> Union | None: ...


_PERSON_COLUMNS = """
id, first_name, last_name, gender, birth_date, death_date, birth_place,
father_id, mother_id, is_private, created_at
""".strip()

_UNION_COLUMNS = "id, member1_id, member2_id, union_type, union_date, separation_date, created_at"


def _sex_or_none(raw: Any) -> Sex | None:
    if raw is None:
        return None
    try:
        return Sex(str(raw).strip().lower())
    except ValueError:
        return None


def _kind_or_default(raw: Any) -> UnionKind:
    try:
        return UnionKind(str(raw or "").strip().lower())
    except ValueError:
        return UnionKind.COUPLE


def _person_from_row(r: tuple[Any, ...]) -> Person:
    (
        pid,
        first_name,
        last_name,
        gender,
        birth_date,
        death_date,
        birth_place,
        father_id,
        mother_id,
        is_private,
        created_at,
    ) = r
    return Person(
        id=str(pid),
        first_name=first_name or "",
        last_name=last_name or "",
        sex=_sex_or_none(gender),
        birth_date=birth_date,
        death_date=death_date,
        birth_place=birth_place,
        father_id=str(father_id) if father_id else None,
        mother_id=str(mother_id) if mother_id else None,
        is_private=bool(is_private),
        created_at=created_at,
    )


def _union_from_row(r: tuple[Any, ...]) -> Union:
    uid, m1, m2, kind, start, end, created_at = r
    return Union(
        id=str(uid),
        member1_id=str(m1),
        member2_id=str(m2),
        kind=_kind_or_default(kind),
        start_date=start,
        end_date=end,
        created_at=created_at,
    )


def _parent_clause(column: str, value: Known | Unknown | None, params: list[Any]) -> str | None:
    if value is None:
        return None
    if isinstance(value, Known):
        params.append(value.person_id)
        return f"{column} = %s"
    return f"{column} IS NULL"


class PostgresStore:
    """``TreeStore`` over an open psycopg async connection."""

    def __init__(self, conn: psycopg.AsyncConnection) -> None:
        self._conn = conn

    async def _fetchall(self, query: str, params: tuple[Any, ...]) -> list[tuple[Any, ...]]:
        try:
            cur = await self._conn.execute(query, params)
            return [tuple(r) for r in await cur.fetchall()]
        except psycopg.Error as e:
            await self._recover()
            raise StoreError(str(e)) from e

    async def _recover(self) -> None:
        # A failed statement aborts the open transaction; later lookups on the
        # same connection need it rolled back.
        if self._conn.autocommit:
            return
        try:
            await self._conn.rollback()
        except psycopg.Error as e:
            log.warning("rollback after failed lookup failed: %s", e)

    async def get_person(self, person_id: str) -> Person | None:
        rows = await self._fetchall(
            f"""
            SELECT {_PERSON_COLUMNS}
            FROM members
            WHERE id = %s
            LIMIT 1
            """.strip(),
            (person_id,),
        )
        return _person_from_row(rows[0]) if rows else None

    async def list_persons_by(self, flt: PersonFilter) -> list[Person]:
        params: list[Any] = []
        clauses = [
            c
            for c in (
                _parent_clause("father_id", flt.father, params),
                _parent_clause("mother_id", flt.mother, params),
            )
            if c
        ]
        if flt.exclude_id is not None:
            clauses.append("id <> %s")
            params.append(flt.exclude_id)
        where = " AND ".join(clauses) if clauses else "TRUE"

        rows = await self._fetchall(
            f"""
            SELECT {_PERSON_COLUMNS}
            FROM members
            WHERE {where}
            ORDER BY created_at, id
            """.strip(),
            tuple(params),
        )
        return [_person_from_row(r) for r in rows]

    async def list_persons(self, *, limit: int, offset: int) -> list[Person]:
        rows = await self._fetchall(
            f"""
            SELECT {_PERSON_COLUMNS}
            FROM members
            ORDER BY last_name, first_name, id
            LIMIT %s OFFSET %s
            """.strip(),
            (limit, offset),
        )
        return [_person_from_row(r) for r in rows]

    async def list_unions_involving(self, person_id: str) -> list[Union]:
        rows = await self._fetchall(
            f"""
            SELECT {_UNION_COLUMNS}
            FROM unions
            WHERE member1_id = %s OR member2_id = %s
            ORDER BY created_at, id
            """.strip(),
            (person_id, person_id),
        )
        return [_union_from_row(r) for r in rows]

    async def find_union_between(self, a: str, b: str) -> Union | None:
        rows = await self._fetchall(
            f"""
            SELECT {_UNION_COLUMNS}
            FROM unions
            WHERE (member1_id = %s AND member2_id = %s)
               OR (member1_id = %s AND member2_id = %s)
            ORDER BY created_at, id
            LIMIT 1
            """.strip(),
            (a, b, b, a),
        )
        return _union_from_row(rows[0]) if rows else None


@asynccontextmanager
async def open_store() -> AsyncIterator[PostgresStore]:
    """Open a connection and wrap it as a ``PostgresStore`` for one unit of work."""
    try:
        async with db_conn() as conn:
            yield PostgresStore(conn)
    except psycopg.Error as e:
        raise StoreError(str(e)) from e
