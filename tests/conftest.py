from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import AsyncIterator

import pytest

from familytree.models import Person, PersonFilter, Sex, Union, UnionKind
from familytree.store import StoreError

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeStore:
    """In-memory stand-in for ``PostgresStore``.

    Records are stamped with increasing ``created_at`` values so list ordering
    matches insertion order, like the real store's ``ORDER BY created_at, id``.
    """

    def __init__(self) -> None:
        self.people: dict[str, Person] = {}
        self.unions: list[Union] = []
        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        self.gate: asyncio.Event | None = None
        self._tick = 0

    def _stamp(self) -> datetime:
        self._tick += 1
        return _EPOCH + timedelta(seconds=self._tick)

    def person(
        self,
        pid: str,
        *,
        father: str | None = None,
        mother: str | None = None,
        sex: Sex | None = None,
        first_name: str | None = None,
        last_name: str = "Martin",
        **kw,
    ) -> Person:
        p = Person(
            id=pid,
            first_name=first_name or pid,
            last_name=last_name,
            sex=sex,
            father_id=father,
            mother_id=mother,
            created_at=self._stamp(),
            **kw,
        )
        self.people[pid] = p
        return p

    def union(self, uid: str, a: str, b: str, *, kind: UnionKind = UnionKind.COUPLE, **kw) -> Union:
        u = Union(id=uid, member1_id=a, member2_id=b, kind=kind, created_at=self._stamp(), **kw)
        self.unions.append(u)
        return u

    def delete(self, pid: str) -> None:
        # Simulates a concurrent delete that has not nulled references yet.
        del self.people[pid]

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.gate is not None:
            await self.gate.wait()
        if name in self.fail_on:
            raise StoreError(f"{name} failed")

    async def get_person(self, person_id: str) -> Person | None:
        await self._enter("get_person")
        return self.people.get(person_id)

    async def list_persons_by(self, flt: PersonFilter) -> list[Person]:
        await self._enter("list_persons_by")
        return [p for p in self.people.values() if flt.matches(p)]

    async def list_persons(self, *, limit: int, offset: int) -> list[Person]:
        await self._enter("list_persons")
        ordered = sorted(self.people.values(), key=lambda p: (p.last_name, p.first_name, p.id))
        return ordered[offset : offset + limit]

    async def list_unions_involving(self, person_id: str) -> list[Union]:
        await self._enter("list_unions_involving")
        return [u for u in self.unions if u.involves(person_id)]

    async def find_union_between(self, a: str, b: str) -> Union | None:
        await self._enter("find_union_between")
        for u in self.unions:
            if {u.member1_id, u.member2_id} == {a, b}:
                return u
        return None

    def factory(self):
        @asynccontextmanager
        async def _open() -> AsyncIterator[FakeStore]:
            yield self

        return _open


@pytest.fixture()
def fixed_today() -> date:
    # Keep tests deterministic.
    return date(2026, 1, 20)


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def nuclear(store: FakeStore) -> FakeStore:
    """Father F and mother M (married) with children A, B, C."""
    store.person("F", sex=Sex.MALE)
    store.person("M", sex=Sex.FEMALE)
    store.union("FM", "F", "M", kind=UnionKind.MARRIED)
    for pid in ("A", "B", "C"):
        store.person(pid, father="F", mother="M")
    return store
