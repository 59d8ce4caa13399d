"""Tree-viewing sessions.

A ``TreeSession`` owns one ``TreeLayout`` plus the bookkeeping needed to
drive it from UI events:

- ``select_person`` starts over from a new focal person at the origin.
- ``expand`` reveals the neighborhood of a person already on screen.
- ``navigate_to`` / ``navigate_back`` move the focus between people already
  on screen, keeping a history; the layout keeps accumulating.

Every reset bumps ``generation``. An expansion remembers the generation it
started under and throws its result away if a reset happened while it was
waiting on the store.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import AsyncContextManager, Callable

try:
    from .layout import ORIGIN, LayoutConfig, LayoutDelta, Position, TreeLayout
    from .resolve import resolve_snapshot
    from .store import TreeStore
except ImportError:  # pragma: no cover
    # Support running with CWD=familytree (e.g., `python -m uvicorn main:app`).
    from layout import ORIGIN, LayoutConfig, LayoutDelta, Position, TreeLayout
    from resolve import resolve_snapshot
    from store import TreeStore

log = logging.getLogger(__name__)

StoreFactory = Callable[[], AsyncContextManager[TreeStore]]


@dataclass
class ExpandResult:
    generation: int
    delta: LayoutDelta = field(default_factory=LayoutDelta)
    stale: bool = False


class TreeSession:
    def __init__(
        self,
        store_factory: StoreFactory,
        *,
        config: LayoutConfig | None = None,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.layout = TreeLayout(config)
        self.root_id: str | None = None
        self.focus_id: str | None = None
        self.generation = 0
        self.history: list[str] = []
        self._store_factory = store_factory
        self._lock = asyncio.Lock()

    def reset(self, root_id: str | None = None) -> None:
        self.generation += 1
        self.layout.clear()
        self.root_id = root_id
        self.focus_id = root_id
        log.info("session %s reset (generation %d, root %s)", self.id, self.generation, root_id)

    async def select_person(self, person_id: str) -> ExpandResult:
        """Top-level selection: discard everything and expand ``person_id`` at the origin."""
        self.history.clear()
        self.reset(person_id)
        return await self.expand(person_id, ORIGIN)

    async def navigate_to(self, person_id: str) -> ExpandResult:
        """Click-to-navigate: move focus to ``person_id`` and expand it in place."""
        prev = self.focus_id
        result = await self.expand(person_id)
        if not result.stale:
            if prev is not None and prev != person_id:
                self.history.append(prev)
            self.focus_id = person_id
        return result

    async def navigate_back(self) -> ExpandResult | None:
        if not self.history:
            return None
        prev = self.history.pop()
        result = await self.expand(prev)
        if not result.stale:
            self.focus_id = prev
        return result

    async def expand(self, person_id: str, anchor: Position | None = None) -> ExpandResult:
        """Resolve ``person_id`` and merge it into the layout.

        Raises ``PersonNotFound`` when the person does not exist. Expanding a
        person twice returns an empty delta.
        """

        generation = self.generation
        async with self._lock:
            if generation != self.generation:
                return ExpandResult(generation=generation, stale=True)
            if self.layout.is_expanded(person_id):
                return ExpandResult(generation=generation)

            async with self._store_factory() as store:
                snap = await resolve_snapshot(store, person_id)

            if generation != self.generation:
                log.info(
                    "session %s dropping stale expansion of %s (generation %d != %d)",
                    self.id,
                    person_id,
                    generation,
                    self.generation,
                )
                return ExpandResult(generation=generation, stale=True)

            if self.root_id is None:
                self.focus_id = person_id
                self.root_id = person_id
            start = self.layout.position_of(person_id) or anchor or ORIGIN
            delta = self.layout.merge(snap, start)
            if delta.overlaps:
                log.debug("session %s: %d node(s) placed with overlap", self.id, delta.overlaps)
            return ExpandResult(generation=generation, delta=delta)


class SessionRegistry:
    """Bounded, insertion-ordered set of live sessions; the oldest is evicted first."""

    def __init__(self, store_factory: StoreFactory, *, max_sessions: int = 256, config: LayoutConfig | None = None) -> None:
        self._store_factory = store_factory
        self._config = config
        self._max = max(1, max_sessions)
        self._sessions: OrderedDict[str, TreeSession] = OrderedDict()

    def create(self) -> TreeSession:
        session = TreeSession(self._store_factory, config=self._config)
        self._sessions[session.id] = session
        while len(self._sessions) > self._max:
            evicted_id, _ = self._sessions.popitem(last=False)
            log.info("evicted tree session %s", evicted_id)
        return session

    def get(self, session_id: str) -> TreeSession | None:
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
        return session

    def drop(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)
