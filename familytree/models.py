from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Union as _TypeUnion


class Sex(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class UnionKind(str, Enum):
    COUPLE = "couple"
    MARRIED = "married"


@dataclass(frozen=True)
class Person:
    id: str
    first_name: str
    last_name: str
    sex: Sex | None = None
    birth_date: date | None = None
    death_date: date | None = None
    birth_place: str | None = None
    father_id: str | None = None
    mother_id: str | None = None
    is_private: bool = False
    created_at: datetime | None = None

    @property
    def is_deceased(self) -> bool:
        return self.death_date is not None


@dataclass(frozen=True)
class Union:
    """A recorded relationship between two people.

    ``member1_id``/``member2_id`` have no role meaning; either person may be
    stored in either slot.
    """

    id: str
    member1_id: str
    member2_id: str
    kind: UnionKind = UnionKind.COUPLE
    start_date: date | None = None
    end_date: date | None = None
    created_at: datetime | None = None

    @property
    def has_ended(self) -> bool:
        return self.end_date is not None

    def involves(self, person_id: str) -> bool:
        return person_id in (self.member1_id, self.member2_id)

    def partner_of(self, person_id: str) -> str:
        return self.member2_id if self.member1_id == person_id else self.member1_id


# ---------------------------------------------------------------------------
# Co-parent keys
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Known:
    person_id: str


@dataclass(frozen=True)
class Unknown:
    pass


UNKNOWN = Unknown()

CoParent = _TypeUnion[Known, Unknown]


def coparent(person_id: str | None) -> CoParent:
    return Known(person_id) if person_id else UNKNOWN


@dataclass(frozen=True)
class PersonFilter:
    """Equality constraints for ``list_persons_by``.

    ``None`` leaves a parent field unconstrained, ``UNKNOWN`` matches
    ``IS NULL`` and ``Known(id)`` matches that id.
    """

    father: CoParent | None = None
    mother: CoParent | None = None
    exclude_id: str | None = None

    def matches(self, p: Person) -> bool:
        if self.exclude_id is not None and p.id == self.exclude_id:
            return False
        if self.father is not None and coparent(p.father_id) != self.father:
            return False
        if self.mother is not None and coparent(p.mother_id) != self.mother:
            return False
        return True


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass
class OtherUnion:
    """One partition of a parent's children by their other parent.

    ``partner`` is None either when no co-parent is known at all
    (``coparent`` is ``UNKNOWN``) or when the co-parent id no longer resolves.
    """

    coparent: CoParent
    union: Union | None
    partner: Person | None
    children: list[Person] = field(default_factory=list)


@dataclass
class OwnUnion:
    union: Union
    partner: Person
    children: list[Person] = field(default_factory=list)


@dataclass
class Snapshot:
    person: Person
    father: Person | None = None
    mother: Person | None = None
    siblings: list[Person] = field(default_factory=list)
    parent_union: Union | None = None
    mother_other_unions: list[OtherUnion] = field(default_factory=list)
    father_other_unions: list[OtherUnion] = field(default_factory=list)
    own_unions: list[OwnUnion] = field(default_factory=list)
