"""
ParaCore - Handles and handle-indexed registries
================================================

Every cross reference in the sketch is a Handle: an immutable
(kind, owner group, index) triple. Handles are deterministic functions of
their provenance, so regenerating a group yields the same handles for the
same requests and remap roles.

Index layout:
    request-derived entity/param:  (request index << 16) | slot
    group-owned entity/param:      FROM_GROUP | i
    remapped entity:               FROM_REMAP | remap index
    constraint-owned param:        FROM_CONSTRAINT | (constraint index << 4) | i
    constraint equation:           (constraint index << 8) | i
    entity equation:               FROM_ENTITY | (entity index << 4) | i
    group equation:                FROM_GROUP | i
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, Generic, Iterator, List, Optional, TypeVar

from sketcher.errors import InvariantViolation, ssassert


REQUEST_SHIFT = 16
FROM_GROUP = 1 << 40
FROM_REMAP = 1 << 41
FROM_CONSTRAINT = 1 << 42
FROM_ENTITY = 1 << 43
_FLAG_MASK = FROM_GROUP | FROM_REMAP | FROM_CONSTRAINT | FROM_ENTITY


class HandleKind(IntEnum):
    GROUP = 1
    REQUEST = 2
    ENTITY = 3
    PARAM = 4
    CONSTRAINT = 5
    EQUATION = 6


@dataclass(frozen=True, order=True)
class Handle:
    kind: HandleKind
    owner: int
    index: int

    def __repr__(self):
        return f"{self.kind.name[0].lower()}{self.owner}:{self.index:#x}"

    # -- group ------------------------------------------------------------

    @property
    def group(self) -> 'Handle':
        """Handle of the owning group."""
        return Handle(HandleKind.GROUP, self.owner, 0)

    def group_entity(self, i: int) -> 'Handle':
        self._expect(HandleKind.GROUP)
        return Handle(HandleKind.ENTITY, self.owner, FROM_GROUP | i)

    def group_param(self, i: int) -> 'Handle':
        self._expect(HandleKind.GROUP)
        return Handle(HandleKind.PARAM, self.owner, FROM_GROUP | i)

    def group_equation(self, i: int) -> 'Handle':
        self._expect(HandleKind.GROUP)
        return Handle(HandleKind.EQUATION, self.owner, FROM_GROUP | i)

    def remap_entity(self, remap_index: int) -> 'Handle':
        self._expect(HandleKind.GROUP)
        return Handle(HandleKind.ENTITY, self.owner, FROM_REMAP | remap_index)

    # -- request ----------------------------------------------------------

    def request_entity(self, slot: int) -> 'Handle':
        self._expect(HandleKind.REQUEST)
        return Handle(HandleKind.ENTITY, self.owner, (self.index << REQUEST_SHIFT) | slot)

    def request_param(self, i: int) -> 'Handle':
        self._expect(HandleKind.REQUEST)
        return Handle(HandleKind.PARAM, self.owner, (self.index << REQUEST_SHIFT) | i)

    def is_from_request(self) -> bool:
        return self.kind in (HandleKind.ENTITY, HandleKind.PARAM) and not (self.index & _FLAG_MASK)

    def request(self) -> 'Handle':
        """Request that generated this entity or param."""
        ssassert(self.is_from_request(), f"{self!r} was not generated by a request")
        return Handle(HandleKind.REQUEST, self.owner, self.index >> REQUEST_SHIFT)

    # -- constraint -------------------------------------------------------

    def constraint_param(self, i: int) -> 'Handle':
        self._expect(HandleKind.CONSTRAINT)
        return Handle(HandleKind.PARAM, self.owner, FROM_CONSTRAINT | (self.index << 4) | i)

    def constraint_equation(self, i: int) -> 'Handle':
        self._expect(HandleKind.CONSTRAINT)
        return Handle(HandleKind.EQUATION, self.owner, (self.index << 8) | i)

    # -- entity / equation ------------------------------------------------

    def entity_equation(self, i: int) -> 'Handle':
        self._expect(HandleKind.ENTITY)
        return Handle(HandleKind.EQUATION, self.owner, FROM_ENTITY | (self.index << 4) | i)

    def is_from_constraint(self) -> bool:
        return self.kind is HandleKind.EQUATION and not (self.index & _FLAG_MASK)

    def constraint(self) -> 'Handle':
        """Constraint that generated this equation."""
        ssassert(self.is_from_constraint(), f"{self!r} was not generated by a constraint")
        return Handle(HandleKind.CONSTRAINT, self.owner, self.index >> 8)

    def _expect(self, kind: HandleKind):
        if self.kind is not kind:
            raise InvariantViolation(f"Expected a {kind.name} handle, got {self!r}")


def group_handle(n: int) -> Handle:
    return Handle(HandleKind.GROUP, n, 0)


T = TypeVar("T")


class IdList(Generic[T]):
    """
    Insertion-ordered registry of items keyed by their handle `h`.

    Lookups of missing handles through get() are programmer errors;
    find() returns None instead. Plain indices handed out per owner only
    ever grow, so a deleted item's handle is never issued again.
    """

    def __init__(self, items=None):
        self._items: Dict[Handle, T] = {}
        self._next: Dict[int, int] = {}
        for item in items or ():
            self.add(item)

    def add(self, item: T) -> T:
        h = item.h
        ssassert(h not in self._items, f"Duplicate handle {h!r}")
        self._items[h] = item
        if not (h.index & _FLAG_MASK):
            self._next[h.owner] = max(self._next.get(h.owner, 1), h.index + 1)
        return item

    def get(self, h: Handle) -> T:
        item = self._items.get(h)
        if item is None:
            raise InvariantViolation(f"Unknown handle {h!r}")
        return item

    def find(self, h: Optional[Handle]) -> Optional[T]:
        if h is None:
            return None
        return self._items.get(h)

    def remove(self, h: Handle) -> T:
        ssassert(h in self._items, f"Removing unknown handle {h!r}")
        return self._items.pop(h)

    def remove_where(self, predicate: Callable[[T], bool]) -> List[T]:
        removed = [item for item in self._items.values() if predicate(item)]
        for item in removed:
            del self._items[item.h]
        return removed

    def clear_tags(self) -> None:
        for item in self._items.values():
            item.tag = 0

    def remove_tagged(self) -> List[T]:
        return self.remove_where(lambda item: item.tag)

    def next_index(self, owner: int) -> int:
        """Index above every plain index `owner` has ever held here, deleted ones included."""
        return self._next.get(owner, 1)

    def reserve_indices(self, other: 'IdList') -> None:
        """Keeps the counters of `other` where they are ahead, e.g. after a rollback."""
        for owner, n in other._next.items():
            self._next[owner] = max(self._next.get(owner, 1), n)

    def clear(self) -> None:
        self._items.clear()

    def handles(self) -> List[Handle]:
        return list(self._items)

    def __iter__(self) -> Iterator[T]:
        # Snapshot so callers may mutate the registry while iterating
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, h: object) -> bool:
        return h in self._items

    def __repr__(self):
        return f"IdList({len(self._items)} items)"
