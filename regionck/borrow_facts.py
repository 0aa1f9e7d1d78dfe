"""
regionck.borrow_facts
=====================

Borrow, access and scope-exit facts consumed by
:class:`regionck.conflicts.ConflictDetector`.

A host with its own borrow-fact collaborator passes these lists on the
:class:`regionck.body.FunctionBody`; otherwise :func:`derive_facts` reads
them off the statements:

==============================  ==========================================
statement                       facts
==============================  ==========================================
``d = &'r x``                   borrow of ``x`` (shared), READ of ``x``,
                                WRITE of ``d``
``d = &'r mut x``               borrow of ``x`` (mutable), WRITE of ``x``,
                                WRITE of ``d``
``d = copy x`` / ``move x``     READ / MOVE of ``x``, WRITE of ``d``
``d = f(args)``                 READ / MOVE per argument, WRITE of ``d``
``use(ops)``, ``switch op``     READ / MOVE per operand
``drop(v)``                     shallow WRITE of ``v``
``storage_dead(v)``             scope exit of ``v``
==============================  ==========================================

Destination writes are shallow: overwriting ``d`` does not touch memory
reached through a reference previously stored in ``d``.  An access through
a reference records the lifetime of the first reference it dereferences
as ``through``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from regionck.body import FunctionBody
from regionck.ctrlflow_graph import Point
from regionck.mir import (
    Assign,
    Borrow,
    Const,
    Deref,
    Drop,
    Move,
    Operand,
    Place,
    StorageDead,
    Switch,
    Use,
    operand_place,
)
from regionck.types import Ref

logger = logging.getLogger(__name__)


class BorrowKind(enum.Enum):
    SHARED = "shared"
    MUTABLE = "mutable"


class AccessKind(enum.Enum):
    READ = "read"
    WRITE = "write"
    MOVE = "move"


@dataclass(frozen=True)
class BorrowFact:
    """``path`` is borrowed for ``'lifetime`` at ``point``."""

    lifetime: str
    kind: BorrowKind
    path: Place
    point: Point


@dataclass(frozen=True)
class AccessFact:
    """``path`` is accessed at ``point``, optionally through ``'through``.

    A *shallow* WRITE overwrites ``path`` itself (assignment destination,
    drop) and leaves memory behind a reference stored there untouched.
    """

    kind: AccessKind
    path: Place
    point: Point
    through: Optional[str] = None
    shallow: bool = False


@dataclass(frozen=True)
class ScopeExitFact:
    """Storage of ``variable`` is deallocated at ``point``."""

    variable: str
    point: Point


@dataclass
class BorrowFacts:
    borrows: List[BorrowFact] = field(default_factory=list)
    accesses: List[AccessFact] = field(default_factory=list)
    scope_exits: List[ScopeExitFact] = field(default_factory=list)


def through_lifetime(body: FunctionBody, place: Place) -> Optional[str]:
    """Lifetime of the first reference *place* dereferences, if any."""
    for k, proj in enumerate(place.projections):
        if isinstance(proj, Deref):
            ty = body.place_type(Place(place.base, place.projections[:k]))
            return ty.lifetime if isinstance(ty, Ref) else None
    return None


def _operand_access(body: FunctionBody, op: Operand, point: Point) -> Optional[AccessFact]:
    place = operand_place(op)
    if place is None:
        return None
    kind = AccessKind.MOVE if isinstance(op, Move) else AccessKind.READ
    return AccessFact(kind, place, point, through_lifetime(body, place))


def _access(
    body: FunctionBody, kind: AccessKind, place: Place, point: Point, shallow: bool = False,
) -> AccessFact:
    return AccessFact(kind, place, point, through_lifetime(body, place), shallow)


def derive_facts(body: FunctionBody) -> BorrowFacts:
    """Facts for *body*, taking explicit lists from the body where present."""
    facts = BorrowFacts()
    for point in body.graph.all_points():
        elem = body.graph.element_at(point)
        if isinstance(elem, Assign):
            rv = elem.rvalue
            if isinstance(rv, Borrow):
                kind = BorrowKind.MUTABLE if rv.mutable else BorrowKind.SHARED
                facts.borrows.append(BorrowFact(rv.lifetime, kind, rv.place, point))
                access = AccessKind.WRITE if rv.mutable else AccessKind.READ
                facts.accesses.append(_access(body, access, rv.place, point))
            elif not isinstance(rv, Const):
                for op in rv.operands():
                    fact = _operand_access(body, op, point)
                    if fact is not None:
                        facts.accesses.append(fact)
            facts.accesses.append(
                _access(body, AccessKind.WRITE, elem.place, point, shallow=True)
            )
        elif isinstance(elem, (Use, Switch)):
            ops: Tuple[Operand, ...] = elem.operands if isinstance(elem, Use) else (elem.operand,)
            for op in ops:
                fact = _operand_access(body, op, point)
                if fact is not None:
                    facts.accesses.append(fact)
        elif isinstance(elem, Drop):
            facts.accesses.append(
                _access(body, AccessKind.WRITE, Place(elem.variable), point, shallow=True)
            )
        elif isinstance(elem, StorageDead):
            facts.scope_exits.append(ScopeExitFact(elem.variable, point))

    if body.borrows is not None:
        facts.borrows = list(body.borrows)
    if body.accesses is not None:
        facts.accesses = list(body.accesses)
    if body.scope_exits is not None:
        facts.scope_exits = list(body.scope_exits)
    logger.debug(
        "%s: %d borrows, %d accesses, %d scope exits",
        body.name, len(facts.borrows), len(facts.accesses), len(facts.scope_exits),
    )
    return facts
