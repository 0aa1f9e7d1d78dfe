"""
regionck.constraints
====================

Constraint model and the single-pass constraint generator.

Two constraint shapes are produced:

``LiveConstraint(L, P)``
    region ``L`` must contain point ``P``.
``OutlivesConstraint(L1, L2, P)``
    starting at ``P``, region ``L1`` must contain every point reachable
    from ``P`` without leaving region ``L2``.  This is the
    location-sensitive reading of ``'L1: 'L2``.

The generator performs no search and no fixpoint: one walk over the
points consulting :class:`regionck.liveness.LivenessAnalyzer`, one walk
over the statements relating types, and one over the external
obligations.

Public API
----------
    ConstraintOrigin     - why a constraint exists
    LiveConstraint       - ``Live(L, P)``
    OutlivesConstraint   - ``Outlives(L1, L2, P)``
    ConstraintSet        - append-only container, frozen before solving
    ConstraintGenerator  - body + liveness -> ConstraintSet
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from regionck.body import FunctionBody, OutlivesObligation, SubtypeObligation
from regionck.ctrlflow_graph import ControlFlowGraph, Point
from regionck.errors import (
    FrozenConstraintSetError,
    UnknownLifetimeError,
    UnknownPointError,
)
from regionck.liveness import LivenessAnalyzer
from regionck.mir import Assign, Borrow, Call, Deref, Place, Statement
from regionck.types import Ref, Ty, Variance, relate_types

logger = logging.getLogger(__name__)


# ===================================================================
#  CONSTRAINTS
# ===================================================================

class ConstraintOrigin(enum.Enum):
    """Why a constraint was emitted; carried for explanation only."""
    LIVENESS = "liveness"
    ASSIGNMENT = "assignment"
    CALL_ARGUMENT = "call-argument"
    CALL_RETURN = "call-return"
    REBORROW = "reborrow"
    OBLIGATION = "obligation"


@dataclass(frozen=True)
class LiveConstraint:
    lifetime: str
    point: Point
    origin: ConstraintOrigin = ConstraintOrigin.LIVENESS

    def __str__(self) -> str:
        return f"Live('{self.lifetime}, {self.point})"


@dataclass(frozen=True)
class OutlivesConstraint:
    """``'longer: 'shorter @ point``."""
    longer: str
    shorter: str
    point: Point
    origin: ConstraintOrigin = ConstraintOrigin.ASSIGNMENT

    def __str__(self) -> str:
        return f"('{self.longer}: '{self.shorter}) @ {self.point}"


Constraint = Union[LiveConstraint, OutlivesConstraint]


class ConstraintSet:
    """Append-only set of constraints over one graph.

    Every constraint is checked against the graph and the declared
    lifetimes when appended.  After :meth:`freeze` no more constraints may
    be added.  Duplicate constraints are ignored; the first origin wins.

    Raises
    ------
    UnknownLifetimeError, UnknownPointError
        On constraints referring to ids outside the function.
    FrozenConstraintSetError
        When appending to a frozen set.
    """

    def __init__(self, graph: ControlFlowGraph, lifetimes: Iterable[str]) -> None:
        self.graph = graph
        self.lifetimes: Tuple[str, ...] = tuple(dict.fromkeys(lifetimes))
        self._known: Set[str] = set(self.lifetimes)
        self.live: List[LiveConstraint] = []
        self.outlives: List[OutlivesConstraint] = []
        self._seen: Set[Tuple] = set()
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "ConstraintSet":
        self._frozen = True
        return self

    def _check(self, point: Point, *lifetimes: str) -> None:
        if self._frozen:
            raise FrozenConstraintSetError("constraint set is frozen")
        for lt in lifetimes:
            if lt not in self._known:
                raise UnknownLifetimeError(lt)
        if point not in self.graph:
            raise UnknownPointError(point)

    def add_live(
        self,
        lifetime: str,
        point: Point,
        origin: ConstraintOrigin = ConstraintOrigin.LIVENESS,
    ) -> bool:
        """Append ``Live(lifetime, point)``; ``False`` if already present."""
        self._check(point, lifetime)
        key = ("live", lifetime, point)
        if key in self._seen:
            return False
        self._seen.add(key)
        self.live.append(LiveConstraint(lifetime, point, origin))
        return True

    def add_outlives(
        self,
        longer: str,
        shorter: str,
        point: Point,
        origin: ConstraintOrigin = ConstraintOrigin.ASSIGNMENT,
    ) -> bool:
        """Append ``Outlives(longer, shorter, point)``.

        Trivial ``'a: 'a`` constraints are dropped; returns ``False`` when
        nothing was added.
        """
        self._check(point, longer, shorter)
        if longer == shorter:
            return False
        key = ("outlives", longer, shorter, point)
        if key in self._seen:
            return False
        self._seen.add(key)
        self.outlives.append(OutlivesConstraint(longer, shorter, point, origin))
        return True

    def add(self, constraint: Constraint) -> bool:
        if isinstance(constraint, LiveConstraint):
            return self.add_live(constraint.lifetime, constraint.point, constraint.origin)
        return self.add_outlives(
            constraint.longer, constraint.shorter, constraint.point, constraint.origin
        )

    def copy(self) -> "ConstraintSet":
        """An unfrozen copy with the same contents."""
        other = ConstraintSet(self.graph, self.lifetimes)
        for c in self:
            other.add(c)
        return other

    def by_shorter(self) -> Dict[str, List[OutlivesConstraint]]:
        """Outlives constraints grouped by the region they read."""
        index: Dict[str, List[OutlivesConstraint]] = {lt: [] for lt in self.lifetimes}
        for c in self.outlives:
            index[c.shorter].append(c)
        return index

    def __iter__(self) -> Iterator[Constraint]:
        yield from self.live
        yield from self.outlives

    def __len__(self) -> int:
        return len(self.live) + len(self.outlives)

    def __repr__(self) -> str:
        state = "frozen" if self._frozen else "open"
        return f"ConstraintSet({len(self.live)} live, {len(self.outlives)} outlives, {state})"


# ===================================================================
#  GENERATOR
# ===================================================================

class ConstraintGenerator:
    """Builds the :class:`ConstraintSet` of one function in a single pass.

    Subtyping events and the constraints they give rise to:

    * ``place = rvalue``: ``T(rvalue) <: T(place)`` at the next point.
    * ``place = f(args)``: each ``T(arg) <: T(param)`` and
      ``T(return) <: T(place)`` at the next point.
    * ``place = &'r ... *q ...``: every reference dereferenced on the way
      to the borrowed place must outlive ``'r`` (walking outwards, up to
      and including the first shared reference).
    * External obligations, at their own point.

    Places whose type is not modelled (field projections) are skipped.
    """

    def __init__(self, body: FunctionBody, liveness: LivenessAnalyzer) -> None:
        self.body = body
        self.graph = body.graph
        self.liveness = liveness

    def generate(self) -> ConstraintSet:
        """Return the frozen constraint set."""
        cs = ConstraintSet(self.graph, self.body.lifetimes)
        self._liveness_constraints(cs)
        for point in self.graph.all_points():
            elem = self.graph.element_at(point)
            if isinstance(elem, Statement):
                self._statement_constraints(cs, point, elem)
        self._obligation_constraints(cs)
        logger.debug(
            "generated %d live and %d outlives constraints for %s",
            len(cs.live), len(cs.outlives), self.body.name,
        )
        return cs.freeze()

    # ----- liveness ----------------------------------------------------------

    def _liveness_constraints(self, cs: ConstraintSet) -> None:
        for point in self.graph.all_points():
            for lt in sorted(self.liveness.live_lifetimes(point)):
                cs.add_live(lt, point)

    # ----- statements --------------------------------------------------------

    def _statement_constraints(self, cs: ConstraintSet, point: Point, stmt: Statement) -> None:
        if not isinstance(stmt, Assign):
            return
        succ = Point(point.block, point.index + 1)
        rv = stmt.rvalue
        target = self.body.place_type(stmt.place)

        if isinstance(rv, Call):
            for arg, param in zip(rv.args, rv.param_types):
                self._relate(cs, self.body.operand_type(arg), param, succ,
                             ConstraintOrigin.CALL_ARGUMENT)
            self._relate(cs, rv.return_type, target, succ, ConstraintOrigin.CALL_RETURN)
            return

        self._relate(cs, self.body.rvalue_type(rv), target, succ, ConstraintOrigin.ASSIGNMENT)
        if isinstance(rv, Borrow):
            self._reborrow_constraints(cs, rv, succ)

    def _reborrow_constraints(self, cs: ConstraintSet, borrow: Borrow, succ: Point) -> None:
        place = borrow.place
        for k in range(len(place.projections) - 1, -1, -1):
            if not isinstance(place.projections[k], Deref):
                continue
            ref_ty = self.body.place_type(Place(place.base, place.projections[:k]))
            if not isinstance(ref_ty, Ref):
                continue
            cs.add_outlives(ref_ty.lifetime, borrow.lifetime, succ, ConstraintOrigin.REBORROW)
            if not ref_ty.mutable:
                break

    def _relate(
        self,
        cs: ConstraintSet,
        sub: Optional[Ty],
        sup: Optional[Ty],
        point: Point,
        origin: ConstraintOrigin,
        variance: Variance = Variance.COVARIANT,
    ) -> None:
        if sub is None or sup is None:
            return
        for longer, shorter in relate_types(sub, sup, variance):
            cs.add_outlives(longer, shorter, point, origin)

    # ----- external obligations ----------------------------------------------

    def _obligation_constraints(self, cs: ConstraintSet) -> None:
        for ob in self.body.obligations:
            if isinstance(ob, SubtypeObligation):
                self._relate(cs, ob.sub, ob.sup, ob.point,
                             ConstraintOrigin.OBLIGATION, ob.variance)
            elif isinstance(ob, OutlivesObligation):
                cs.add_outlives(ob.longer, ob.shorter, ob.point, ConstraintOrigin.OBLIGATION)
