"""
regionck.conflicts
==================

Turns solved regions plus borrow/access facts into three-point
:class:`ConflictRecord` objects ``(B, A, U, kind)``:

``B``
    where the borrow was created;
``A``
    the invalidating action (a conflicting access, or a scope exit);
``U``
    the nearest later point, reachable from ``A`` inside the borrow's
    active points, where a reference carrying the borrow is actually used.

A borrow of lifetime ``L`` created at ``B`` is *active* at ``P`` when
``P`` is reachable from a successor of ``B`` without leaving region
``L``.  Inside that set:

* a shared borrow conflicts with any overlapping WRITE or MOVE;
* overwriting a place (assignment destination, drop) leaves borrows taken
  through a reference stored in it alone;
* a mutable borrow conflicts with any overlapping access that is not made
  through a lifetime the borrow flows into;
* a scope exit of the borrowed local conflicts when the active set
  continues past it ("use after scope").

Conflicts are ordinary results; nothing here raises on a bad program.
"""

from __future__ import annotations

import enum
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from regionck.borrow_facts import (
    AccessFact,
    AccessKind,
    BorrowFact,
    BorrowFacts,
    BorrowKind,
    ScopeExitFact,
)
from regionck.constraints import ConstraintSet
from regionck.ctrlflow_graph import ControlFlowGraph, Point
from regionck.liveness import LivenessAnalyzer
from regionck.mir import Deref, Field, Place
from regionck.regions import Region

logger = logging.getLogger(__name__)


class ConflictCause(enum.Enum):
    INVALIDATED = "invalidated"
    USE_AFTER_SCOPE = "use-after-scope"


@dataclass(frozen=True)
class ConflictRecord:
    """One illegal access to borrowed data."""

    borrow_point: Point
    invalidating_point: Point
    use_point: Optional[Point]
    borrow_kind: BorrowKind
    borrowed_path: Place
    access_kind: Optional[AccessKind]
    cause: ConflictCause
    lifetime: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "borrow_point": str(self.borrow_point),
            "invalidating_point": str(self.invalidating_point),
            "use_point": str(self.use_point) if self.use_point is not None else None,
            "borrow_kind": self.borrow_kind.value,
            "borrowed_path": str(self.borrowed_path),
            "access_kind": self.access_kind.value if self.access_kind else None,
            "cause": self.cause.value,
            "lifetime": self.lifetime,
        }


def places_overlap(a: Place, b: Place) -> bool:
    """Whether two places may name overlapping storage.

    Same base, and one projection list is a prefix of the other up to
    fields: two different fields at the same depth are disjoint, index
    projections always overlap.
    """
    if a.base != b.base:
        return False
    for pa, pb in zip(a.projections, b.projections):
        if isinstance(pa, Field) and isinstance(pb, Field):
            if pa.name != pb.name:
                return False
        elif type(pa) is not type(pb):
            return False
    return True


def overwrite_overlaps(written: Place, borrowed: Place) -> bool:
    """Overlap for a shallow overwrite of *written*.

    Storage reached through a reference held in *written* is not touched,
    so a borrow whose path dereferences *written* is unaffected.
    """
    if not places_overlap(written, borrowed):
        return False
    depth = len(written.projections)
    return not (
        len(borrowed.projections) > depth
        and isinstance(borrowed.projections[depth], Deref)
    )


def flows_to(constraints: ConstraintSet, lifetime: str) -> Set[str]:
    """``lifetime`` plus every lifetime it (transitively) must outlive."""
    edges: Dict[str, Set[str]] = {}
    for c in constraints.outlives:
        edges.setdefault(c.longer, set()).add(c.shorter)
    seen = {lifetime}
    queue = deque([lifetime])
    while queue:
        lt = queue.popleft()
        for nxt in edges.get(lt, ()):
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return seen


class ConflictDetector:
    """Checks every borrow against every access and scope exit.

    Parameters
    ----------
    graph : ControlFlowGraph
    regions : mapping of str to Region
        Solved regions.
    facts : BorrowFacts
    liveness : LivenessAnalyzer
        Supplies the use sites used to pick ``U``.
    constraints : ConstraintSet
        Supplies the outlives edges along which a borrow flows.
    """

    def __init__(
        self,
        graph: ControlFlowGraph,
        regions: Mapping[str, Region],
        facts: BorrowFacts,
        liveness: LivenessAnalyzer,
        constraints: ConstraintSet,
    ) -> None:
        self.graph = graph
        self.regions = regions
        self.facts = facts
        self.liveness = liveness
        self.constraints = constraints
        self._carriers: Dict[str, Set[str]] = {}

    def carriers(self, lifetime: str) -> Set[str]:
        if lifetime not in self._carriers:
            self._carriers[lifetime] = flows_to(self.constraints, lifetime)
        return self._carriers[lifetime]

    def active_bits(self, borrow: BorrowFact) -> int:
        """Points at which *borrow* is still in force."""
        region = self.regions[borrow.lifetime].bits
        graph = self.graph
        bits = 0
        for s in graph.successor_indices(graph.point_index(borrow.point)):
            bits |= graph.reachable_within_bits(s, region)
        return bits

    def detect(self) -> List[ConflictRecord]:
        """All conflicts, ordered by invalidating point then borrow point."""
        records: Dict[Tuple, ConflictRecord] = {}
        for borrow in self.facts.borrows:
            active = self.active_bits(borrow)
            if not active:
                continue
            for access in self.facts.accesses:
                if self._conflicts(borrow, access, active):
                    self._record(records, borrow, access.point, access.kind,
                                 ConflictCause.INVALIDATED, active)
            if not borrow.path.goes_through_deref:
                for exit_ in self.facts.scope_exits:
                    if self._escapes_scope(borrow, exit_, active):
                        self._record(records, borrow, exit_.point, None,
                                     ConflictCause.USE_AFTER_SCOPE, active)

        index = self.graph.point_index
        out = sorted(
            records.values(),
            key=lambda r: (index(r.invalidating_point), index(r.borrow_point),
                           r.cause.value, str(r.borrowed_path)),
        )
        logger.debug("%d conflict(s) detected", len(out))
        return out

    # ----- rules -------------------------------------------------------------

    def _conflicts(self, borrow: BorrowFact, access: AccessFact, active: int) -> bool:
        if not (active >> self.graph.point_index(access.point)) & 1:
            return False
        if access.shallow:
            overlaps = overwrite_overlaps(access.path, borrow.path)
        else:
            overlaps = places_overlap(borrow.path, access.path)
        if not overlaps:
            return False
        if borrow.kind is BorrowKind.SHARED:
            return access.kind in (AccessKind.WRITE, AccessKind.MOVE)
        return access.through is None or access.through not in self.carriers(borrow.lifetime)

    def _escapes_scope(self, borrow: BorrowFact, exit_: ScopeExitFact, active: int) -> bool:
        if exit_.variable != borrow.path.base:
            return False
        idx = self.graph.point_index(exit_.point)
        if not (active >> idx) & 1:
            return False
        return any((active >> s) & 1 for s in self.graph.successor_indices(idx))

    def _record(
        self,
        records: Dict[Tuple, ConflictRecord],
        borrow: BorrowFact,
        point: Point,
        access_kind: Optional[AccessKind],
        cause: ConflictCause,
        active: int,
    ) -> None:
        key = (borrow.point, borrow.lifetime, borrow.path, point, cause)
        if key in records:
            return
        records[key] = ConflictRecord(
            borrow_point=borrow.point,
            invalidating_point=point,
            use_point=self.find_use(borrow.lifetime, point, active),
            borrow_kind=borrow.kind,
            borrowed_path=borrow.path,
            access_kind=access_kind,
            cause=cause,
            lifetime=borrow.lifetime,
        )

    def find_use(self, lifetime: str, start: Point, active: int) -> Optional[Point]:
        """Nearest actual use of the borrow from *start* within *active*.

        Breadth-first from *start* (which itself counts, at distance 0),
        lowest dense index first among equally distant points.
        """
        carriers = self.carriers(lifetime)
        graph = self.graph
        for idx, _dist, _parents in graph.bfs_order([graph.point_index(start)], active):
            point = graph.point_at(idx)
            for needed in self.liveness.use_sites(point).values():
                if carriers.intersection(needed):
                    return point
        return None
