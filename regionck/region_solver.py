"""
regionck.region_solver
======================

Least-fixpoint solver for :class:`regionck.constraints.ConstraintSet`.

Every free lifetime starts with the empty region and only ever grows:

1. each ``Live(L, P)`` adds ``P`` to ``L`` (applied once; re-applying is a
   no-op);
2. each ``Outlives(L1, L2, P)`` adds
   ``reachable_within(P, region(L2))`` to ``L1``.

Outlives constraints run off a worklist keyed by dependency: when region
``L`` grows, only the constraints that *read* ``L`` (``shorter == L``)
are requeued.  Regions live on a finite lattice (bitsets over the dense
point numbering) and every step is a union, so the loop terminates and
the result is the unique least solution whatever the processing order.

Placeholders keep their fixed region.  A constraint that would make one
grow is recorded as a :class:`PlaceholderViolation` (or raised as
:class:`regionck.errors.PlaceholderViolationError` in strict mode); this
is distinct from a borrow conflict.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from regionck.body import LifetimeVariable
from regionck.constraints import (
    Constraint,
    ConstraintSet,
    LiveConstraint,
    OutlivesConstraint,
)
from regionck.ctrlflow_graph import ControlFlowGraph, Point
from regionck.errors import (
    ErrorCode,
    InternalInvariantError,
    PlaceholderViolationError,
    SolverLimitExceeded,
    UnknownLifetimeError,
)
from regionck.regions import Region

logger = logging.getLogger(__name__)


# ===================================================================
#  RESULTS
# ===================================================================

@dataclass(frozen=True)
class PlaceholderViolation:
    """A placeholder region that *constraint* would need to extend."""

    lifetime: str
    points: Tuple[Point, ...]
    constraint: Constraint

    def to_dict(self) -> Dict[str, object]:
        return {
            "lifetime": self.lifetime,
            "points": [str(p) for p in self.points],
            "constraint": str(self.constraint),
        }


@dataclass
class SolveResult:
    """Solved regions plus solver statistics.

    Attributes
    ----------
    regions : dict
        Lifetime name → :class:`Region`.
    placeholder_violations : list of PlaceholderViolation
        Non-empty only when some placeholder would have had to grow.
    rounds : int
        Outlives constraints popped from the worklist.
    applications : int
        Constraint applications that actually grew a region.
    converged : bool
        ``False`` only when the round limit stopped the solver early.
    history : list
        ``(lifetime, before_bits, after_bits)`` per growth step; recorded
        only when monotonicity checking is enabled.
    """

    regions: Dict[str, Region] = field(default_factory=dict)
    placeholder_violations: List[PlaceholderViolation] = field(default_factory=list)
    rounds: int = 0
    applications: int = 0
    converged: bool = True
    elapsed_seconds: float = 0.0
    history: List[Tuple[str, int, int]] = field(default_factory=list)

    def region(self, lifetime: str) -> Region:
        try:
            return self.regions[lifetime]
        except KeyError:
            raise UnknownLifetimeError(lifetime) from None

    def as_dict(self) -> Dict[str, List[str]]:
        """Lifetime → printable points, for JSON output."""
        return {lt: r.to_list() for lt, r in self.regions.items()}


# ===================================================================
#  SOLVER
# ===================================================================

class RegionSolver:
    """Worklist solver over one frozen constraint set.

    Parameters
    ----------
    constraints : ConstraintSet
        The constraints to satisfy.  All lifetimes are taken from it.
    lifetimes : mapping of str to LifetimeVariable, optional
        Declarations; lifetimes absent here are free.
    max_rounds : int, optional
        Host-level guard on worklist rounds.
    raise_on_round_limit : bool
        Raise :class:`SolverLimitExceeded` when the guard trips, rather
        than returning a partial (``converged=False``) result.
    strict_placeholders : bool
        Raise on the first placeholder violation.
    check_monotonicity : bool
        Verify and record every region update.
    """

    def __init__(
        self,
        constraints: ConstraintSet,
        lifetimes: Optional[Mapping[str, LifetimeVariable]] = None,
        *,
        max_rounds: Optional[int] = None,
        raise_on_round_limit: bool = True,
        strict_placeholders: bool = False,
        check_monotonicity: bool = False,
    ) -> None:
        self.constraints = constraints
        self.graph: ControlFlowGraph = constraints.graph
        self.declared: Dict[str, LifetimeVariable] = dict(lifetimes or {})
        for name in self.declared:
            if name not in constraints.lifetimes:
                raise UnknownLifetimeError(name)
        self.max_rounds = max_rounds
        self.raise_on_round_limit = raise_on_round_limit
        self.strict_placeholders = strict_placeholders
        self.check_monotonicity = check_monotonicity

    def _is_placeholder(self, lifetime: str) -> bool:
        lv = self.declared.get(lifetime)
        return lv is not None and lv.is_placeholder

    def solve(self, initial: Optional[Mapping[str, Region]] = None) -> SolveResult:
        """Grow regions to the least fixpoint.

        Parameters
        ----------
        initial : mapping, optional
            Starting regions for free lifetimes (e.g. a previous
            solution).  Placeholders always start at their fixed region.

        Returns
        -------
        SolveResult

        Raises
        ------
        SolverLimitExceeded
            When ``max_rounds`` is exhausted and ``raise_on_round_limit``.
        PlaceholderViolationError
            In strict placeholder mode.
        """
        t0 = time.monotonic()
        graph = self.graph
        result = SolveResult()
        violations: Dict[Tuple[str, Constraint], int] = {}

        for lt in self.constraints.lifetimes:
            lv = self.declared.get(lt)
            if lv is not None and lv.is_placeholder:
                bits = lv.fixed_bits(graph)
            elif initial is not None and lt in initial:
                bits = initial[lt].bits
            else:
                bits = 0
            result.regions[lt] = Region(graph, bits)

        def grow(lifetime: str, bits: int, constraint: Constraint) -> bool:
            region = result.regions[lifetime]
            if self._is_placeholder(lifetime):
                extra = bits & ~region.bits
                if extra:
                    key = (lifetime, constraint)
                    violations[key] = violations.get(key, 0) | extra
                    if self.strict_placeholders:
                        raise PlaceholderViolationError(
                            PlaceholderViolation(
                                lifetime, tuple(graph.bits_to_points(extra)), constraint
                            )
                        )
                return False
            before = region.bits
            if not region.add_bits(bits):
                return False
            result.applications += 1
            if self.check_monotonicity:
                if before & ~region.bits:
                    raise InternalInvariantError(
                        f"region '{lifetime} shrank",
                        code=ErrorCode.MONOTONICITY_BROKEN,
                        details={"lifetime": lifetime},
                    )
                result.history.append((lifetime, before, region.bits))
            return True

        for live in self.constraints.live:
            grow(live.lifetime, 1 << graph.point_index(live.point), live)

        readers = self.constraints.by_shorter()
        worklist: Deque[OutlivesConstraint] = deque(self.constraints.outlives)
        queued = set(worklist)
        while worklist:
            if self.max_rounds is not None and result.rounds >= self.max_rounds:
                result.converged = False
                if self.raise_on_round_limit:
                    raise SolverLimitExceeded(result.rounds, self.max_rounds)
                logger.warning(
                    "region solver stopped after %d rounds (limit %d); "
                    "regions are a partial solution",
                    result.rounds, self.max_rounds,
                )
                break
            c = worklist.popleft()
            queued.discard(c)
            result.rounds += 1
            reach = graph.reachable_within_bits(
                graph.point_index(c.point), result.regions[c.shorter].bits
            )
            if grow(c.longer, reach, c):
                for dep in readers[c.longer]:
                    if dep not in queued:
                        worklist.append(dep)
                        queued.add(dep)

        result.placeholder_violations = [
            PlaceholderViolation(lt, tuple(graph.bits_to_points(bits)), c)
            for (lt, c), bits in violations.items()
        ]
        result.elapsed_seconds = time.monotonic() - t0
        logger.debug(
            "solved %d lifetimes: %d rounds, %d applications, %d placeholder violations",
            len(result.regions), result.rounds, result.applications,
            len(result.placeholder_violations),
        )
        return result


# ===================================================================
#  VERIFICATION
# ===================================================================

RegionLike = Union[Region, Iterable[Point], int]


def _bits(graph: ControlFlowGraph, value: RegionLike) -> int:
    if isinstance(value, Region):
        return value.bits
    if isinstance(value, int):
        return value
    return graph.points_to_bits(value)


def verify_solution(
    constraints: ConstraintSet,
    regions: Mapping[str, RegionLike],
) -> List[Constraint]:
    """Return every constraint that *regions* fails to satisfy.

    Lifetimes missing from *regions* are treated as empty.  Regions may be
    given as :class:`Region` objects, point collections or raw bitsets.
    """
    graph = constraints.graph
    bits = {lt: _bits(graph, r) for lt, r in regions.items()}
    failed: List[Constraint] = []
    for c in constraints:
        if isinstance(c, LiveConstraint):
            if not (bits.get(c.lifetime, 0) >> graph.point_index(c.point)) & 1:
                failed.append(c)
        else:
            reach = graph.reachable_within_bits(
                graph.point_index(c.point), bits.get(c.shorter, 0)
            )
            if reach & ~bits.get(c.longer, 0):
                failed.append(c)
    return failed
