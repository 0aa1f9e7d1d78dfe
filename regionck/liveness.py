"""
regionck.liveness
=================

Backward liveness over a :class:`regionck.body.FunctionBody`, split into
two facts per variable:

use-live
    the current value may still be *read* (``use``, operand, borrow,
    write through a reference, switch discriminant).
drop-live
    the current value may still be *dropped*.

A variable is live at a point if it is use-live or drop-live there.  The
split matters for lifetimes: a lifetime is live at ``P`` if some use-live
variable's type mentions it, or some drop-live variable's destructor may
still access it (its may-dangle predicate is false).  A reference whose
only remaining event is a drop therefore stops keeping its lifetime alive.

The block-level fixpoint runs on :mod:`regionck.dataflow_engine`; per-point
facts are then recovered with a single backward sweep of each block.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Set, Tuple

from regionck.body import FunctionBody
from regionck.ctrlflow_graph import BasicBlock, Point
from regionck.dataflow_engine import (
    DataflowResult,
    PowersetLattice,
    ProductLattice,
    WorklistStrategy,
    run_backward_analysis,
)
from regionck.errors import SolverLimitExceeded

logger = logging.getLogger(__name__)

LiveFact = Tuple[FrozenSet[str], FrozenSet[str]]      # (use-live, drop-live)


def _step(elem, fact: LiveFact) -> LiveFact:
    """Live-in of one statement/terminator given its live-out."""
    use_live, drop_live = fact
    defs = frozenset(elem.defs())
    return (
        (use_live - defs) | frozenset(elem.uses()),
        (drop_live - defs) | frozenset(elem.drops()),
    )


class LivenessAnalyzer:
    """Use/drop liveness for every point of a function.

    Parameters
    ----------
    body : FunctionBody
        The function to analyze.
    strategy : WorklistStrategy
        Block iteration order for the fixpoint.
    max_iterations : int
        Safety bound forwarded to the dataflow solver.
    """

    def __init__(
        self,
        body: FunctionBody,
        strategy: WorklistStrategy = WorklistStrategy.PO,
        max_iterations: int = 1_000_000,
    ) -> None:
        self.body = body
        self.graph = body.graph
        self.lattice = ProductLattice(PowersetLattice(), PowersetLattice())
        self.strategy = strategy
        self.max_iterations = max_iterations
        self.result: DataflowResult = None  # type: ignore[assignment]
        self._facts: List[LiveFact] = []
        self._lifetimes: Dict[int, FrozenSet[str]] = {}

    def transfer(self, block: BasicBlock, fact_out: LiveFact) -> LiveFact:
        """Block transfer: fold :func:`_step` over the block in reverse."""
        fact = fact_out
        for i in range(block.terminator_index, -1, -1):
            fact = _step(block.at(i), fact)
        return fact

    def run(self) -> "LivenessAnalyzer":
        """Execute the analysis; returns ``self`` for chaining.

        Raises
        ------
        SolverLimitExceeded
            If the fixpoint is not reached within ``max_iterations``; a
            partial liveness result would under-approximate every region.
        """
        self.result = run_backward_analysis(
            self.graph,
            self.lattice,
            self.transfer,
            initial_value=self.lattice.bottom(),
            strategy=self.strategy,
            max_iterations=self.max_iterations,
        )
        if not self.result.converged:
            raise SolverLimitExceeded(
                self.result.iterations, self.max_iterations, phase="liveness"
            )
        facts: List[LiveFact] = [self.lattice.bottom()] * self.graph.num_points
        for name, block in self.graph.blocks.items():
            fact = self.result.after(name)
            for i in range(block.terminator_index, -1, -1):
                fact = _step(block.at(i), fact)
                facts[self.graph.point_index(Point(name, i))] = fact
        self._facts = facts
        self._lifetimes = {}
        logger.debug(
            "liveness for %s: %d block iterations, converged=%s",
            self.body.name, self.result.iterations, self.result.converged,
        )
        return self

    # ----- queries -----------------------------------------------------------

    def _fact(self, point: Point) -> LiveFact:
        if not self._facts:
            self.run()
        return self._facts[self.graph.point_index(point)]

    def use_live(self, point: Point) -> FrozenSet[str]:
        return self._fact(point)[0]

    def drop_live(self, point: Point) -> FrozenSet[str]:
        return self._fact(point)[1]

    def live_in(self, point: Point) -> Set[str]:
        """Variables whose current value may be used or dropped at/after *point*."""
        use_live, drop_live = self._fact(point)
        return set(use_live | drop_live)

    def is_live(self, variable: str, point: Point) -> bool:
        return variable in self.live_in(point)

    def live_lifetimes(self, point: Point) -> FrozenSet[str]:
        """Lifetimes that must contain *point* because of liveness."""
        idx = self.graph.point_index(point)
        cached = self._lifetimes.get(idx)
        if cached is not None:
            return cached
        use_live, drop_live = self._fact(point)
        found: Dict[str, None] = {}
        for name in sorted(use_live):
            for lt in self.body.variable(name).ty.lifetimes():
                found.setdefault(lt)
        for name in sorted(drop_live):
            for lt in self.body.non_dangling_lifetimes(name):
                found.setdefault(lt)
        result = frozenset(found)
        self._lifetimes[idx] = result
        return result

    def use_sites(self, point: Point) -> Dict[str, Tuple[str, ...]]:
        """Actual use events at *point*.

        Maps each variable used (or dropped) by the element at *point* to
        the lifetimes that event needs: every lifetime of its type for a
        use, only the non-dangling ones for a drop.  Drops that need no
        lifetime are omitted.
        """
        elem = self.graph.element_at(point)
        sites: Dict[str, Tuple[str, ...]] = {}
        for name in elem.uses():
            sites[name] = self.body.variable(name).ty.lifetimes()
        for name in elem.drops():
            needed = self.body.non_dangling_lifetimes(name)
            if needed and name not in sites:
                sites[name] = needed
        return sites
