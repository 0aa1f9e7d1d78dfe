"""
regionck.dataflow_engine
========================

A lattice-based backward dataflow framework over
:class:`regionck.ctrlflow_graph.ControlFlowGraph` blocks.

Theory
------
A backward dataflow analysis is defined by:

1.  A **lattice** ``(L, ⊑, ⊥, ⊔)`` of finite height.
2.  A **transfer function** ``f : Block × L → L`` that maps the fact at
    the end of a block to the fact at its start.
3.  An **initial value** for exit blocks (blocks without successors).

The engine iterates until no block's fact changes.  Facts are stored in
*analysis* order: ``facts_in[b]`` is what flows into ``b``'s transfer
function (the fact at the *end* of ``b``) and ``facts_out[b]`` what it
produces (the fact at its *start*).  :meth:`DataflowResult.before` and
:meth:`DataflowResult.after` translate back to program order.

Worklist strategies
-------------------
``FIFO``
    Blocks in declaration order, BFS-like.
``LIFO``
    Blocks in declaration order, DFS-like.
``RPO`` (Reverse Post-Order)
    Entry-first; the slow order for a backward problem.
``PO`` (Post-Order)
    Exit-first; the standard order for backward analyses.

Public API
----------
    Lattice                 - abstract base for lattice definitions
    PowersetLattice         - powerset lattice (join = union)
    ProductLattice          - component-wise product
    WorklistStrategy        - iteration order enum
    DataflowResult          - container for analysis results
    IntraproceduralSolver   - single-function fixpoint engine
    run_backward_analysis   - convenience function
"""

from __future__ import annotations

import abc
import enum
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import (
    Callable,
    Deque,
    Dict,
    FrozenSet,
    Generic,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
    TypeVar,
)

logger = logging.getLogger(__name__)

L = TypeVar("L")          # Lattice value type


# ===========================================================================
# WORKLIST STRATEGY
# ===========================================================================

class WorklistStrategy(enum.Enum):
    """Strategy for selecting the next worklist node."""
    FIFO = "fifo"
    LIFO = "lifo"
    RPO  = "rpo"        # Reverse post-order
    PO   = "po"         # Post-order (best for backward)


# ===========================================================================
# LATTICE: ABSTRACT BASE
# ===========================================================================

class Lattice(abc.ABC, Generic[L]):
    """Abstract base class for a dataflow lattice.

    A lattice must provide ``bottom()``, ``join(a, b)`` and ``leq(a, b)``.
    Only finite-height lattices are supported; there is no widening.
    """

    @abc.abstractmethod
    def bottom(self) -> L:
        """Return the least element ⊥."""
        ...

    @abc.abstractmethod
    def join(self, a: L, b: L) -> L:
        """Return the least upper bound ``a ⊔ b``."""
        ...

    @abc.abstractmethod
    def leq(self, a: L, b: L) -> bool:
        """Return ``True`` iff ``a ⊑ b``."""
        ...

    def eq(self, a: L, b: L) -> bool:
        """Equality: ``a = b`` iff ``a ⊑ b`` and ``b ⊑ a``."""
        return self.leq(a, b) and self.leq(b, a)

    def join_all(self, values: Iterable[L]) -> L:
        """Join a sequence of values."""
        result = self.bottom()
        for v in values:
            result = self.join(result, v)
        return result


class PowersetLattice(Lattice[FrozenSet]):
    """Powerset lattice: ``(2^U, ⊆, ∅, ∪)`` over frozensets."""

    def bottom(self) -> FrozenSet:
        return frozenset()

    def join(self, a: FrozenSet, b: FrozenSet) -> FrozenSet:
        return a | b

    def leq(self, a: FrozenSet, b: FrozenSet) -> bool:
        return a <= b

    def eq(self, a: FrozenSet, b: FrozenSet) -> bool:
        return a == b


class ProductLattice(Lattice[Tuple]):
    """Component-wise product of lattices."""

    def __init__(self, *lattices: Lattice) -> None:
        self.lattices = lattices

    def bottom(self) -> Tuple:
        return tuple(lat.bottom() for lat in self.lattices)

    def join(self, a: Tuple, b: Tuple) -> Tuple:
        return tuple(lat.join(x, y) for lat, x, y in zip(self.lattices, a, b))

    def leq(self, a: Tuple, b: Tuple) -> bool:
        return all(lat.leq(x, y) for lat, x, y in zip(self.lattices, a, b))


# ===========================================================================
# DATAFLOW RESULT
# ===========================================================================

@dataclass
class DataflowResult(Generic[L]):
    """Container for dataflow analysis results.

    Attributes
    ----------
    facts_in : dict
        Block name → fact at the end of the block.
    facts_out : dict
        Block name → fact at the start of the block.
    iterations : int
        Number of worklist iterations performed.
    converged : bool
        Whether the analysis reached a fixpoint (vs. hitting the limit).
    elapsed_seconds : float
        Wall-clock time.
    """
    facts_in: Dict[str, L] = field(default_factory=dict)
    facts_out: Dict[str, L] = field(default_factory=dict)
    iterations: int = 0
    converged: bool = False
    elapsed_seconds: float = 0.0

    def before(self, block: str) -> L:
        """Fact at the start of *block* in program order."""
        return self.facts_out[block]

    def after(self, block: str) -> L:
        """Fact at the end of *block* in program order."""
        return self.facts_in[block]


# ===========================================================================
# INTRAPROCEDURAL SOLVER
# ===========================================================================

class IntraproceduralSolver(Generic[L]):
    """Backward fixpoint engine for block-level dataflow over one function.

    Parameters
    ----------
    cfg : ControlFlowGraph
        The control-flow graph.
    lattice : Lattice[L]
        The dataflow lattice.
    transfer : callable(block, L) → L
        Receives the fact at the end of the block and returns the fact at
        its start.
    strategy : WorklistStrategy
        Worklist iteration order.
    initial_value : L, optional
        Fact at the end of exit blocks.  Defaults to ``lattice.bottom()``.
    max_iterations : int
        Safety bound on iterations.
    """

    def __init__(
        self,
        cfg,
        lattice: Lattice[L],
        transfer: Callable,
        strategy: WorklistStrategy = WorklistStrategy.PO,
        initial_value: Optional[L] = None,
        max_iterations: int = 1_000_000,
    ) -> None:
        self.cfg = cfg
        self.lattice = lattice
        self.transfer = transfer
        self.strategy = strategy
        self.initial_value = (
            initial_value if initial_value is not None
            else lattice.bottom()
        )
        self.max_iterations = max_iterations

        self._nodes: List[str] = list(cfg.blocks)
        self._preds: Dict[str, List[str]] = {n: [] for n in self._nodes}
        for n in self._nodes:
            for s in dict.fromkeys(cfg.block_successors(n)):
                self._preds[s].append(n)

    def solve(self) -> DataflowResult[L]:
        """Run the analysis to fixpoint.

        Returns
        -------
        DataflowResult[L]
            ``converged`` is ``False`` when ``max_iterations`` ran out
            first; the facts are then an under-approximation.
        """
        t0 = time.monotonic()
        exits = {n for n in self._nodes if not self._get_successors(n)}

        lat = self.lattice
        facts_in: Dict[str, L] = {n: lat.bottom() for n in self._nodes}
        facts_out: Dict[str, L] = {n: lat.bottom() for n in self._nodes}
        visited: Set[str] = set()

        worklist = self._build_initial_worklist()
        in_worklist: Set[str] = set(worklist)
        iterations = 0

        while worklist and iterations < self.max_iterations:
            node = self._pop_worklist(worklist, in_worklist)
            iterations += 1

            merged = lat.join_all(facts_out[s] for s in self._get_successors(node))
            if node in exits:
                merged = lat.join(merged, self.initial_value)
            facts_in[node] = merged

            new_out = self.transfer(self.cfg.blocks[node], merged)
            if node in visited and lat.eq(new_out, facts_out[node]):
                continue
            visited.add(node)
            facts_out[node] = new_out

            for pred in self._preds[node]:
                if pred not in in_worklist:
                    worklist.append(pred)
                    in_worklist.add(pred)

        converged = not worklist
        if not converged:
            logger.debug(
                "dataflow did not converge after %d iterations", iterations
            )

        return DataflowResult(
            facts_in=facts_in,
            facts_out=facts_out,
            iterations=iterations,
            converged=converged,
            elapsed_seconds=time.monotonic() - t0,
        )

    # ----- Internal helpers -------------------------------------------------

    def _get_successors(self, node: str) -> List[str]:
        return list(dict.fromkeys(self.cfg.block_successors(node)))

    def _build_initial_worklist(self) -> Deque[str]:
        """Build the initial worklist based on the chosen strategy."""
        if self.strategy == WorklistStrategy.RPO:
            order = self._reverse_postorder()
        elif self.strategy == WorklistStrategy.PO:
            order = self._postorder()
        else:
            order = list(self._nodes)
        return deque(order)

    def _pop_worklist(self, worklist: Deque[str], in_worklist: Set[str]) -> str:
        """Pop the next node from the worklist."""
        if self.strategy == WorklistStrategy.LIFO:
            node = worklist.pop()
        else:
            node = worklist.popleft()
        in_worklist.discard(node)
        return node

    def _postorder(self) -> List[str]:
        """Post-order of blocks from the entry, unreachable blocks appended."""
        visited: Set[str] = set()
        order: List[str] = []

        def dfs(start: str) -> None:
            stack: List[Tuple[str, int]] = [(start, 0)]
            visited.add(start)
            while stack:
                node, i = stack.pop()
                succs = self._get_successors(node)
                if i < len(succs):
                    stack.append((node, i + 1))
                    nxt = succs[i]
                    if nxt not in visited:
                        visited.add(nxt)
                        stack.append((nxt, 0))
                else:
                    order.append(node)

        dfs(self.cfg.entry)
        for n in self._nodes:
            if n not in visited:
                dfs(n)
        return order

    def _reverse_postorder(self) -> List[str]:
        order = self._postorder()
        order.reverse()
        return order


# ===========================================================================
# CONVENIENCE WRAPPER
# ===========================================================================

def run_backward_analysis(
    cfg,
    lattice: Lattice[L],
    transfer: Callable,
    *,
    initial_value: Optional[L] = None,
    strategy: WorklistStrategy = WorklistStrategy.PO,
    max_iterations: int = 1_000_000,
) -> DataflowResult[L]:
    """Run a backward dataflow analysis on a single CFG.

    Parameters
    ----------
    cfg : ControlFlowGraph
        The control-flow graph.
    lattice : Lattice[L]
        The dataflow lattice.
    transfer : callable(block, L) → L
        The transfer function (applied in reverse).
    initial_value : L, optional
        Fact at the end of exit blocks.
    strategy : WorklistStrategy
        Worklist order.
    max_iterations : int
        Safety bound.

    Returns
    -------
    DataflowResult[L]
    """
    solver = IntraproceduralSolver(
        cfg=cfg,
        lattice=lattice,
        transfer=transfer,
        strategy=strategy,
        initial_value=initial_value,
        max_iterations=max_iterations,
    )
    return solver.solve()
