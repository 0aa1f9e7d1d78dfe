"""
regionck.ctrlflow_graph
=======================

Point-granular control-flow graphs.

A function's CFG is a set of named *basic blocks*.  Every statement of a
block, and its terminator, is one :class:`Point`; regions are sets of
points.  The graph is built once (see :class:`CFGBuilder`) and is
read-only afterwards.

Public API
----------
    Point            - ``(block, index)`` address of a statement/terminator
    EdgeKind         - classification of a block-to-block edge
    BasicBlock       - statements plus one terminator
    CFGEdge          - a directed edge between two blocks
    ControlFlowGraph - the graph, with a dense point numbering
    CFGBuilder       - fluent construction helper
    BlockBuilder     - per-block half of CFGBuilder

Dense numbering
---------------
Points are numbered ``0 .. num_points-1``: blocks in declaration order,
then statement index.  Regions are integer bitsets over that numbering
(see :mod:`regionck.regions`), and the solver-facing queries
(``reachable_within_bits``) work directly on those bitsets.

Typical usage::

    b = CFGBuilder()
    b.block("A").assign("p", Borrow("foo", Place("foo"))).goto("B", "C")
    b.block("B").use("*p").assign("p", Borrow("bar", Place("bar"))).goto("C")
    b.block("C").use("*p").ret()
    cfg = b.build()
    cfg.successors(Point("A", 1))      # {B/0, C/0}
"""

from __future__ import annotations

import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import (
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from regionck.errors import ErrorCode, MalformedGraphError, UnknownPointError
from regionck.mir import (
    Assign,
    Borrow,
    Call,
    Const,
    Copy,
    Drop,
    Goto,
    Move,
    Nop,
    Operand,
    Place,
    Return,
    Rvalue,
    Statement,
    StorageDead,
    Switch,
    Terminator,
    Use,
    UseOperand,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class Point:
    """Address of one statement (or the terminator) of a block."""

    block: str
    index: int

    def __str__(self) -> str:
        return f"{self.block}/{self.index}"

    @classmethod
    def parse(cls, text: str) -> "Point":
        """Parse ``"B/2"`` (or ``"B.2"``) into ``Point("B", 2)``."""
        sep = "/" if "/" in text else "."
        block, _, index = text.strip().rpartition(sep)
        if not block or not index.isdigit():
            raise ValueError(f"not a point: {text!r}")
        return cls(block, int(index))


# ---------------------------------------------------------------------------
# Edge kinds
# ---------------------------------------------------------------------------


class EdgeKind(enum.Enum):
    """Classification of a CFG edge."""

    GOTO = "goto"
    SWITCH_CASE = "switch-case"
    BACK_EDGE = "back-edge"


# ---------------------------------------------------------------------------
# BasicBlock
# ---------------------------------------------------------------------------

class BasicBlock:
    """A basic block.

    Attributes
    ----------
    name : str
        Block label, unique within its graph.
    statements : tuple[Statement, ...]
        Straight-line statements; statement ``i`` lives at ``Point(name, i)``.
    terminator : Terminator
        Lives at ``Point(name, len(statements))``.
    """

    __slots__ = ("name", "statements", "terminator")

    def __init__(
        self,
        name: str,
        statements: Sequence[Statement] = (),
        terminator: Optional[Terminator] = None,
    ) -> None:
        self.name = name
        self.statements: Tuple[Statement, ...] = tuple(statements)
        self.terminator: Terminator = terminator if terminator is not None else Return()

    @property
    def successors(self) -> Tuple[str, ...]:
        """Names of successor blocks, in terminator order."""
        return tuple(self.terminator.targets)

    @property
    def terminator_index(self) -> int:
        return len(self.statements)

    def __len__(self) -> int:
        """Number of points (statements + terminator)."""
        return len(self.statements) + 1

    def points(self) -> Iterator[Point]:
        for i in range(len(self)):
            yield Point(self.name, i)

    def at(self, index: int) -> Union[Statement, Terminator]:
        if index == len(self.statements):
            return self.terminator
        return self.statements[index]

    def label(self) -> str:
        """Compact human-readable rendering for DOT output."""
        lines = [f"{i}: {s}" for i, s in enumerate(self.statements)]
        lines.append(f"{len(self.statements)}: {self.terminator}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"BasicBlock({self.name!r}, nstmts={len(self.statements)})"


# ---------------------------------------------------------------------------
# CFGEdge
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CFGEdge:
    """A directed edge between two blocks."""

    src: str
    dst: str
    kind: EdgeKind = EdgeKind.GOTO


# ---------------------------------------------------------------------------
# ControlFlowGraph
# ---------------------------------------------------------------------------

class ControlFlowGraph:
    """Point-granular control flow graph for a single function.

    Parameters
    ----------
    blocks : sequence of BasicBlock
        All blocks, in declaration order (this fixes the dense numbering).
    entry : str, optional
        Name of the entry block; defaults to the first block.

    Raises
    ------
    MalformedGraphError
        On an empty graph, duplicate block names, an unknown entry, or a
        terminator naming a block that does not exist.
    """

    def __init__(self, blocks: Sequence[BasicBlock], entry: Optional[str] = None) -> None:
        if not blocks:
            raise MalformedGraphError("graph has no blocks", code=ErrorCode.MISSING_ENTRY)
        self.blocks: "OrderedDict[str, BasicBlock]" = OrderedDict()
        for blk in blocks:
            if blk.name in self.blocks:
                raise MalformedGraphError(
                    f"duplicate block {blk.name!r}",
                    code=ErrorCode.DUPLICATE_BLOCK,
                    details={"block": blk.name},
                )
            self.blocks[blk.name] = blk
        self.entry = entry if entry is not None else blocks[0].name
        if self.entry not in self.blocks:
            raise MalformedGraphError(
                f"entry block {self.entry!r} does not exist",
                code=ErrorCode.MISSING_ENTRY,
                details={"block": self.entry},
            )
        for blk in self.blocks.values():
            for target in blk.successors:
                if target not in self.blocks:
                    raise MalformedGraphError(
                        f"block {blk.name!r} jumps to unknown block {target!r}",
                        code=ErrorCode.UNKNOWN_BLOCK,
                        details={"block": blk.name, "target": target},
                    )

        # dense numbering
        self._points: List[Point] = []
        self._index: Dict[Point, int] = {}
        self._block_start: Dict[str, int] = {}
        for blk in self.blocks.values():
            self._block_start[blk.name] = len(self._points)
            for p in blk.points():
                self._index[p] = len(self._points)
                self._points.append(p)

        self._succ: List[Tuple[int, ...]] = []
        self._pred: List[List[int]] = [[] for _ in self._points]
        for i, p in enumerate(self._points):
            blk = self.blocks[p.block]
            if p.index < blk.terminator_index:
                succ: Tuple[int, ...] = (i + 1,)
            else:
                succ = tuple(sorted({self._block_start[t] for t in blk.successors}))
            self._succ.append(succ)
            for s in succ:
                self._pred[s].append(i)

        self.edges: List[CFGEdge] = self._classify_edges()
        logger.debug(
            "built CFG: %d blocks, %d points, %d edges",
            len(self.blocks), len(self._points), len(self.edges),
        )

    # ----- numbering ---------------------------------------------------------

    @property
    def num_points(self) -> int:
        return len(self._points)

    @property
    def entry_point(self) -> Point:
        return Point(self.entry, 0)

    def all_points(self) -> List[Point]:
        """Every point, in dense order."""
        return list(self._points)

    def point_index(self, point: Point) -> int:
        """Dense index of *point*.

        Raises
        ------
        UnknownPointError
            If the point does not belong to this graph.
        """
        try:
            return self._index[point]
        except KeyError:
            raise UnknownPointError(point) from None

    def point_at(self, index: int) -> Point:
        if not 0 <= index < len(self._points):
            raise UnknownPointError(index, f"point index {index} out of range")
        return self._points[index]

    def __contains__(self, point: object) -> bool:
        return point in self._index

    def points_to_bits(self, points: Iterable[Point]) -> int:
        bits = 0
        for p in points:
            bits |= 1 << self.point_index(p)
        return bits

    def bits_to_points(self, bits: int) -> List[Point]:
        out: List[Point] = []
        i = 0
        while bits:
            if bits & 1:
                out.append(self._points[i])
            bits >>= 1
            i += 1
        return out

    @property
    def all_points_bits(self) -> int:
        return (1 << len(self._points)) - 1

    # ----- structure ---------------------------------------------------------

    def block_of(self, point: Point) -> BasicBlock:
        self.point_index(point)
        return self.blocks[point.block]

    def element_at(self, point: Point) -> Union[Statement, Terminator]:
        """The statement or terminator living at *point*."""
        return self.block_of(point).at(point.index)

    def successor_indices(self, index: int) -> Tuple[int, ...]:
        return self._succ[index]

    def predecessor_indices(self, index: int) -> Tuple[int, ...]:
        return tuple(self._pred[index])

    def successors(self, point: Point) -> Set[Point]:
        """Points control may reach in one step from *point*."""
        return {self._points[s] for s in self._succ[self.point_index(point)]}

    def predecessors(self, point: Point) -> Set[Point]:
        return {self._points[s] for s in self._pred[self.point_index(point)]}

    def block_successors(self, name: str) -> Tuple[str, ...]:
        return self.blocks[name].successors

    def block_predecessors(self, name: str) -> List[str]:
        return [b.name for b in self.blocks.values() if name in b.successors]

    def exit_points(self) -> List[Point]:
        """Terminators with no successors (function exits)."""
        return [
            Point(b.name, b.terminator_index)
            for b in self.blocks.values()
            if not b.successors
        ]

    # ----- reachability ------------------------------------------------------

    def reachable_within_bits(self, start: int, barrier: int) -> int:
        """Bitset variant of :meth:`reachable_within` over dense indices."""
        if not (barrier >> start) & 1:
            return 0
        seen = 1 << start
        stack = [start]
        succ = self._succ
        while stack:
            i = stack.pop()
            for s in succ[i]:
                bit = 1 << s
                if barrier & bit and not seen & bit:
                    seen |= bit
                    stack.append(s)
        return seen

    def reachable_within(self, start: Point, barrier: Iterable[Point]) -> Set[Point]:
        """Every point reachable from *start* without leaving *barrier*.

        *start* itself is included iff it belongs to *barrier*; if it does
        not, nothing is reachable.
        """
        start_i = self.point_index(start)
        bits = self.reachable_within_bits(start_i, self.points_to_bits(barrier))
        return set(self.bits_to_points(bits))

    def reachable_from(self, start: Point) -> Set[Point]:
        """Every point reachable from *start* (including it)."""
        return set(
            self.bits_to_points(
                self.reachable_within_bits(self.point_index(start), self.all_points_bits)
            )
        )

    def bfs_order(
        self,
        sources: Iterable[int],
        within: Optional[int] = None,
    ) -> Iterator[Tuple[int, int, Dict[int, int]]]:
        """Breadth-first walk yielding ``(index, distance, parents)``.

        Sources are at distance 0 and are not checked against *within*;
        every other visited point must be in *within* when given.
        Successors are expanded in dense order, so among points at the
        same distance the lowest index is yielded first.
        """
        parents: Dict[int, int] = {}
        dist: Dict[int, int] = {}
        frontier: List[int] = sorted(set(sources))
        for s in frontier:
            dist[s] = 0
        level = 0
        while frontier:
            for i in frontier:
                yield i, level, parents
            nxt: Set[int] = set()
            for i in frontier:
                for s in self._succ[i]:
                    if s in dist or s in nxt:
                        continue
                    if within is not None and not (within >> s) & 1:
                        continue
                    parents[s] = i
                    nxt.add(s)
            level += 1
            for s in nxt:
                dist[s] = level
            frontier = sorted(nxt)

    def shortest_path(
        self,
        src: Point,
        dst: Point,
        within: Optional[Iterable[Point]] = None,
    ) -> Optional[List[Point]]:
        """Shortest successor path from *src* to *dst* (both included).

        With *within*, every point after *src* must lie in that set.
        Returns ``None`` when *dst* is unreachable.
        """
        src_i = self.point_index(src)
        dst_i = self.point_index(dst)
        within_bits = self.points_to_bits(within) if within is not None else None
        for i, _dist, parents in self.bfs_order([src_i], within_bits):
            if i == dst_i:
                path = [i]
                while path[-1] != src_i:
                    path.append(parents[path[-1]])
                path.reverse()
                return [self._points[j] for j in path]
        return None

    def dominators(self) -> Dict[str, Set[str]]:
        """Block-level dominator sets (iterative algorithm)."""
        names = list(self.blocks)
        dom: Dict[str, Set[str]] = {n: set(names) for n in names}
        dom[self.entry] = {self.entry}
        changed = True
        while changed:
            changed = False
            for n in names:
                if n == self.entry:
                    continue
                preds = self.block_predecessors(n)
                new_dom = set.intersection(*(dom[p] for p in preds)) if preds else set()
                new_dom = new_dom | {n}
                if new_dom != dom[n]:
                    dom[n] = new_dom
                    changed = True
        return dom

    def _classify_edges(self) -> List[CFGEdge]:
        dom = self.dominators()
        edges = []
        for blk in self.blocks.values():
            for t in dict.fromkeys(blk.successors):
                if t in dom.get(blk.name, ()):
                    kind = EdgeKind.BACK_EDGE
                elif isinstance(blk.terminator, Switch):
                    kind = EdgeKind.SWITCH_CASE
                else:
                    kind = EdgeKind.GOTO
                edges.append(CFGEdge(blk.name, t, kind))
        return edges

    # ----- serialisation helpers --------------------------------------------

    def to_dot(
        self,
        title: Optional[str] = None,
        regions: Optional[Mapping[str, Iterable[Point]]] = None,
    ) -> str:
        """Return a Graphviz DOT representation of this CFG.

        When *regions* is given, each block label lists, per point, the
        lifetimes whose region contains that point.
        """
        membership: Dict[Point, List[str]] = {}
        for name, pts in (regions or {}).items():
            for p in pts:
                membership.setdefault(p, []).append(f"'{name}")
        lines = ["digraph CFG {"]
        if title:
            lines.append(f'  label="{title}";')
        lines.append("  node [shape=box, fontname=monospace, fontsize=10];")
        for blk in self.blocks.values():
            rows = []
            for p in blk.points():
                text = f"{p.index}: {blk.at(p.index)}"
                if p in membership:
                    text += "  {" + ", ".join(sorted(membership[p])) + "}"
                rows.append(text)
            lbl = "\\l".join(r.replace('"', '\\"') for r in rows) + "\\l"
            color = ""
            if blk.name == self.entry:
                color = ', style=filled, fillcolor="#ccffcc"'
            elif not blk.successors:
                color = ', style=filled, fillcolor="#ffcccc"'
            lines.append(f'  "{blk.name}" [label="{blk.name}\\n{lbl}"{color}];')
        for e in self.edges:
            style = ""
            if e.kind == EdgeKind.BACK_EDGE:
                style = ", style=dashed, color=blue"
            elif e.kind == EdgeKind.SWITCH_CASE:
                style = ", color=darkgreen"
            lines.append(f'  "{e.src}" -> "{e.dst}" [label="{e.kind.value}"{style}];')
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"ControlFlowGraph(blocks={len(self.blocks)}, "
            f"points={len(self._points)}, entry={self.entry!r})"
        )


# ===========================================================================
# CFG BUILDER
# ===========================================================================

PlaceLike = Union[Place, str]


def as_place(value: PlaceLike) -> Place:
    return value if isinstance(value, Place) else Place.parse(value)


def as_operand(value: Union[Operand, PlaceLike]) -> Operand:
    """Strings and places become ``Copy``; operands pass through."""
    if isinstance(value, (Copy, Move, Const)):
        return value
    return Copy(as_place(value))


class BlockBuilder:
    """Accumulates the statements of one block; every method chains."""

    def __init__(self, owner: "CFGBuilder", name: str) -> None:
        self._owner = owner
        self.name = name
        self.statements: List[Statement] = []
        self.terminator: Optional[Terminator] = None

    @property
    def next_point(self) -> Point:
        """The point the next appended statement will occupy."""
        return Point(self.name, len(self.statements))

    def push(self, stmt: Statement) -> "BlockBuilder":
        if self.terminator is not None:
            raise MalformedGraphError(
                f"block {self.name!r} is already terminated",
                code=ErrorCode.MISSING_TERMINATOR,
            )
        self.statements.append(stmt)
        return self

    def assign(self, place: PlaceLike, rvalue: Union[Rvalue, Operand, PlaceLike]) -> "BlockBuilder":
        if isinstance(rvalue, (UseOperand, Borrow, Call)):
            rv = rvalue
        elif isinstance(rvalue, Const):
            rv = UseOperand(rvalue)
        else:
            rv = UseOperand(as_operand(rvalue))
        return self.push(Assign(as_place(place), rv))

    def borrow(
        self, dest: PlaceLike, lifetime: str, place: PlaceLike, mutable: bool = False
    ) -> "BlockBuilder":
        return self.push(Assign(as_place(dest), Borrow(lifetime, as_place(place), mutable)))

    def write(self, place: PlaceLike, value: str = "const") -> "BlockBuilder":
        return self.push(Assign(as_place(place), UseOperand(Const(value))))

    def use(self, *operands: Union[Operand, PlaceLike]) -> "BlockBuilder":
        return self.push(Use(tuple(as_operand(o) for o in operands)))

    def move(self, dest: PlaceLike, src: PlaceLike) -> "BlockBuilder":
        return self.push(Assign(as_place(dest), UseOperand(Move(as_place(src)))))

    def call(self, dest: PlaceLike, call: Call) -> "BlockBuilder":
        return self.push(Assign(as_place(dest), call))

    def drop(self, variable: str) -> "BlockBuilder":
        return self.push(Drop(variable))

    def storage_dead(self, variable: str) -> "BlockBuilder":
        return self.push(StorageDead(variable))

    def nop(self) -> "BlockBuilder":
        return self.push(Nop())

    def _terminate(self, term: Terminator) -> "CFGBuilder":
        if self.terminator is not None:
            raise MalformedGraphError(
                f"block {self.name!r} is already terminated",
                code=ErrorCode.MISSING_TERMINATOR,
            )
        self.terminator = term
        return self._owner

    def goto(self, *targets: str) -> "CFGBuilder":
        return self._terminate(Goto(tuple(targets)))

    def switch(self, operand: Union[Operand, PlaceLike], *targets: str) -> "CFGBuilder":
        return self._terminate(Switch(as_operand(operand), tuple(targets)))

    def ret(self) -> "CFGBuilder":
        return self._terminate(Return())

    def to_block(self) -> BasicBlock:
        if self.terminator is None:
            raise MalformedGraphError(
                f"block {self.name!r} has no terminator",
                code=ErrorCode.MISSING_TERMINATOR,
                details={"block": self.name},
            )
        return BasicBlock(self.name, self.statements, self.terminator)


class CFGBuilder:
    """Builds a :class:`ControlFlowGraph` block by block.

    The first block created is the entry unless ``entry`` is passed to
    :meth:`build`.
    """

    def __init__(self) -> None:
        self._blocks: "OrderedDict[str, BlockBuilder]" = OrderedDict()

    def block(self, name: str) -> BlockBuilder:
        """Return the builder for *name*, creating it on first use."""
        if name not in self._blocks:
            self._blocks[name] = BlockBuilder(self, name)
        return self._blocks[name]

    def build(self, entry: Optional[str] = None) -> ControlFlowGraph:
        return ControlFlowGraph([b.to_block() for b in self._blocks.values()], entry)
