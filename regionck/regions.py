"""
regionck.regions
================

Regions: sets of CFG points stored as Python integers used as bitsets over
the graph's dense point numbering.

A :class:`Region` can only grow.  There is deliberately no ``remove`` or
``discard``; every mutator reports whether anything was added so the
solver can drive its worklist off the return value.
"""

from __future__ import annotations

from typing import Iterable, Iterator, List

from regionck.ctrlflow_graph import ControlFlowGraph, Point


class Region:
    """A monotone set of points of one :class:`ControlFlowGraph`."""

    __slots__ = ("graph", "bits")

    def __init__(self, graph: ControlFlowGraph, bits: int = 0) -> None:
        self.graph = graph
        self.bits = bits

    @classmethod
    def from_points(cls, graph: ControlFlowGraph, points: Iterable[Point]) -> "Region":
        return cls(graph, graph.points_to_bits(points))

    @classmethod
    def everything(cls, graph: ControlFlowGraph) -> "Region":
        return cls(graph, graph.all_points_bits)

    # ----- queries -----------------------------------------------------------

    def __contains__(self, point: object) -> bool:
        if not isinstance(point, Point) or point not in self.graph:
            return False
        return bool((self.bits >> self.graph.point_index(point)) & 1)

    def contains_index(self, index: int) -> bool:
        return bool((self.bits >> index) & 1)

    def __len__(self) -> int:
        return bin(self.bits).count("1")

    def __bool__(self) -> bool:
        return self.bits != 0

    def __iter__(self) -> Iterator[Point]:
        return iter(self.graph.bits_to_points(self.bits))

    def points(self) -> List[Point]:
        """Points in dense order."""
        return self.graph.bits_to_points(self.bits)

    def issubset(self, other: "Region") -> bool:
        return self.bits & ~other.bits == 0

    __le__ = issubset

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Region):
            return self.graph is other.graph and self.bits == other.bits
        if isinstance(other, (set, frozenset)):
            return set(self.points()) == other
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    # ----- growth ------------------------------------------------------------

    def add(self, point: Point) -> bool:
        """Insert *point*; return ``True`` if it was not already present."""
        return self.add_bits(1 << self.graph.point_index(point))

    def add_bits(self, bits: int) -> bool:
        new = self.bits | bits
        if new == self.bits:
            return False
        self.bits = new
        return True

    def union_update(self, other: "Region") -> bool:
        return self.add_bits(other.bits)

    def copy(self) -> "Region":
        return Region(self.graph, self.bits)

    def to_list(self) -> List[str]:
        """Printable point labels, dense order (used for JSON output)."""
        return [str(p) for p in self.points()]

    def __repr__(self) -> str:
        return "{" + ", ".join(self.to_list()) + "}"
