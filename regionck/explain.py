"""
regionck.explain
================

Narrative selection for conflict records.  A pure function of a record,
the graph and the solved regions: it picks the concrete paths a
diagnostic would walk the user through (borrow → action → use).  No text
is produced here and nothing here affects which conflicts are reported.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from regionck.conflicts import ConflictRecord
from regionck.ctrlflow_graph import ControlFlowGraph, Point
from regionck.regions import Region


@dataclass(frozen=True)
class ConflictNarrative:
    record: ConflictRecord
    borrow_to_action: List[Point]
    action_to_use: Optional[List[Point]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record.to_dict(),
            "borrow_to_action": [str(p) for p in self.borrow_to_action],
            "action_to_use": (
                [str(p) for p in self.action_to_use]
                if self.action_to_use is not None else None
            ),
        }


def explain_conflict(
    record: ConflictRecord,
    graph: ControlFlowGraph,
    regions: Mapping[str, Region],
) -> ConflictNarrative:
    """Shortest B→A and A→U paths, staying inside the borrow's region.

    The B→A path falls back to an unrestricted path when the region does
    not connect the two (only possible with hand-written facts).
    """
    region = regions[record.lifetime]
    to_action = graph.shortest_path(record.borrow_point, record.invalidating_point, region)
    if to_action is None:
        to_action = graph.shortest_path(record.borrow_point, record.invalidating_point) or [
            record.borrow_point, record.invalidating_point,
        ]
    to_use = None
    if record.use_point is not None:
        to_use = graph.shortest_path(record.invalidating_point, record.use_point, region)
    return ConflictNarrative(record, to_action, to_use)
