"""
regionck.config
===============

Configuration for :class:`regionck.engine.RegionCheckEngine`.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from regionck.dataflow_engine import WorklistStrategy


@dataclass
class AnalysisConfig:
    """Configuration for the region-checking pipeline."""
    # Liveness
    worklist_strategy: WorklistStrategy = WorklistStrategy.PO
    max_liveness_iterations: int = 1_000_000

    # Solver
    max_solver_rounds: Optional[int] = None     # host-level resource guard
    raise_on_round_limit: bool = True
    strict_placeholders: bool = False
    check_monotonicity: bool = False

    # Conflicts
    detect_conflicts: bool = True

    # Driver
    workers: int = 1

    # Reporting
    verbose: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalysisConfig":
        """Build a config from plain data (e.g. a JSON file).

        Raises
        ------
        ValueError
            On unknown keys or an unknown worklist strategy.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown configuration key(s): {', '.join(unknown)}")
        values = dict(data)
        strategy = values.get("worklist_strategy")
        if isinstance(strategy, str):
            try:
                values["worklist_strategy"] = WorklistStrategy(strategy.lower())
            except ValueError:
                raise ValueError(f"unknown worklist strategy {strategy!r}") from None
        return cls(**values)
