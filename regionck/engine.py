"""
regionck.engine
===============

End-to-end driver: runs the five phases on one function, strictly in
order, and packages the results.

    graph (given) → liveness → constraints → regions → conflicts

Usage::

    engine = RegionCheckEngine(AnalysisConfig())
    report = engine.analyze(body)
    print(report.summary())

Functions are independent, so :func:`analyze_functions` may spread a
batch over worker processes; bodies must then be picklable (a custom
``may_dangle`` predicate has to be a module-level function).
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from regionck.body import FunctionBody
from regionck.borrow_facts import derive_facts
from regionck.config import AnalysisConfig
from regionck.conflicts import ConflictDetector, ConflictRecord
from regionck.constraints import ConstraintGenerator, ConstraintSet
from regionck.liveness import LivenessAnalyzer
from regionck.region_solver import PlaceholderViolation, RegionSolver, SolveResult
from regionck.regions import Region

logger = logging.getLogger(__name__)


@dataclass
class AnalysisReport:
    """Summary report of one function's analysis."""
    function: str
    config: AnalysisConfig
    regions: Dict[str, Region] = field(default_factory=dict)
    conflicts: List[ConflictRecord] = field(default_factory=list)
    placeholder_violations: List[PlaceholderViolation] = field(default_factory=list)
    num_points: int = 0
    num_constraints: int = 0
    solver_rounds: int = 0
    converged: bool = True
    phase_seconds: Dict[str, float] = field(default_factory=dict)
    total_time_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.conflicts and not self.placeholder_violations

    def to_dict(self) -> Dict[str, Any]:
        return {
            "function": self.function,
            "ok": self.ok,
            "regions": {lt: r.to_list() for lt, r in self.regions.items()},
            "conflicts": [c.to_dict() for c in self.conflicts],
            "placeholder_violations": [v.to_dict() for v in self.placeholder_violations],
            "stats": {
                "points": self.num_points,
                "constraints": self.num_constraints,
                "solver_rounds": self.solver_rounds,
                "converged": self.converged,
            },
        }

    def summary(self) -> str:
        lines = [
            "=" * 60,
            f"  REGION CHECK: {self.function}",
            "=" * 60,
            f"  Points             : {self.num_points}",
            f"  Lifetimes          : {len(self.regions)}",
            f"  Constraints        : {self.num_constraints}",
            f"  Solver rounds      : {self.solver_rounds}",
            f"  Conflicts          : {len(self.conflicts)}",
            f"  Placeholder errors : {len(self.placeholder_violations)}",
            f"  Total time         : {self.total_time_seconds:.3f}s",
            "=" * 60,
        ]
        if self.conflicts:
            lines.append("")
            lines.append("  CONFLICTS:")
            lines.append("-" * 60)
            for c in self.conflicts:
                use = c.use_point if c.use_point is not None else "-"
                access = c.access_kind.value if c.access_kind else c.cause.value
                lines.append(
                    f"  {c.borrow_kind.value} borrow of {c.borrowed_path} at "
                    f"{c.borrow_point}, {access} at {c.invalidating_point}, "
                    f"used at {use}"
                )
            lines.append("-" * 60)
        return "\n".join(lines)


class RegionCheckEngine:
    """Runs liveness, constraint generation, solving and conflict detection.

    Each phase finishes before the next starts; nothing is shared between
    two calls of :meth:`analyze`.
    """

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self._config = config or AnalysisConfig()

    @property
    def config(self) -> AnalysisConfig:
        return self._config

    def analyze(self, body: FunctionBody) -> AnalysisReport:
        """Run the full pipeline on *body*.

        Returns
        -------
        AnalysisReport

        Raises
        ------
        InternalInvariantError
            If the body is malformed.
        SolverLimitExceeded
            When liveness does not converge within
            ``max_liveness_iterations``, or when the solver round limit
            trips with ``raise_on_round_limit``.
        PlaceholderViolationError
            Only with ``strict_placeholders``.
        """
        cfg = self._config
        t0 = time.monotonic()
        report = AnalysisReport(function=body.name, config=cfg,
                                num_points=body.graph.num_points)

        t = time.monotonic()
        liveness = LivenessAnalyzer(
            body,
            strategy=cfg.worklist_strategy,
            max_iterations=cfg.max_liveness_iterations,
        ).run()
        report.phase_seconds["liveness"] = time.monotonic() - t

        t = time.monotonic()
        constraints: ConstraintSet = ConstraintGenerator(body, liveness).generate()
        report.num_constraints = len(constraints)
        report.phase_seconds["constraints"] = time.monotonic() - t

        t = time.monotonic()
        solution: SolveResult = RegionSolver(
            constraints,
            body.lifetimes,
            max_rounds=cfg.max_solver_rounds,
            raise_on_round_limit=cfg.raise_on_round_limit,
            strict_placeholders=cfg.strict_placeholders,
            check_monotonicity=cfg.check_monotonicity,
        ).solve()
        report.regions = solution.regions
        report.placeholder_violations = solution.placeholder_violations
        report.solver_rounds = solution.rounds
        report.converged = solution.converged
        report.phase_seconds["solve"] = time.monotonic() - t

        if cfg.detect_conflicts:
            t = time.monotonic()
            detector = ConflictDetector(
                body.graph, solution.regions, derive_facts(body), liveness, constraints
            )
            report.conflicts = detector.detect()
            report.phase_seconds["conflicts"] = time.monotonic() - t

        report.total_time_seconds = time.monotonic() - t0
        if cfg.verbose:
            logger.info(
                "%s: %d points, %d constraints, %d rounds, %d conflict(s)",
                body.name, report.num_points, report.num_constraints,
                report.solver_rounds, len(report.conflicts),
            )
        return report


def _analyze_one(body: FunctionBody, config: AnalysisConfig) -> AnalysisReport:
    return RegionCheckEngine(config).analyze(body)


def analyze_functions(
    bodies: Sequence[FunctionBody],
    config: Optional[AnalysisConfig] = None,
) -> List[AnalysisReport]:
    """Analyze independent functions; reports come back in input order.

    With ``config.workers > 1`` the bodies are distributed over a process
    pool.  The first error raised by any function propagates.
    """
    config = config or AnalysisConfig()
    if config.workers <= 1 or len(bodies) <= 1:
        return [_analyze_one(b, config) for b in bodies]
    logger.debug("analyzing %d functions on %d workers", len(bodies), config.workers)
    with ProcessPoolExecutor(max_workers=config.workers) as pool:
        futures = [pool.submit(_analyze_one, b, config) for b in bodies]
        return [f.result() for f in futures]
