# tests/test_dataflow_engine.py
"""
Tests for the lattice/worklist engine that liveness is built on.
"""

import pytest

from regionck.ctrlflow_graph import CFGBuilder
from regionck.dataflow_engine import (
    IntraproceduralSolver,
    PowersetLattice,
    ProductLattice,
    WorklistStrategy,
    run_backward_analysis,
)


@pytest.fixture
def cfg():
    b = CFGBuilder()
    b.block("A").goto("B", "C")
    b.block("B").goto("D")
    b.block("C").goto("A", "D")
    b.block("D").ret()
    b.block("dead").goto("D")
    return b.build()


def visit(block, fact):
    return fact | {block.name}


class TestLattices:

    def test_powerset(self):
        lat = PowersetLattice()
        assert lat.bottom() == frozenset()
        assert lat.join(frozenset({1}), frozenset({2})) == {1, 2}
        assert lat.leq(frozenset({1}), frozenset({1, 2}))
        assert not lat.leq(frozenset({3}), frozenset({1, 2}))

    def test_product(self):
        lat = ProductLattice(PowersetLattice(), PowersetLattice())
        a = (frozenset({1}), frozenset())
        b = (frozenset(), frozenset({2}))
        assert lat.join(a, b) == (frozenset({1}), frozenset({2}))
        assert lat.leq(lat.bottom(), a)
        assert not lat.leq(a, b)
        assert lat.eq(a, a)

    def test_join_all(self):
        lat = PowersetLattice()
        assert lat.join_all([frozenset({1}), frozenset({2}), frozenset()]) == {1, 2}


class TestBackward:

    @pytest.mark.parametrize("strategy", list(WorklistStrategy))
    def test_paths_out_of_block(self, cfg, strategy):
        result = run_backward_analysis(
            cfg, PowersetLattice(), visit, strategy=strategy,
        )
        assert result.converged
        assert result.before("B") == {"B", "D"}
        assert result.before("A") == {"A", "B", "C", "D"}
        assert result.after("D") == frozenset()

    def test_unreachable_block_is_solved(self, cfg):
        result = run_backward_analysis(cfg, PowersetLattice(), visit)
        assert result.before("dead") == {"dead", "D"}

    def test_initial_value_at_exits(self, cfg):
        result = run_backward_analysis(
            cfg, PowersetLattice(), visit, initial_value=frozenset({"init"}),
        )
        assert result.after("D") == {"init"}
        assert "init" in result.before("A")
        assert "init" in result.before("dead")

    def test_iteration_limit(self, cfg):
        result = run_backward_analysis(cfg, PowersetLattice(), visit, max_iterations=1)
        assert not result.converged
        assert result.iterations == 1

    def test_solver_defaults(self, cfg):
        solver = IntraproceduralSolver(cfg, PowersetLattice(), visit)
        assert solver.strategy is WorklistStrategy.PO
        assert solver.initial_value == frozenset()
        assert solver.solve().converged
