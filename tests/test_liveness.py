# tests/test_liveness.py
"""
Tests for use/drop liveness and the lifetimes it makes live, including
the may-dangle treatment of drops.
"""

import pytest

from regionck.body import FunctionBuilder
from regionck.ctrlflow_graph import Point
from regionck.dataflow_engine import WorklistStrategy
from regionck.errors import SolverLimitExceeded
from regionck.liveness import LivenessAnalyzer
from regionck.mir import Call, Move, Place
from regionck.syntax import parse_body
from regionck.types import Adt, AdtDecl, AdtParam, Ref, Scalar

I32 = Scalar("i32")


def P(text):
    return Point.parse(text)


def vec_decl(may_dangle):
    return AdtDecl("Vec", type_params=(AdtParam("T", may_dangle=may_dangle),),
                   has_destructor=True)


def dropped_vector_body(may_dangle, predicate=None):
    decl = vec_decl(may_dangle)
    vec_of = Call(
        "vec_of", (Move(Place("r")),),
        (Ref("k", I32),), Adt(decl, (), (Ref("k", I32),)),
    )
    fb = FunctionBuilder("drops")
    fb.let("x", I32)
    fb.let("v", Adt(decl, (), (Ref("v", I32),)))
    fb.let("r", Ref("r", I32))
    if predicate is not None:
        fb.may_dangle(predicate)
    (fb.block("A")
        .borrow("r", "a", "x")       # A/0
        .call("v", vec_of)           # A/1
        .use("v")                    # A/2
        .nop()                       # A/3
        .drop("v")                   # A/4
        .ret())                      # A/5
    return fb


class TestUseLiveness:

    def test_live_between_def_and_use(self, branch_merge):
        lv = LivenessAnalyzer(branch_merge).run()
        assert lv.is_live("p", P("A/1"))
        assert lv.is_live("p", P("B/0"))
        assert lv.is_live("p", P("C/0"))

    def test_dead_at_definition(self, branch_merge):
        lv = LivenessAnalyzer(branch_merge).run()
        assert not lv.is_live("p", P("A/0"))
        assert not lv.is_live("p", P("B/1"))

    def test_dead_after_last_use(self, branch_merge):
        lv = LivenessAnalyzer(branch_merge).run()
        assert lv.live_in(P("C/1")) == set()

    def test_borrowed_local_is_used(self, branch_merge):
        lv = LivenessAnalyzer(branch_merge).run()
        assert "foo" in lv.use_live(P("A/0"))

    def test_write_through_reference_reads_it(self):
        body = parse_body("""
            fn f { let x: i32; let p: &'p mut i32;
                   block A { p = &'a mut x; *p = 1; return; } }
        """)
        lv = LivenessAnalyzer(body).run()
        assert lv.is_live("p", P("A/1"))

    def test_loop(self):
        body = parse_body("""
            fn f { let x: i32; let p: &'p i32;
                   block A { p = &'a x; goto L; }
                   block L { use(*p); switch copy x L E; }
                   block E { return; } }
        """)
        lv = LivenessAnalyzer(body).run()
        assert lv.is_live("p", P("L/1"))
        assert not lv.is_live("p", P("E/0"))

    @pytest.mark.parametrize("strategy", list(WorklistStrategy))
    def test_strategy_does_not_matter(self, branch_merge, strategy):
        reference = LivenessAnalyzer(branch_merge).run()
        other = LivenessAnalyzer(branch_merge, strategy=strategy).run()
        for p in branch_merge.graph.all_points():
            assert other.live_in(p) == reference.live_in(p)


class TestDropLiveness:

    def test_drop_makes_variable_live(self):
        lv = LivenessAnalyzer(dropped_vector_body(True).build()).run()
        assert lv.is_live("v", P("A/3"))
        assert "v" in lv.drop_live(P("A/4"))
        assert "v" not in lv.use_live(P("A/3"))

    def test_may_dangle_lifetime_not_live_at_drop(self):
        lv = LivenessAnalyzer(dropped_vector_body(True).build()).run()
        assert "v" in lv.live_lifetimes(P("A/2"))
        assert "v" not in lv.live_lifetimes(P("A/3"))
        assert "v" not in lv.live_lifetimes(P("A/4"))

    def test_non_dangling_lifetime_live_at_drop(self):
        lv = LivenessAnalyzer(dropped_vector_body(False).build()).run()
        assert "v" in lv.live_lifetimes(P("A/3"))
        assert "v" in lv.live_lifetimes(P("A/4"))

    def test_custom_predicate_overrides_declaration(self):
        fb = dropped_vector_body(False, predicate=lambda var, lt: True)
        lv = LivenessAnalyzer(fb.build()).run()
        assert "v" not in lv.live_lifetimes(P("A/4"))

    def test_use_sites_of_drop(self):
        lv = LivenessAnalyzer(dropped_vector_body(False).build()).run()
        assert lv.use_sites(P("A/4")) == {"v": ("v",)}
        dangling = LivenessAnalyzer(dropped_vector_body(True).build()).run()
        assert dangling.use_sites(P("A/4")) == {}


class TestQueries:

    def test_use_sites(self, write_while_borrowed):
        lv = LivenessAnalyzer(write_while_borrowed).run()
        assert lv.use_sites(P("C/0")) == {"r": ("r",)}
        assert lv.use_sites(P("B/0")) == {}

    def test_lazy_run(self, write_while_borrowed):
        lv = LivenessAnalyzer(write_while_borrowed)
        assert lv.is_live("r", P("B/0"))

    def test_live_lifetimes_cached(self, write_while_borrowed):
        lv = LivenessAnalyzer(write_while_borrowed).run()
        assert lv.live_lifetimes(P("B/0")) is lv.live_lifetimes(P("B/0"))


class TestIterationLimit:

    def test_partial_fixpoint_raises(self, write_while_borrowed):
        lv = LivenessAnalyzer(write_while_borrowed, max_iterations=1)
        with pytest.raises(SolverLimitExceeded) as info:
            lv.run()
        assert info.value.phase == "liveness"

    def test_lazy_query_raises_too(self, write_while_borrowed):
        lv = LivenessAnalyzer(write_while_borrowed, max_iterations=1)
        with pytest.raises(SolverLimitExceeded):
            lv.is_live("r", P("C/0"))
