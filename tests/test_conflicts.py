# tests/test_conflicts.py
"""
Tests for conflict detection: overlap of places, the shared/mutable
borrow rules, use after scope, and the choice of the later use point.
"""

import pytest

from regionck.borrow_facts import (
    AccessFact,
    AccessKind,
    BorrowFact,
    BorrowFacts,
    BorrowKind,
)
from regionck.conflicts import (
    ConflictCause,
    ConflictDetector,
    ConflictRecord,
    flows_to,
    overwrite_overlaps,
    places_overlap,
)
from regionck.constraints import ConstraintGenerator
from regionck.ctrlflow_graph import Point
from regionck.engine import RegionCheckEngine
from regionck.explain import explain_conflict
from regionck.liveness import LivenessAnalyzer
from regionck.mir import Place
from regionck.region_solver import RegionSolver
from regionck.regions import Region
from regionck.syntax import parse_body


def P(text):
    return Point.parse(text)


def check(text):
    return RegionCheckEngine().analyze(parse_body(text)).conflicts


def pipeline(body):
    liveness = LivenessAnalyzer(body).run()
    constraints = ConstraintGenerator(body, liveness).generate()
    regions = RegionSolver(constraints, body.lifetimes).solve().regions
    return liveness, constraints, regions


class TestPlacesOverlap:

    @pytest.mark.parametrize("a, b, expected", [
        ("x", "x", True),
        ("x", "x.f", True),
        ("x.f", "x.g", False),
        ("x.f", "x.f.g", True),
        ("x[_]", "x[_]", True),
        ("x", "y", False),
        ("*p", "p", True),
        ("(*p).f", "(*p).g", False),
    ])
    def test_overlap(self, a, b, expected):
        assert places_overlap(Place.parse(a), Place.parse(b)) is expected
        assert places_overlap(Place.parse(b), Place.parse(a)) is expected


class TestOverwriteOverlaps:

    @pytest.mark.parametrize("written, borrowed, expected", [
        ("q", "*q", False),
        ("q", "(*q).f", False),
        ("x", "x.f", True),
        ("x.f", "(*x.f).g", False),
        ("*q", "*q", True),
        ("*q", "**q", False),
        ("x.f", "x", True),
        ("x", "y", False),
    ])
    def test_overlap(self, written, borrowed, expected):
        assert overwrite_overlaps(Place.parse(written), Place.parse(borrowed)) is expected


class TestFlowsTo:

    def test_transitive(self, map_get_or_insert):
        _, constraints, _ = pipeline(map_get_or_insert)
        assert flows_to(constraints, "m") >= {"m", "r", "q", "o", "v"}
        assert "m" not in flows_to(constraints, "v")


class TestSharedBorrow:

    def test_read_is_fine(self):
        assert check("""
            fn f { let i: i32; let y: i32; let r: &'r i32;
                   block A { r = &'b i; y = copy i; use(*r); return; } }
        """) == []

    def test_move_conflicts(self):
        (c,) = check("""
            fn f { let i: i32; let y: i32; let r: &'r i32;
                   block A { r = &'b i; y = move i; use(*r); return; } }
        """)
        assert c.access_kind is AccessKind.MOVE
        assert c.invalidating_point == P("A/1")

    def test_write_after_last_use_is_fine(self):
        assert check("""
            fn f { let i: i32; let r: &'r i32;
                   block A { r = &'b i; use(*r); i = 1; return; } }
        """) == []

    def test_use_at_invalidating_point(self):
        (c,) = check("""
            fn f { let i: i32; let r: &'r i32;
                   block A { r = &'b i; i = copy *r; return; } }
        """)
        assert c.invalidating_point == P("A/1")
        assert c.use_point == P("A/1")

    def test_sorted_by_invalidating_point(self):
        conflicts = check("""
            fn f { let i: i32; let r: &'r i32;
                   block A { r = &'b i; goto B; }
                   block B { i = 1; i = 2; goto C; }
                   block C { use(*r); return; } }
        """)
        assert [str(c.invalidating_point) for c in conflicts] == ["B/0", "B/1"]
        assert {c.use_point for c in conflicts} == {P("C/0")}

    def test_only_on_the_live_branch(self):
        conflicts = check("""
            fn f { let i: i32; let c: bool; let r: &'r i32;
                   block A { r = &'b i; switch copy c B C; }
                   block B { i = 1; return; }
                   block C { i = 2; use(*r); return; } }
        """)
        assert [str(c.invalidating_point) for c in conflicts] == ["C/0"]

    def test_write_through_reborrowed_reference_conflicts(self):
        (c,) = check("""
            fn f { let i: i32; let q: &'q mut i32; let r: &'r i32;
                   block A { q = &'m mut i; r = &'a *q; *q = 1; use(*r); return; } }
        """)
        assert c.borrowed_path == Place.parse("*q")
        assert c.access_kind is AccessKind.WRITE
        assert c.invalidating_point == P("A/2")
        assert c.use_point == P("A/3")


class TestMutableBorrow:

    SOURCE = """
        fn f { let x: i32; let y: i32; let p: &'p mut i32;
               block A { p = &'a mut x; *p = 1; y = copy x; use(*p); return; } }
    """

    def test_write_through_reference_is_fine(self):
        conflicts = check(self.SOURCE)
        assert P("A/1") not in {c.invalidating_point for c in conflicts}

    def test_direct_read_conflicts(self):
        (c,) = check(self.SOURCE)
        assert c.borrow_kind is BorrowKind.MUTABLE
        assert c.access_kind is AccessKind.READ
        assert c.invalidating_point == P("A/2")
        assert c.use_point == P("A/3")

    def test_access_through_carrier_is_fine(self):
        body = parse_body(self.SOURCE)
        liveness, constraints, regions = pipeline(body)
        facts = BorrowFacts(
            borrows=[BorrowFact("a", BorrowKind.MUTABLE, Place("x"), P("A/0"))],
            accesses=[
                AccessFact(AccessKind.WRITE, Place("x"), P("A/1"), through="p"),
                AccessFact(AccessKind.WRITE, Place("x"), P("A/2"), through="elsewhere"),
            ],
        )
        conflicts = ConflictDetector(body.graph, regions, facts, liveness, constraints).detect()
        assert [str(c.invalidating_point) for c in conflicts] == ["A/2"]

    def test_reassigning_reference_keeps_reborrow(self):
        assert check("""
            fn f { let x: i32; let y: i32; let q: &'q mut i32; let r: &'r mut i32;
                   block A { q = &'x mut x; r = &'a mut *q; q = &'y mut y;
                             use(*r); return; } }
        """) == []

    def test_dropping_reference_keeps_reborrow(self):
        assert check("""
            fn f { let q: &'q mut i32; let r: &'r mut i32;
                   block A { r = &'a mut *q; drop(q); use(*r); return; } }
        """) == []


class TestUseAfterScope:

    def test_storage_dead_while_borrowed(self):
        (c,) = check("""
            fn f { let x: i32; let p: &'p i32;
                   block A { p = &'a x; storage_dead(x); use(*p); return; } }
        """)
        assert c.cause is ConflictCause.USE_AFTER_SCOPE
        assert c.access_kind is None
        assert c.invalidating_point == P("A/1")
        assert c.use_point == P("A/2")

    def test_storage_dead_after_last_use(self):
        assert check("""
            fn f { let x: i32; let p: &'p i32;
                   block A { p = &'a x; use(*p); storage_dead(x); return; } }
        """) == []

    def test_reborrow_through_reference_ignored(self):
        assert check("""
            fn f { let q: &'q i32; let r: &'r i32;
                   block A { r = &'b *q; storage_dead(q); use(*r); return; } }
        """) == []


class TestUsePoint:

    def test_no_use_found(self):
        body = parse_body("""
            fn f { let x: i32; block A { nop; x = 1; return; } }
        """)
        liveness, constraints, _ = pipeline(body)
        facts = BorrowFacts(
            borrows=[BorrowFact("a", BorrowKind.SHARED, Place("x"), P("A/0"))],
            accesses=[AccessFact(AccessKind.WRITE, Place("x"), P("A/1"))],
        )
        regions = {"a": Region.everything(body.graph)}
        (c,) = ConflictDetector(body.graph, regions, facts, liveness, constraints).detect()
        assert c.use_point is None
        assert c.to_dict()["use_point"] is None

    def test_nearest_use_wins(self):
        (c,) = check("""
            fn f { let i: i32; let c: bool; let r: &'r i32;
                   block A { r = &'b i; i = 1; switch copy c B C; }
                   block B { nop; nop; use(*r); return; }
                   block C { use(*r); return; } }
        """)
        assert c.use_point == P("C/0")


class TestRecord:

    def test_to_dict(self, write_while_borrowed):
        (c,) = RegionCheckEngine().analyze(write_while_borrowed).conflicts
        assert c.to_dict() == {
            "borrow_point": "A/0",
            "invalidating_point": "B/0",
            "use_point": "C/0",
            "borrow_kind": "shared",
            "borrowed_path": "i",
            "access_kind": "write",
            "cause": "invalidated",
            "lifetime": "b",
        }


class TestExplain:

    def test_paths_inside_region(self, write_while_borrowed):
        report = RegionCheckEngine().analyze(write_while_borrowed)
        (c,) = report.conflicts
        narrative = explain_conflict(c, write_while_borrowed.graph, report.regions)
        assert narrative.borrow_to_action == [P("A/0"), P("A/1"), P("B/0")]
        assert narrative.action_to_use == [P("B/0"), P("B/1"), P("C/0")]
        assert narrative.to_dict()["action_to_use"] == ["B/0", "B/1", "C/0"]

    def test_fallback_path(self, write_while_borrowed):
        graph = write_while_borrowed.graph
        record = ConflictRecord(
            borrow_point=P("A/0"),
            invalidating_point=P("B/0"),
            use_point=None,
            borrow_kind=BorrowKind.SHARED,
            borrowed_path=Place("i"),
            access_kind=AccessKind.WRITE,
            cause=ConflictCause.INVALIDATED,
            lifetime="b",
        )
        narrative = explain_conflict(record, graph, {"b": Region(graph)})
        assert narrative.borrow_to_action == [P("A/0"), P("A/1"), P("B/0")]
        assert narrative.action_to_use is None
