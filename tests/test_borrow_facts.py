# tests/test_borrow_facts.py
"""
Tests for deriving borrow, access and scope-exit facts from statements.
"""

import pytest

from regionck.body import FunctionBody, Variable
from regionck.borrow_facts import (
    AccessFact,
    AccessKind,
    BorrowFact,
    BorrowKind,
    ScopeExitFact,
    derive_facts,
    through_lifetime,
)
from regionck.ctrlflow_graph import CFGBuilder, Point
from regionck.errors import UnknownLifetimeError, UnknownPointError, UnknownVariableError
from regionck.mir import Place
from regionck.syntax import parse_body
from regionck.types import Ref, Scalar


def P(text):
    return Point.parse(text)


def accesses(facts):
    return [(a.kind, str(a.path), str(a.point), a.through) for a in facts.accesses]


class TestDerivedFacts:

    def test_shared_borrow(self, write_while_borrowed):
        facts = derive_facts(write_while_borrowed)
        assert facts.borrows == [BorrowFact("b", BorrowKind.SHARED, Place("i"), P("A/0"))]

    def test_accesses_in_point_order(self, write_while_borrowed):
        facts = derive_facts(write_while_borrowed)
        assert accesses(facts) == [
            (AccessKind.READ, "i", "A/0", None),
            (AccessKind.WRITE, "r", "A/0", None),
            (AccessKind.WRITE, "i", "B/0", None),
            (AccessKind.READ, "*r", "C/0", "r"),
        ]

    def test_mutable_borrow_writes(self, reassigned):
        facts = derive_facts(reassigned)
        assert [b.kind for b in facts.borrows] == [BorrowKind.MUTABLE, BorrowKind.MUTABLE]
        assert (AccessKind.WRITE, "x", "A/0", None) in accesses(facts)

    def test_overwrites_are_shallow(self, reassigned):
        facts = derive_facts(reassigned)
        flags = {(str(a.path), str(a.point)): a.shallow for a in facts.accesses
                 if a.kind is AccessKind.WRITE}
        assert flags[("x", "A/0")] is False
        assert flags[("p", "A/0")] is True
        assert flags[("x", "A/3")] is True

    def test_drop_is_shallow(self):
        body = parse_body("""
            fn f { let q: &'q mut i32; block A { drop(q); return; } }
        """)
        (fact,) = derive_facts(body).accesses
        assert fact.kind is AccessKind.WRITE
        assert fact.shallow

    def test_moves_switches_drops_and_scope_exits(self):
        body = parse_body("""
            fn f { let a: i32; let b: i32; let c: bool;
                   block A { b = move a; drop(b); storage_dead(a); switch copy c A B; }
                   block B { return; } }
        """)
        facts = derive_facts(body)
        assert accesses(facts) == [
            (AccessKind.MOVE, "a", "A/0", None),
            (AccessKind.WRITE, "b", "A/0", None),
            (AccessKind.WRITE, "b", "A/1", None),
            (AccessKind.READ, "c", "A/3", None),
        ]
        assert facts.scope_exits == [ScopeExitFact("a", P("A/2"))]

    def test_call_arguments(self, map_get_or_insert):
        facts = derive_facts(map_get_or_insert)
        assert (AccessKind.MOVE, "r", "A/1", None) in accesses(facts)
        assert (AccessKind.WRITE, "o", "A/1", None) in accesses(facts)

    def test_explicit_facts_win(self):
        b = CFGBuilder()
        b.block("A").write("x").ret()
        explicit = [AccessFact(AccessKind.READ, Place("x"), P("A/0"))]
        body = FunctionBody(
            "f", b.build(), [Variable("x", Scalar("i32"))], accesses=explicit,
        )
        facts = derive_facts(body)
        assert facts.accesses == explicit
        assert facts.borrows == []


class TestExplicitFactValidation:

    def body(self, **facts):
        b = CFGBuilder()
        b.block("A").write("x").ret()
        variables = [Variable("x", Scalar("i32")), Variable("p", Ref("p", Scalar("i32")))]
        return FunctionBody("f", b.build(), variables, **facts)

    def test_undeclared_borrow_lifetime(self):
        with pytest.raises(UnknownLifetimeError) as info:
            self.body(borrows=[BorrowFact("zz", BorrowKind.SHARED, Place("x"), P("A/0"))])
        assert info.value.lifetime == "zz"

    def test_undeclared_through_lifetime(self):
        with pytest.raises(UnknownLifetimeError):
            self.body(accesses=[
                AccessFact(AccessKind.READ, Place.parse("*p"), P("A/0"), through="zz"),
            ])

    def test_point_outside_graph(self):
        with pytest.raises(UnknownPointError):
            self.body(scope_exits=[ScopeExitFact("x", P("B/0"))])

    def test_undeclared_variable(self):
        with pytest.raises(UnknownVariableError):
            self.body(accesses=[AccessFact(AccessKind.WRITE, Place("y"), P("A/0"))])

    def test_known_lifetimes_accepted(self):
        body = self.body(
            borrows=[BorrowFact("p", BorrowKind.SHARED, Place("x"), P("A/1"))],
            accesses=[AccessFact(AccessKind.READ, Place.parse("*p"), P("A/1"), through="p")],
        )
        assert len(derive_facts(body).borrows) == 1


class TestThroughLifetime:

    def test_first_dereferenced_reference(self):
        body = parse_body("""
            fn f { let q: &'o mut &'i i32;
                   block A { use(**q); return; } }
        """)
        assert through_lifetime(body, Place.parse("**q")) == "o"
        assert through_lifetime(body, Place("q")) is None

    def test_untyped_projection(self):
        body = parse_body("""
            fn f { let s: S; block A { use(s.f); return; } }
        """)
        assert through_lifetime(body, Place.parse("*s.f")) is None

