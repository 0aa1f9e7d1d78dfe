# tests/test_types.py
"""
Tests for the type language: variance composition, relating types into
outlives pairs, and which lifetimes a destructor may still touch.
"""

import pytest

from regionck.errors import TypeMismatchError
from regionck.types import (
    Adt,
    AdtDecl,
    AdtParam,
    Ref,
    Scalar,
    Variance,
    cell,
    drop_lifetimes,
    relate_types,
)

I32 = Scalar("i32")


class TestVariance:

    def test_covariant_context_keeps_inner(self):
        for v in Variance:
            assert Variance.COVARIANT.xform(v) is v

    def test_contravariant_flips(self):
        assert Variance.CONTRAVARIANT.xform(Variance.COVARIANT) is Variance.CONTRAVARIANT
        assert Variance.CONTRAVARIANT.xform(Variance.CONTRAVARIANT) is Variance.COVARIANT

    def test_invariant_absorbs(self):
        assert Variance.INVARIANT.xform(Variance.COVARIANT) is Variance.INVARIANT

    def test_parse(self):
        assert Variance.parse("invariant") is Variance.INVARIANT
        assert Variance.parse("-") is Variance.CONTRAVARIANT
        with pytest.raises(ValueError):
            Variance.parse("sideways")


class TestLifetimes:

    def test_first_occurrence_order(self):
        ty = Ref("a", Ref("b", Ref("a", I32)))
        assert ty.lifetimes() == ("a", "b")

    def test_scalar_has_none(self):
        assert I32.lifetimes() == ()

    def test_str(self):
        assert str(Ref("a", I32, mutable=True)) == "&'a mut i32"
        assert str(cell(Ref("c", I32))) == "Cell<&'c i32>"

    def test_wrong_arity(self):
        with pytest.raises(TypeMismatchError):
            Adt(AdtDecl("Vec", type_params=(AdtParam("T"),)), (), ())


class TestRelateTypes:

    def test_shared_reference_is_covariant(self):
        assert relate_types(Ref("a", I32), Ref("b", I32)) == [("a", "b")]

    def test_nested_shared(self):
        sub = Ref("a", Ref("x", I32))
        sup = Ref("b", Ref("y", I32))
        assert relate_types(sub, sup) == [("a", "b"), ("x", "y")]

    def test_mutable_referent_is_invariant(self):
        sub = Ref("a", Ref("x", I32), mutable=True)
        sup = Ref("b", Ref("y", I32), mutable=True)
        assert relate_types(sub, sup) == [("a", "b"), ("x", "y"), ("y", "x")]

    def test_cell_is_invariant(self):
        pairs = relate_types(cell(Ref("k", I32)), cell(Ref("c", I32)))
        assert pairs == [("k", "c"), ("c", "k")]

    def test_contravariant_parameter(self):
        fn_like = AdtDecl("Fn", lifetime_params=(AdtParam("a", Variance.CONTRAVARIANT),))
        assert relate_types(Adt(fn_like, ("x",)), Adt(fn_like, ("y",))) == [("y", "x")]

    def test_bivariant_parameter_is_ignored(self):
        ph = AdtDecl("Phantom", lifetime_params=(AdtParam("a", Variance.BIVARIANT),))
        assert relate_types(Adt(ph, ("x",)), Adt(ph, ("y",))) == []

    def test_trivial_pairs_dropped(self):
        assert relate_types(Ref("a", I32), Ref("a", I32)) == []

    def test_explicit_invariance(self):
        pairs = relate_types(Ref("a", I32), Ref("b", I32), Variance.INVARIANT)
        assert pairs == [("a", "b"), ("b", "a")]

    @pytest.mark.parametrize("sub, sup", [
        (I32, Scalar("bool")),
        (Ref("a", I32), I32),
        (Ref("a", I32), Ref("b", I32, mutable=True)),
    ])
    def test_shape_mismatch(self, sub, sup):
        with pytest.raises(TypeMismatchError):
            relate_types(sub, sup)


class TestDropLifetimes:

    VEC = AdtDecl("Vec", type_params=(AdtParam("T"),), has_destructor=True)
    VEC_DANGLE = AdtDecl(
        "Vec", type_params=(AdtParam("T", may_dangle=True),), has_destructor=True,
    )

    def test_reference_has_no_drop_glue(self):
        assert drop_lifetimes(Ref("a", I32)) == ()

    def test_destructor_keeps_parameters(self):
        assert drop_lifetimes(Adt(self.VEC, (), (Ref("v", I32),))) == ("v",)

    def test_may_dangle_parameter(self):
        assert drop_lifetimes(Adt(self.VEC_DANGLE, (), (Ref("v", I32),))) == ()

    def test_contents_still_dropped(self):
        inner = Adt(self.VEC, (), (Ref("x", I32),))
        outer = Adt(self.VEC_DANGLE, (), (inner,))
        assert drop_lifetimes(outer) == ("x",)

    def test_no_destructor(self):
        plain = AdtDecl("Pair", lifetime_params=(AdtParam("a"),))
        assert drop_lifetimes(Adt(plain, ("a",))) == ()
