"""
regionck.types
==============

A deliberately small type language: just enough structure to know which
lifetimes a variable's type mentions, in which variance position, and
which of them a destructor may leave dangling.

Public API
----------
    Variance     - co/contra/in/bi-variance with composition (``xform``)
    Ty           - base class of all types
    Scalar       - a lifetime-free type (``i32``, ``bool``, ``Map``)
    Ref          - ``&'a T`` / ``&'a mut T``
    AdtParam     - one generic parameter of a nominal type
    AdtDecl      - declaration of a nominal type (variances, destructor)
    Adt          - an instantiation of an AdtDecl
    relate_types - turn ``sub <: sup`` into outlives pairs
    drop_lifetimes - lifetimes a destructor may still touch

Variance rules follow the usual subtyping story: ``&'a T <: &'b T``
requires ``'a: 'b``; shared references are covariant in ``T`` and mutable
references are invariant in ``T``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Tuple

from regionck.errors import TypeMismatchError


# ===========================================================================
# VARIANCE
# ===========================================================================

class Variance(enum.Enum):
    """Position of a type or lifetime with respect to subtyping."""

    COVARIANT = "+"
    CONTRAVARIANT = "-"
    INVARIANT = "="
    BIVARIANT = "*"

    def xform(self, inner: "Variance") -> "Variance":
        """Variance of a position declared *inner* inside a *self* context."""
        if self is Variance.COVARIANT:
            return inner
        if self is Variance.INVARIANT or self is Variance.BIVARIANT:
            return self
        # contravariant context flips the inner position
        if inner is Variance.COVARIANT:
            return Variance.CONTRAVARIANT
        if inner is Variance.CONTRAVARIANT:
            return Variance.COVARIANT
        return inner

    @classmethod
    def parse(cls, text: str) -> "Variance":
        """Accept either the symbol or a keyword such as ``invariant``."""
        text = text.strip().lower()
        for v in cls:
            if text in (v.value, v.name.lower()):
                return v
        raise ValueError(f"unknown variance {text!r}")


# ===========================================================================
# TYPES
# ===========================================================================

class Ty:
    """Base class for types."""

    def lifetimes(self) -> Tuple[str, ...]:
        """Every lifetime mentioned by this type, in first-occurrence order."""
        seen: List[str] = []
        for lt in self._walk_lifetimes():
            if lt not in seen:
                seen.append(lt)
        return tuple(seen)

    def _walk_lifetimes(self) -> Iterator[str]:
        return iter(())

    def mentions(self, lifetime: str) -> bool:
        return lifetime in self.lifetimes()


@dataclass(frozen=True)
class Scalar(Ty):
    """A type without lifetimes."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Ref(Ty):
    """A reference ``&'lifetime referent`` (``mutable`` for ``&mut``)."""

    lifetime: str
    referent: Ty
    mutable: bool = False

    def _walk_lifetimes(self) -> Iterator[str]:
        yield self.lifetime
        yield from self.referent._walk_lifetimes()

    def __str__(self) -> str:
        mut = "mut " if self.mutable else ""
        return f"&'{self.lifetime} {mut}{self.referent}"


@dataclass(frozen=True)
class AdtParam:
    """Generic parameter of a nominal type.

    Attributes
    ----------
    name : str
        Parameter name (without the leading ``'`` for lifetimes).
    variance : Variance
        Declared variance of the parameter.
    may_dangle : bool
        The type's destructor promises not to access data of this
        parameter, so it may be dangling when the value is dropped.
    """

    name: str
    variance: Variance = Variance.COVARIANT
    may_dangle: bool = False


@dataclass(frozen=True)
class AdtDecl:
    """Declaration of a nominal type constructor such as ``Vec<T>``."""

    name: str
    lifetime_params: Tuple[AdtParam, ...] = ()
    type_params: Tuple[AdtParam, ...] = ()
    has_destructor: bool = False


@dataclass(frozen=True)
class Adt(Ty):
    """An instantiated nominal type."""

    decl: AdtDecl
    lifetime_args: Tuple[str, ...] = ()
    type_args: Tuple[Ty, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if len(self.lifetime_args) != len(self.decl.lifetime_params) or len(
            self.type_args
        ) != len(self.decl.type_params):
            raise TypeMismatchError(
                self.decl.name,
                self.decl.name,
                f"wrong number of generic arguments for {self.decl.name}",
            )

    def _walk_lifetimes(self) -> Iterator[str]:
        yield from self.lifetime_args
        for arg in self.type_args:
            yield from arg._walk_lifetimes()

    def __str__(self) -> str:
        args = [f"'{lt}" for lt in self.lifetime_args]
        args.extend(str(t) for t in self.type_args)
        if not args:
            return self.decl.name
        return f"{self.decl.name}<{', '.join(args)}>"


# Interior-mutability wrapper: invariant in its contents.
CELL = AdtDecl("Cell", type_params=(AdtParam("T", Variance.INVARIANT),))


def cell(inner: Ty) -> Adt:
    """Shorthand for ``Cell<inner>``."""
    return Adt(CELL, (), (inner,))


# ===========================================================================
# RELATING TYPES
# ===========================================================================

def _outlives_for(
    sub_lt: str, sup_lt: str, variance: Variance
) -> Iterator[Tuple[str, str]]:
    if variance is Variance.COVARIANT:
        yield (sub_lt, sup_lt)
    elif variance is Variance.CONTRAVARIANT:
        yield (sup_lt, sub_lt)
    elif variance is Variance.INVARIANT:
        yield (sub_lt, sup_lt)
        yield (sup_lt, sub_lt)


def _relate(sub: Ty, sup: Ty, variance: Variance) -> Iterator[Tuple[str, str]]:
    if isinstance(sub, Scalar) and isinstance(sup, Scalar):
        if sub.name != sup.name:
            raise TypeMismatchError(sub, sup)
        return
    if isinstance(sub, Ref) and isinstance(sup, Ref):
        if sub.mutable != sup.mutable:
            raise TypeMismatchError(sub, sup)
        yield from _outlives_for(sub.lifetime, sup.lifetime, variance)
        inner = Variance.INVARIANT if sub.mutable else Variance.COVARIANT
        yield from _relate(sub.referent, sup.referent, variance.xform(inner))
        return
    if isinstance(sub, Adt) and isinstance(sup, Adt):
        if sub.decl != sup.decl:
            raise TypeMismatchError(sub, sup)
        for param, a, b in zip(sub.decl.lifetime_params, sub.lifetime_args, sup.lifetime_args):
            yield from _outlives_for(a, b, variance.xform(param.variance))
        for param, a, b in zip(sub.decl.type_params, sub.type_args, sup.type_args):
            yield from _relate(a, b, variance.xform(param.variance))
        return
    raise TypeMismatchError(sub, sup)


def relate_types(
    sub: Ty, sup: Ty, variance: Variance = Variance.COVARIANT
) -> List[Tuple[str, str]]:
    """Return the ``(longer, shorter)`` outlives pairs implied by ``sub <: sup``.

    A pair ``(a, b)`` reads ``'a: 'b``.  Identical pairs and trivial
    ``'a: 'a`` pairs are dropped; order is first occurrence.

    Raises
    ------
    TypeMismatchError
        If the two types do not have the same shape.
    """
    out: List[Tuple[str, str]] = []
    for pair in _relate(sub, sup, variance):
        if pair[0] != pair[1] and pair not in out:
            out.append(pair)
    return out


# ===========================================================================
# DROP
# ===========================================================================

def drop_lifetimes(ty: Ty) -> Tuple[str, ...]:
    """Lifetimes that must still be valid when a value of *ty* is dropped.

    References have no drop glue.  A nominal type with a destructor keeps
    every parameter that is not marked ``may_dangle``; the contents of its
    type arguments are dropped too, so their own drop lifetimes are always
    included.
    """
    found: List[str] = []

    def add(items: Iterable[str]) -> None:
        for lt in items:
            if lt not in found:
                found.append(lt)

    def walk(t: Ty) -> None:
        if not isinstance(t, Adt):
            return
        if t.decl.has_destructor:
            add(
                lt
                for param, lt in zip(t.decl.lifetime_params, t.lifetime_args)
                if not param.may_dangle
            )
            for param, arg in zip(t.decl.type_params, t.type_args):
                if not param.may_dangle:
                    add(arg.lifetimes())
        for arg in t.type_args:
            walk(arg)

    walk(ty)
    return tuple(found)
