"""
regionck.body
=============

The unit of analysis: one function's graph together with its typed
variables, lifetime variables and externally supplied obligations.

A :class:`FunctionBody` is what the lowering collaborator hands to
:class:`regionck.engine.RegionCheckEngine`.  Free lifetime variables are
not declared explicitly; every lifetime mentioned by a variable type, a
borrow expression, a call signature or an obligation is collected as a
free variable.  Placeholders must be declared, with their fixed region.

Typical usage::

    fb = FunctionBuilder("example")
    fb.let("x", Scalar("i32"))
    fb.let("p", Ref("p", Scalar("i32")))
    fb.block("A").borrow("p", "a", "x").use("*p").ret()
    body = fb.build()
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import (
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from regionck.ctrlflow_graph import CFGBuilder, BlockBuilder, ControlFlowGraph, Point
from regionck.errors import (
    ErrorCode,
    InternalInvariantError,
    UnknownLifetimeError,
    UnknownPointError,
    UnknownVariableError,
)
from regionck.mir import (
    Assign,
    Borrow,
    Call,
    Deref,
    Index,
    Operand,
    Place,
    Rvalue,
    Statement,
    UseOperand,
    operand_place,
)
from regionck.types import Adt, Ref, Ty, Variance, drop_lifetimes

logger = logging.getLogger(__name__)


# ===========================================================================
# VARIABLES AND LIFETIMES
# ===========================================================================

@dataclass(frozen=True)
class Variable:
    """A typed local of the analyzed function."""

    name: str
    ty: Ty

    def __str__(self) -> str:
        return f"{self.name}: {self.ty}"


class LifetimeKind(enum.Enum):
    FREE = "free"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class LifetimeVariable:
    """An inference unknown scoped to one function.

    Attributes
    ----------
    name : str
        Stable id (written ``'name`` in text).
    kind : LifetimeKind
        ``FREE`` variables are solved; ``PLACEHOLDER`` variables stand for
        named parameters and keep their fixed region.
    fixed : frozenset of Point, optional
        The fixed region of a placeholder.  ``None`` together with
        ``covers_all`` means "every point of the function".
    covers_all : bool
        Placeholder whose fixed region is the whole function.
    """

    name: str
    kind: LifetimeKind = LifetimeKind.FREE
    fixed: Optional[FrozenSet[Point]] = None
    covers_all: bool = False

    @property
    def is_placeholder(self) -> bool:
        return self.kind is LifetimeKind.PLACEHOLDER

    def fixed_bits(self, graph: ControlFlowGraph) -> int:
        """Bitset of the fixed region (0 for free variables)."""
        if not self.is_placeholder:
            return 0
        if self.covers_all:
            return graph.all_points_bits
        return graph.points_to_bits(self.fixed or ())


# ===========================================================================
# OBLIGATIONS
# ===========================================================================

@dataclass(frozen=True)
class SubtypeObligation:
    """``sub <: sup`` must hold at ``point`` (from the type checker)."""

    sub: Ty
    sup: Ty
    point: Point
    variance: Variance = Variance.COVARIANT


@dataclass(frozen=True)
class OutlivesObligation:
    """``'longer: 'shorter`` must hold at ``point``."""

    longer: str
    shorter: str
    point: Point


Obligation = Union[SubtypeObligation, OutlivesObligation]

MayDangle = Callable[[Variable, str], bool]


# ===========================================================================
# FUNCTION BODY
# ===========================================================================

class FunctionBody:
    """Everything the engine needs to check one function.

    Parameters
    ----------
    name : str
        Function name, used in reports.
    graph : ControlFlowGraph
        The finalized control-flow graph.
    variables : sequence of Variable
        Every local mentioned by the graph.
    placeholders : sequence of LifetimeVariable, optional
        Placeholder lifetimes with their fixed regions.
    obligations : sequence of Obligation, optional
        Extra subtyping/outlives obligations from the type checker.
    may_dangle : callable(Variable, str) -> bool, optional
        ``True`` when the destructor of the variable never touches data of
        the given lifetime.  Defaults to :func:`regionck.types.drop_lifetimes`.
    borrows, accesses, scope_exits : list, optional
        Explicit borrow facts; derived from the statements when omitted
        (see :func:`regionck.borrow_facts.derive_facts`).

    Raises
    ------
    UnknownVariableError
        If a statement names a variable that is not declared.
    UnknownPointError
        If an obligation, placeholder or explicit fact names a point
        outside the graph.
    UnknownLifetimeError
        If an explicit borrow or access fact names a lifetime that no
        type, statement or obligation mentions.
    """

    def __init__(
        self,
        name: str,
        graph: ControlFlowGraph,
        variables: Sequence[Variable],
        placeholders: Sequence[LifetimeVariable] = (),
        obligations: Sequence[Obligation] = (),
        may_dangle: Optional[MayDangle] = None,
        borrows: Optional[list] = None,
        accesses: Optional[list] = None,
        scope_exits: Optional[list] = None,
    ) -> None:
        self.name = name
        self.graph = graph
        self.variables: Dict[str, Variable] = {}
        for var in variables:
            if var.name in self.variables:
                raise InternalInvariantError(
                    f"variable {var.name!r} declared twice",
                    code=ErrorCode.DUPLICATE_VARIABLE,
                    details={"variable": var.name},
                )
            self.variables[var.name] = var
        self.obligations: List[Obligation] = list(obligations)
        self._may_dangle = may_dangle
        self.borrows = borrows
        self.accesses = accesses
        self.scope_exits = scope_exits

        self.lifetimes: Dict[str, LifetimeVariable] = {}
        for lv in placeholders:
            if lv.name in self.lifetimes:
                raise InternalInvariantError(
                    f"lifetime '{lv.name} declared twice",
                    code=ErrorCode.DUPLICATE_LIFETIME,
                    details={"lifetime": lv.name},
                )
            for p in lv.fixed or ():
                if p not in graph:
                    raise UnknownPointError(p)
            self.lifetimes[lv.name] = lv
        self._validate_statements()
        for lt in self._mentioned_lifetimes():
            if lt not in self.lifetimes:
                self.lifetimes[lt] = LifetimeVariable(lt)
        self._validate_facts()
        logger.debug(
            "body %s: %d variables, %d lifetimes, %d obligations",
            name, len(self.variables), len(self.lifetimes), len(self.obligations),
        )

    # ----- lookups -----------------------------------------------------------

    def variable(self, name: str) -> Variable:
        try:
            return self.variables[name]
        except KeyError:
            raise UnknownVariableError(name) from None

    def lifetime(self, name: str) -> LifetimeVariable:
        try:
            return self.lifetimes[name]
        except KeyError:
            raise UnknownLifetimeError(name) from None

    def may_dangle(self, var: Variable, lifetime: str) -> bool:
        if self._may_dangle is not None:
            return self._may_dangle(var, lifetime)
        return lifetime not in drop_lifetimes(var.ty)

    def non_dangling_lifetimes(self, name: str) -> Tuple[str, ...]:
        """Lifetimes of *name*'s type its destructor may still access."""
        var = self.variable(name)
        return tuple(lt for lt in var.ty.lifetimes() if not self.may_dangle(var, lt))

    # ----- typing of places --------------------------------------------------

    def place_type(self, place: Place) -> Optional[Ty]:
        """Type of *place*, or ``None`` when a projection is not modelled.

        ``Deref`` of a reference gives its referent; ``Index`` of a nominal
        type gives its first type argument.  Field types are not tracked.
        """
        ty: Optional[Ty] = self.variable(place.base).ty
        for proj in place.projections:
            if isinstance(proj, Deref) and isinstance(ty, Ref):
                ty = ty.referent
            elif isinstance(proj, Index) and isinstance(ty, Adt) and ty.type_args:
                ty = ty.type_args[0]
            else:
                return None
        return ty

    def operand_type(self, op: Operand) -> Optional[Ty]:
        place = operand_place(op)
        return self.place_type(place) if place is not None else None

    def rvalue_type(self, rvalue: Rvalue) -> Optional[Ty]:
        if isinstance(rvalue, Borrow):
            inner = self.place_type(rvalue.place)
            if inner is None:
                return None
            return Ref(rvalue.lifetime, inner, rvalue.mutable)
        if isinstance(rvalue, UseOperand):
            return self.operand_type(rvalue.operand)
        if isinstance(rvalue, Call):
            return rvalue.return_type
        return None

    # ----- internals ---------------------------------------------------------

    def _statements(self) -> Iterable[Tuple[Point, Statement]]:
        for p in self.graph.all_points():
            elem = self.graph.element_at(p)
            if isinstance(elem, Statement):
                yield p, elem

    def _validate_statements(self) -> None:
        for p in self.graph.all_points():
            elem = self.graph.element_at(p)
            names = set(elem.uses()) | set(elem.defs()) | set(elem.drops())
            if isinstance(elem, Assign):
                names.add(elem.place.base)
            for name in names:
                if name not in self.variables:
                    raise UnknownVariableError(
                        name, f"unknown variable '{name}' at {p}"
                    )
        for ob in self.obligations:
            if ob.point not in self.graph:
                raise UnknownPointError(ob.point)

    def _validate_facts(self) -> None:
        facts = [*(self.borrows or ()), *(self.accesses or ()), *(self.scope_exits or ())]
        for fact in facts:
            if fact.point not in self.graph:
                raise UnknownPointError(fact.point, f"fact {fact} names an unknown point")
            path = getattr(fact, "path", None)
            self.variable(path.base if path is not None else fact.variable)
            for lt in (getattr(fact, "lifetime", None), getattr(fact, "through", None)):
                if lt is not None and lt not in self.lifetimes:
                    raise UnknownLifetimeError(lt)

    def _mentioned_lifetimes(self) -> List[str]:
        seen: Dict[str, None] = {}

        def add(items: Iterable[str]) -> None:
            for lt in items:
                seen.setdefault(lt)

        for var in self.variables.values():
            add(var.ty.lifetimes())
        for _p, stmt in self._statements():
            if isinstance(stmt, Assign):
                rv = stmt.rvalue
                if isinstance(rv, Borrow):
                    add([rv.lifetime])
                elif isinstance(rv, Call):
                    for ty in rv.param_types:
                        add(ty.lifetimes())
                    if rv.return_type is not None:
                        add(rv.return_type.lifetimes())
        for ob in self.obligations:
            if isinstance(ob, SubtypeObligation):
                add(ob.sub.lifetimes())
                add(ob.sup.lifetimes())
            else:
                add([ob.longer, ob.shorter])
        return list(seen)

    def __repr__(self) -> str:
        return (
            f"FunctionBody({self.name!r}, {len(self.graph.blocks)} blocks, "
            f"{len(self.variables)} vars, {len(self.lifetimes)} lifetimes)"
        )


# ===========================================================================
# BUILDER
# ===========================================================================

class FunctionBuilder:
    """Fluent construction of a :class:`FunctionBody`."""

    def __init__(self, name: str = "fn") -> None:
        self.name = name
        self._cfg = CFGBuilder()
        self._variables: List[Variable] = []
        self._placeholders: List[LifetimeVariable] = []
        self._obligations: List[Obligation] = []
        self._may_dangle: Optional[MayDangle] = None

    def let(self, name: str, ty: Ty) -> "FunctionBuilder":
        self._variables.append(Variable(name, ty))
        return self

    def placeholder(
        self, name: str, points: Optional[Iterable[Point]] = None
    ) -> "FunctionBuilder":
        """Declare a placeholder; ``points=None`` means every point."""
        if points is None:
            lv = LifetimeVariable(name, LifetimeKind.PLACEHOLDER, None, covers_all=True)
        else:
            lv = LifetimeVariable(name, LifetimeKind.PLACEHOLDER, frozenset(points))
        self._placeholders.append(lv)
        return self

    def obligation(self, ob: Obligation) -> "FunctionBuilder":
        self._obligations.append(ob)
        return self

    def outlives(self, longer: str, shorter: str, point: Point) -> "FunctionBuilder":
        return self.obligation(OutlivesObligation(longer, shorter, point))

    def may_dangle(self, predicate: MayDangle) -> "FunctionBuilder":
        self._may_dangle = predicate
        return self

    def block(self, name: str) -> BlockBuilder:
        return self._cfg.block(name)

    def build(self, entry: Optional[str] = None) -> FunctionBody:
        return FunctionBody(
            self.name,
            self._cfg.build(entry),
            self._variables,
            placeholders=self._placeholders,
            obligations=self._obligations,
            may_dangle=self._may_dangle,
        )
