"""
regionck.mir
============

Statement-level IR carried by the blocks of a
:class:`regionck.ctrlflow_graph.ControlFlowGraph`.

The lowering collaborator produces these; the engine only reads them.
Each statement answers three questions used downstream:

* which local it (re)defines        -> ``defs()``
* which locals it reads             -> ``uses()``
* which places it touches, and how  -> consumed by :mod:`regionck.borrow_facts`

Places
------
A :class:`Place` is a base variable plus projections, so ``(*p).f[_]``
becomes base ``p`` with projections ``Deref, Field("f"), Index()``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from regionck.types import Ty


# ===========================================================================
# PLACES
# ===========================================================================

@dataclass(frozen=True)
class Deref:
    """Dereference projection (``*p``)."""

    def __str__(self) -> str:
        return "*"


@dataclass(frozen=True)
class Field:
    """Field access projection (``.name``)."""

    name: str

    def __str__(self) -> str:
        return f".{self.name}"


@dataclass(frozen=True)
class Index:
    """
    Index projection (``[_]``).

    Indices are never evaluated, so two index projections always
    conservatively overlap.
    """

    def __str__(self) -> str:
        return "[_]"


Projection = Union[Deref, Field, Index]

_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_PROJ = re.compile(r"\s*(?:\.([A-Za-z_][A-Za-z0-9_]*)|\[[^\]]*\])")


@dataclass(frozen=True)
class Place:
    """
    A borrowable/moveable storage location.

    `base` is a local name.  `projections` capture deref/field/index
    accesses in source order.
    """

    base: str
    projections: Tuple[Projection, ...] = field(default_factory=tuple)

    @classmethod
    def parse(cls, text: str) -> "Place":
        """Parse ``x``, ``*p``, ``(*p).f``, ``x.f[_]`` and similar.

        A leading ``*`` applies to everything after it, as in Rust:
        ``*x.f`` is ``*(x.f)``.
        """
        text = text.strip()
        if text.startswith("*"):
            return cls.parse(text[1:]).deref()
        if text.startswith("("):
            depth = 0
            for close, ch in enumerate(text):
                depth += {"(": 1, ")": -1}.get(ch, 0)
                if depth == 0:
                    break
            else:
                raise ValueError(f"unbalanced parentheses in place {text!r}")
            place = cls.parse(text[1:close])
            rest = text[close + 1:]
        else:
            m = _IDENT.match(text)
            if m is None:
                raise ValueError(f"not a place: {text!r}")
            place = cls(m.group())
            rest = text[m.end():]
        pos = 0
        for m in _PROJ.finditer(rest):
            if m.start() != pos:
                break
            place = place.dot(m.group(1)) if m.group(1) else place.with_projection(Index())
            pos = m.end()
        if rest[pos:].strip():
            raise ValueError(f"not a place: {text!r}")
        return place

    def with_projection(self, proj: Projection) -> "Place":
        """Return a new Place with an additional projection appended."""
        return Place(self.base, self.projections + (proj,))

    def deref(self) -> "Place":
        return self.with_projection(Deref())

    def dot(self, name: str) -> "Place":
        return self.with_projection(Field(name))

    @property
    def is_local(self) -> bool:
        """True for a bare local with no projections."""
        return not self.projections

    @property
    def goes_through_deref(self) -> bool:
        return any(isinstance(p, Deref) for p in self.projections)

    def prefixes(self) -> Tuple["Place", ...]:
        """All prefixes, shortest first, ending with the place itself."""
        return tuple(
            Place(self.base, self.projections[:n])
            for n in range(len(self.projections) + 1)
        )

    def __str__(self) -> str:
        text = self.base
        last = len(self.projections) - 1
        for i, proj in enumerate(self.projections):
            if isinstance(proj, Deref):
                text = f"*{text}" if i == last else f"(*{text})"
            else:
                text += str(proj)
        return text


# ===========================================================================
# OPERANDS AND RVALUES
# ===========================================================================

@dataclass(frozen=True)
class Copy:
    """Read a place without invalidating it."""

    place: Place

    def __str__(self) -> str:
        return f"copy {self.place}"


@dataclass(frozen=True)
class Move:
    """Read a place and leave it uninitialized."""

    place: Place

    def __str__(self) -> str:
        return f"move {self.place}"


@dataclass(frozen=True)
class Const:
    """A literal; reads nothing."""

    value: str = "const"

    def __str__(self) -> str:
        return self.value


Operand = Union[Copy, Move, Const]


def operand_place(op: Operand) -> Optional[Place]:
    if isinstance(op, (Copy, Move)):
        return op.place
    return None


@dataclass(frozen=True)
class UseOperand:
    """``dest = operand``."""

    operand: Operand

    def operands(self) -> Tuple[Operand, ...]:
        return (self.operand,)

    def __str__(self) -> str:
        return str(self.operand)


@dataclass(frozen=True)
class Borrow:
    """``dest = &'lifetime [mut] place``."""

    lifetime: str
    place: Place
    mutable: bool = False

    def operands(self) -> Tuple[Operand, ...]:
        return ()

    def __str__(self) -> str:
        mut = "mut " if self.mutable else ""
        return f"&'{self.lifetime} {mut}{self.place}"


@dataclass(frozen=True)
class Call:
    """
    ``dest = func(args...)``.

    ``param_types`` and ``return_type`` are the callee's signature already
    instantiated with fresh lifetimes by the type checker; each argument
    is related to its parameter type and the return type to the
    destination's type.
    """

    func: str
    args: Tuple[Operand, ...] = ()
    param_types: Tuple[Ty, ...] = ()
    return_type: Optional[Ty] = None

    def operands(self) -> Tuple[Operand, ...]:
        return self.args

    def __str__(self) -> str:
        return f"{self.func}({', '.join(str(a) for a in self.args)})"


Rvalue = Union[UseOperand, Borrow, Call, Const]


# ===========================================================================
# STATEMENTS
# ===========================================================================

class Statement:
    """Base class for block statements."""

    def defs(self) -> Tuple[str, ...]:
        """Locals whose whole value is overwritten here."""
        return ()

    def uses(self) -> Tuple[str, ...]:
        """Locals whose current value is read here."""
        return ()

    def drops(self) -> Tuple[str, ...]:
        """Locals whose destructor runs here."""
        return ()


def _place_uses(place: Place) -> Tuple[str, ...]:
    return (place.base,)


@dataclass(frozen=True)
class Assign(Statement):
    """``place = rvalue``."""

    place: Place
    rvalue: Rvalue

    def defs(self) -> Tuple[str, ...]:
        return (self.place.base,) if self.place.is_local else ()

    def uses(self) -> Tuple[str, ...]:
        used = []
        rv = self.rvalue
        if isinstance(rv, Borrow):
            used.extend(_place_uses(rv.place))
        elif not isinstance(rv, Const):
            for op in rv.operands():
                p = operand_place(op)
                if p is not None:
                    used.extend(_place_uses(p))
        # Writing through a reference reads the reference itself.
        if self.place.goes_through_deref:
            used.append(self.place.base)
        return tuple(dict.fromkeys(used))

    def __str__(self) -> str:
        return f"{self.place} = {self.rvalue}"


@dataclass(frozen=True)
class Use(Statement):
    """An expression statement reading its operands (``use(*p)``)."""

    operands: Tuple[Operand, ...] = ()

    def uses(self) -> Tuple[str, ...]:
        return tuple(
            dict.fromkeys(
                p.base for p in (operand_place(op) for op in self.operands) if p is not None
            )
        )

    def __str__(self) -> str:
        return f"use({', '.join(str(o) for o in self.operands)})"


@dataclass(frozen=True)
class Drop(Statement):
    """Run the destructor of ``variable``."""

    variable: str

    def drops(self) -> Tuple[str, ...]:
        return (self.variable,)

    def __str__(self) -> str:
        return f"drop({self.variable})"


@dataclass(frozen=True)
class StorageDead(Statement):
    """``variable`` goes out of scope; its storage is deallocated."""

    variable: str

    def defs(self) -> Tuple[str, ...]:
        return (self.variable,)

    def __str__(self) -> str:
        return f"storage_dead({self.variable})"


@dataclass(frozen=True)
class Nop(Statement):
    def __str__(self) -> str:
        return "nop"


# ===========================================================================
# TERMINATORS
# ===========================================================================

class Terminator:
    """Ends a block and names its successors."""

    targets: Tuple[str, ...] = ()

    def uses(self) -> Tuple[str, ...]:
        return ()

    def defs(self) -> Tuple[str, ...]:
        return ()

    def drops(self) -> Tuple[str, ...]:
        return ()


@dataclass(frozen=True)
class Goto(Terminator):
    """Unconditional (one target) or nondeterministic (several) jump."""

    targets: Tuple[str, ...] = ()

    def __str__(self) -> str:
        return f"goto {' '.join(self.targets)}"


@dataclass(frozen=True)
class Switch(Terminator):
    """Branch on the value of ``operand``."""

    operand: Operand = field(default_factory=Const)
    targets: Tuple[str, ...] = ()

    def uses(self) -> Tuple[str, ...]:
        p = operand_place(self.operand)
        return (p.base,) if p is not None else ()

    def __str__(self) -> str:
        return f"switch {self.operand} {' '.join(self.targets)}"


@dataclass(frozen=True)
class Return(Terminator):
    targets: Tuple[str, ...] = ()

    def __str__(self) -> str:
        return "return"
