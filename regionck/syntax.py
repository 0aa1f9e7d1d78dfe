"""
regionck.syntax
===============

A small textual format for function bodies, parsed with a Parsimonious
PEG grammar.  It is how tests and the command-line tool feed the engine;
hosts with their own lowering build :class:`regionck.body.FunctionBody`
objects directly.

Example::

    struct Vec<may_dangle T> drop;      # nominal type with a destructor

    fn example {
        let x: i32;
        let p: &'p i32;
        let v: Vec<&'v i32>;
        placeholder 'static = all;
        outlives 'a: 'p @ A/1;

        block A { p = &'a x; use(*p); goto B C; }
        block B { x = 1; goto C; }
        block C { drop(v); storage_dead(x); return; }
    }

Structs must be declared before the functions that use them.  ``Cell``
is predeclared (invariant in its parameter).  A call may carry its
instantiated signature: ``r = f(copy p) as fn(&'q i32) -> &'q i32;``.

Public API
----------
    parse_bodies(text) -> list[FunctionBody]
    parse_body(text)   -> FunctionBody (exactly one function)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from parsimonious.exceptions import ParseError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from regionck.body import (
    FunctionBody,
    LifetimeKind,
    LifetimeVariable,
    OutlivesObligation,
    Variable,
)
from regionck.ctrlflow_graph import BasicBlock, ControlFlowGraph, Point
from regionck.errors import ErrorCode, RegionckError, SyntaxParseError, TypeMismatchError
from regionck.mir import (
    Assign,
    Borrow,
    Call,
    Const,
    Copy,
    Drop,
    Goto,
    Move,
    Nop,
    Place,
    Return,
    Statement,
    StorageDead,
    Switch,
    Terminator,
    Use,
    UseOperand,
)
from regionck.types import CELL, Adt, AdtDecl, AdtParam, Ref, Scalar, Ty, Variance

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  GRAMMAR
# ═══════════════════════════════════════════════════════════════════

BODY_GRAMMAR = Grammar(r'''
    file                = _ item* eof
    item                = (struct_decl / fn_decl) _

    # ── nominal types ─────────────────────────────────────────────
    struct_decl         = "struct" ws ident _ generic_params? _ drop_flag? ";"
    drop_flag           = "drop" _
    generic_params      = "<" _ generic_param (_ "," _ generic_param)* _ ">"
    generic_param       = param_attr* (lifetime / ident)
    param_attr          = param_keyword ws
    param_keyword       = "may_dangle" / "invariant" / "contravariant"
                        / "covariant" / "bivariant"

    # ── functions ─────────────────────────────────────────────────
    fn_decl             = "fn" ws ident _ "{" _ fn_item* "}"
    fn_item             = (let_decl / placeholder_decl / outlives_decl / block_decl) _
    let_decl            = "let" ws ident _ ":" _ type _ ";"
    placeholder_decl    = "placeholder" ws lifetime _ "=" _ point_set _ ";"
    point_set           = "all" / ("{" _ (point (_ "," _ point)*)? _ "}")
    outlives_decl       = "outlives" ws lifetime _ ":" _ lifetime _ "@" _ point _ ";"
    block_decl          = "block" ws ident _ "{" _ stmt* terminator _ "}"

    # ── statements ────────────────────────────────────────────────
    stmt                = (use_stmt / drop_stmt / dead_stmt / nop_stmt / assign) _
    use_stmt            = "use" _ "(" _ operand_list? _ ")" _ ";"
    drop_stmt           = "drop" _ "(" _ ident _ ")" _ ";"
    dead_stmt           = "storage_dead" _ "(" _ ident _ ")" _ ";"
    nop_stmt            = "nop" _ ";"
    assign              = place _ "=" _ rvalue _ ";"

    rvalue              = borrow / call / operand
    borrow              = "&" lifetime _ mut_kw? place
    call                = ident _ "(" _ operand_list? _ ")" _ signature?
    signature           = "as" ws "fn" _ "(" _ type_list? _ ")" _ ret_type?
    ret_type            = "->" _ type
    type_list           = type (_ "," _ type)*

    operand_list        = operand (_ "," _ operand)*
    operand             = move_op / copy_op / const_op / place
    move_op             = "move" ws place
    copy_op             = "copy" ws place
    const_op            = ~r"(-?[0-9]+|const\b|true\b|false\b)"

    # ── terminators ───────────────────────────────────────────────
    terminator          = goto_term / switch_term / return_term
    goto_term           = "goto" targets _ ";"
    switch_term         = "switch" ws operand targets _ ";"
    return_term         = "return" _ ";"
    targets             = (ws ident)+

    # ── places and types ──────────────────────────────────────────
    place               = ("*" _ place) / base_place
    base_place          = (("(" _ place _ ")") / ident) projection*
    projection          = ("." ident) / ("[" ~r"[^\]]*" "]")

    type                = ref_type / adt_type
    ref_type            = "&" lifetime _ mut_kw? type
    adt_type            = ident _ type_args?
    type_args           = "<" _ type_arg (_ "," _ type_arg)* _ ">"
    type_arg            = lifetime / type
    mut_kw              = "mut" ws

    # ── lexical ───────────────────────────────────────────────────
    point               = ~r"[A-Za-z_][A-Za-z0-9_]*/[0-9]+"
    lifetime            = ~r"'[A-Za-z_][A-Za-z0-9_]*"
    ident               = ~r"[A-Za-z_][A-Za-z0-9_]*"
    ws                  = ~r"(\s|#[^\n]*|//[^\n]*)+"
    _                   = ~r"(\s|#[^\n]*|//[^\n]*)*"
    eof                 = !~r"[\s\S]"
''')


# ═══════════════════════════════════════════════════════════════════
#  VISITOR
# ═══════════════════════════════════════════════════════════════════

class _Name(str):
    pass


class _Lifetime(str):
    pass


class _Keyword(str):
    pass


@dataclass(frozen=True)
class _GenericParam:
    is_lifetime: bool
    param: AdtParam


@dataclass(frozen=True)
class _Signature:
    params: Tuple[Ty, ...]
    ret: Optional[Ty]


@dataclass(frozen=True)
class _Ret:
    ty: Ty


@dataclass(frozen=True)
class _BlockDecl:
    name: str
    statements: Tuple[Statement, ...]
    terminator: Terminator


def _flatten(items: Any) -> List[Any]:
    out: List[Any] = []
    for item in items:
        if isinstance(item, list):
            out.extend(_flatten(item))
        else:
            out.append(item)
    return out


def _of(parts: List[Any], kind: type) -> List[Any]:
    return [p for p in parts if isinstance(p, kind)]


def _has_keyword(parts: List[Any], word: str) -> bool:
    return any(isinstance(p, _Keyword) and p == word for p in parts)


class BodyBuilder(NodeVisitor):
    """Transforms the Parsimonious parse tree into function bodies."""

    unwrapped_exceptions = (RegionckError,)

    def __init__(self, text: str) -> None:
        self._text = text
        self._structs: Dict[str, AdtDecl] = {CELL.name: CELL}

    def generic_visit(self, node, visited_children):
        """Anonymous nodes: a flat list of the meaningful children."""
        return _flatten(visited_children)

    def _error(self, node: Node, message: str, code: ErrorCode = ErrorCode.INVALID_DECLARATION):
        line = self._text.count("\n", 0, node.start) + 1
        column = node.start - self._text.rfind("\n", 0, node.start)
        return SyntaxParseError(message, line, column, code)

    # ─────────────────────────────────────────────────────────────
    # Lexical
    # ─────────────────────────────────────────────────────────────

    def visit_ident(self, node, visited_children):
        return _Name(node.text)

    def visit_lifetime(self, node, visited_children):
        return _Lifetime(node.text[1:])

    def visit_point(self, node, visited_children):
        return Point.parse(node.text)

    def visit_mut_kw(self, node, visited_children):
        return _Keyword("mut")

    def visit_drop_flag(self, node, visited_children):
        return _Keyword("drop")

    def visit_param_keyword(self, node, visited_children):
        return _Keyword(node.text)

    # ─────────────────────────────────────────────────────────────
    # Types
    # ─────────────────────────────────────────────────────────────

    def visit_type(self, node, visited_children):
        return _flatten(visited_children)[0]

    def visit_ref_type(self, node, visited_children):
        parts = _flatten(visited_children)
        lifetime = _of(parts, _Lifetime)[0]
        referent = _of(parts, Ty)[0]
        return Ref(str(lifetime), referent, _has_keyword(parts, "mut"))

    def visit_adt_type(self, node, visited_children):
        parts = _flatten(visited_children)
        name = str(parts[0])
        args = parts[1:]
        decl = self._structs.get(name)
        if decl is None:
            if args:
                raise self._error(node, f"unknown generic type {name!r}")
            return Scalar(name)
        lifetimes = tuple(str(a) for a in args if isinstance(a, _Lifetime))
        types = tuple(a for a in args if isinstance(a, Ty))
        try:
            return Adt(decl, lifetimes, types)
        except TypeMismatchError as exc:
            raise self._error(node, exc.message) from None

    def visit_type_list(self, node, visited_children):
        return tuple(_of(_flatten(visited_children), Ty))

    def visit_ret_type(self, node, visited_children):
        return _Ret(_of(_flatten(visited_children), Ty)[0])

    def visit_signature(self, node, visited_children):
        parts = _flatten(visited_children)
        params = next((p for p in parts if isinstance(p, tuple)), ())
        ret = next((p.ty for p in parts if isinstance(p, _Ret)), None)
        return _Signature(params, ret)

    # ─────────────────────────────────────────────────────────────
    # Structs
    # ─────────────────────────────────────────────────────────────

    def visit_generic_param(self, node, visited_children):
        parts = _flatten(visited_children)
        variance = Variance.COVARIANT
        may_dangle = False
        for kw in _of(parts, _Keyword):
            if kw == "may_dangle":
                may_dangle = True
            else:
                variance = Variance.parse(kw)
        lifetimes = _of(parts, _Lifetime)
        if lifetimes:
            return _GenericParam(True, AdtParam(str(lifetimes[0]), variance, may_dangle))
        return _GenericParam(False, AdtParam(str(_of(parts, _Name)[0]), variance, may_dangle))

    def visit_struct_decl(self, node, visited_children):
        parts = _flatten(visited_children)
        name = str(_of(parts, _Name)[0])
        if name in self._structs and self._structs[name] is not CELL:
            raise self._error(node, f"struct {name!r} declared twice")
        params = _of(parts, _GenericParam)
        decl = AdtDecl(
            name,
            lifetime_params=tuple(g.param for g in params if g.is_lifetime),
            type_params=tuple(g.param for g in params if not g.is_lifetime),
            has_destructor=_has_keyword(parts, "drop"),
        )
        self._structs[name] = decl
        return decl

    # ─────────────────────────────────────────────────────────────
    # Places, operands, rvalues
    # ─────────────────────────────────────────────────────────────

    def visit_place(self, node, visited_children):
        try:
            return Place.parse(node.text)
        except ValueError as exc:
            raise self._error(node, str(exc), ErrorCode.PARSE_ERROR) from None

    def visit_move_op(self, node, visited_children):
        return Move(_of(_flatten(visited_children), Place)[0])

    def visit_copy_op(self, node, visited_children):
        return Copy(_of(_flatten(visited_children), Place)[0])

    def visit_const_op(self, node, visited_children):
        return Const(node.text)

    def visit_operand(self, node, visited_children):
        value = _flatten(visited_children)[0]
        if isinstance(value, Place):
            return Copy(value)
        return value

    def visit_operand_list(self, node, visited_children):
        return tuple(_of(_flatten(visited_children), (Copy, Move, Const)))

    def visit_borrow(self, node, visited_children):
        parts = _flatten(visited_children)
        lifetime = _of(parts, _Lifetime)[0]
        place = _of(parts, Place)[0]
        return Borrow(str(lifetime), place, _has_keyword(parts, "mut"))

    def visit_call(self, node, visited_children):
        parts = _flatten(visited_children)
        func = str(parts[0])
        args = next((p for p in parts if isinstance(p, tuple)), ())
        sig = next((p for p in parts if isinstance(p, _Signature)), None)
        if sig is None:
            return Call(func, args)
        return Call(func, args, sig.params, sig.ret)

    def visit_rvalue(self, node, visited_children):
        value = _flatten(visited_children)[0]
        if isinstance(value, (Copy, Move, Const)):
            return UseOperand(value)
        return value

    # ─────────────────────────────────────────────────────────────
    # Statements and terminators
    # ─────────────────────────────────────────────────────────────

    def visit_assign(self, node, visited_children):
        place, rvalue = _flatten(visited_children)[:2]
        return Assign(place, rvalue)

    def visit_use_stmt(self, node, visited_children):
        ops = next((p for p in _flatten(visited_children) if isinstance(p, tuple)), ())
        return Use(ops)

    def visit_drop_stmt(self, node, visited_children):
        return Drop(str(_of(_flatten(visited_children), _Name)[0]))

    def visit_dead_stmt(self, node, visited_children):
        return StorageDead(str(_of(_flatten(visited_children), _Name)[0]))

    def visit_nop_stmt(self, node, visited_children):
        return Nop()

    def visit_goto_term(self, node, visited_children):
        return Goto(tuple(str(n) for n in _of(_flatten(visited_children), _Name)))

    def visit_switch_term(self, node, visited_children):
        parts = _flatten(visited_children)
        operand = _of(parts, (Copy, Move, Const))[0]
        return Switch(operand, tuple(str(n) for n in _of(parts, _Name)))

    def visit_return_term(self, node, visited_children):
        return Return()

    def visit_block_decl(self, node, visited_children):
        parts = _flatten(visited_children)
        name = str(_of(parts, _Name)[0])
        return _BlockDecl(
            name,
            tuple(_of(parts, Statement)),
            _of(parts, Terminator)[0],
        )

    # ─────────────────────────────────────────────────────────────
    # Function items
    # ─────────────────────────────────────────────────────────────

    def visit_let_decl(self, node, visited_children):
        parts = _flatten(visited_children)
        return Variable(str(_of(parts, _Name)[0]), _of(parts, Ty)[0])

    def visit_point_set(self, node, visited_children):
        if node.text.strip() == "all":
            return None
        return frozenset(_of(_flatten(visited_children), Point))

    def visit_placeholder_decl(self, node, visited_children):
        parts = _flatten(visited_children)
        name = str(_of(parts, _Lifetime)[0])
        points = next((p for p in parts if isinstance(p, frozenset)), None)
        if points is None:
            return LifetimeVariable(name, LifetimeKind.PLACEHOLDER, None, covers_all=True)
        return LifetimeVariable(name, LifetimeKind.PLACEHOLDER, points)

    def visit_outlives_decl(self, node, visited_children):
        parts = _flatten(visited_children)
        longer, shorter = (str(lt) for lt in _of(parts, _Lifetime))
        return OutlivesObligation(longer, shorter, _of(parts, Point)[0])

    def visit_fn_decl(self, node, visited_children):
        parts = _flatten(visited_children)
        name = str(_of(parts, _Name)[0])
        blocks = _of(parts, _BlockDecl)
        if not blocks:
            raise self._error(node, f"function {name!r} has no blocks")
        graph = ControlFlowGraph(
            [BasicBlock(b.name, b.statements, b.terminator) for b in blocks]
        )
        return FunctionBody(
            name,
            graph,
            _of(parts, Variable),
            placeholders=_of(parts, LifetimeVariable),
            obligations=_of(parts, OutlivesObligation),
        )

    def visit_file(self, node, visited_children):
        return _of(_flatten(visited_children), FunctionBody)


# ═══════════════════════════════════════════════════════════════════
#  PUBLIC API
# ═══════════════════════════════════════════════════════════════════

def parse_bodies(text: str) -> List[FunctionBody]:
    """Parse every function in *text*.

    Raises
    ------
    SyntaxParseError
        On a syntax error (with line and column) or an invalid declaration.
    InternalInvariantError
        When a parsed function is not well formed (unknown variable,
        unknown jump target, ...).
    """
    try:
        tree = BODY_GRAMMAR.parse(text)
    except ParseError as exc:
        rule = exc.expr.name if exc.expr is not None and exc.expr.name else "input"
        raise SyntaxParseError(
            f"unexpected text while parsing {rule}", exc.line(), exc.column()
        ) from None
    bodies = BodyBuilder(text).visit(tree)
    logger.debug("parsed %d function(s)", len(bodies))
    return bodies


def parse_body(text: str) -> FunctionBody:
    """Parse *text*, which must contain exactly one function."""
    bodies = parse_bodies(text)
    if len(bodies) != 1:
        raise SyntaxParseError(
            f"expected exactly one function, found {len(bodies)}",
            code=ErrorCode.INVALID_DECLARATION,
        )
    return bodies[0]
