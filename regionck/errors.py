"""
regionck/errors.py
==================

Error types for the region inference engine.

Two very different things can go wrong while checking a function:

* The *input* is malformed (a graph with dangling successor names, a
  constraint naming a lifetime nobody declared, ...).  That is a bug in
  whoever lowered the function, so it surfaces as an
  :class:`InternalInvariantError` and is never recovered from.
* The *analyzed program* is wrong (a borrowed value is written while the
  borrow is still live).  That is the expected output of a successful
  analysis and is reported as data (:class:`regionck.conflicts.ConflictRecord`),
  not as an exception.

Error Hierarchy
───────────────
::

    RegionckError
    ├── InternalInvariantError
    │   ├── MalformedGraphError
    │   ├── UnknownPointError
    │   ├── UnknownLifetimeError
    │   ├── UnknownVariableError
    │   ├── TypeMismatchError
    │   └── FrozenConstraintSetError
    ├── PlaceholderViolationError
    ├── SolverLimitExceeded
    └── SyntaxParseError

Error Codes
───────────
Codes follow ``RCK-NNNN``:
  - 0001-0999: graph construction
  - 1000-1999: lifetimes, variables and types
  - 2000-2999: solving
  - 3000-3999: textual body syntax
  - 9000-9999: internal
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Any, Dict, Optional


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class ErrorCode(Enum):
    """Stable error codes; the value is the printable code."""

    # Graph (0001-0999)
    DUPLICATE_BLOCK = "RCK-0001"
    UNKNOWN_BLOCK = "RCK-0002"
    MISSING_ENTRY = "RCK-0003"
    MISSING_TERMINATOR = "RCK-0004"
    UNKNOWN_POINT = "RCK-0005"

    # Lifetimes / variables / types (1000-1999)
    UNKNOWN_LIFETIME = "RCK-1000"
    UNKNOWN_VARIABLE = "RCK-1001"
    DUPLICATE_VARIABLE = "RCK-1002"
    TYPE_MISMATCH = "RCK-1003"
    DUPLICATE_LIFETIME = "RCK-1004"

    # Solving (2000-2999)
    FROZEN_CONSTRAINT_SET = "RCK-2000"
    PLACEHOLDER_VIOLATION = "RCK-2001"
    SOLVER_LIMIT = "RCK-2002"
    MONOTONICITY_BROKEN = "RCK-2003"

    # Syntax (3000-3999)
    PARSE_ERROR = "RCK-3000"
    INVALID_DECLARATION = "RCK-3001"

    # Internal (9000-9999)
    INTERNAL_ERROR = "RCK-9000"

    def __str__(self) -> str:
        return self.value


# ═══════════════════════════════════════════════════════════════════════════════
# BASE EXCEPTION
# ═══════════════════════════════════════════════════════════════════════════════

class RegionckError(Exception):
    """
    Base exception for all regionck errors.

    Carries an :class:`ErrorCode` and an optional ``details`` mapping so the
    CLI can serialize the failure without parsing the message.
    """

    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-ready representation."""
        return {
            "error": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "details": {k: str(v) for k, v in self.details.items()},
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


# ═══════════════════════════════════════════════════════════════════════════════
# PROGRAMMING-CONTRACT VIOLATIONS
# ═══════════════════════════════════════════════════════════════════════════════

class InternalInvariantError(RegionckError):
    """
    An upstream collaborator handed the engine malformed input.

    These are fatal: the analysis is aborted and the error propagates to
    the host unchanged.
    """


class MalformedGraphError(InternalInvariantError):
    """The control-flow graph is not well formed."""

    default_code = ErrorCode.UNKNOWN_BLOCK


class UnknownPointError(InternalInvariantError):
    """A point does not belong to the graph it was used with."""

    default_code = ErrorCode.UNKNOWN_POINT

    def __init__(self, point: Any, message: str = "") -> None:
        super().__init__(
            message or f"point {point} is not part of this graph",
            details={"point": point},
        )
        self.point = point


class UnknownLifetimeError(InternalInvariantError):
    """A constraint or fact names a lifetime that was never declared."""

    default_code = ErrorCode.UNKNOWN_LIFETIME

    def __init__(self, lifetime: str, message: str = "") -> None:
        super().__init__(
            message or f"unknown lifetime variable '{lifetime}",
            details={"lifetime": lifetime},
        )
        self.lifetime = lifetime


class UnknownVariableError(InternalInvariantError):
    """A statement or fact names a variable that was never declared."""

    default_code = ErrorCode.UNKNOWN_VARIABLE

    def __init__(self, variable: str, message: str = "") -> None:
        super().__init__(
            message or f"unknown variable '{variable}'",
            details={"variable": variable},
        )
        self.variable = variable


class TypeMismatchError(InternalInvariantError):
    """Two types that must be related do not have the same shape."""

    default_code = ErrorCode.TYPE_MISMATCH

    def __init__(self, sub: Any, sup: Any, message: str = "") -> None:
        super().__init__(
            message or f"cannot relate {sub} with {sup}",
            details={"sub": sub, "sup": sup},
        )
        self.sub = sub
        self.sup = sup


class FrozenConstraintSetError(InternalInvariantError):
    """A constraint was appended after the set was frozen for solving."""

    default_code = ErrorCode.FROZEN_CONSTRAINT_SET


# ═══════════════════════════════════════════════════════════════════════════════
# SOLVER OUTCOMES RAISED ON REQUEST
# ═══════════════════════════════════════════════════════════════════════════════

class PlaceholderViolationError(RegionckError):
    """
    A placeholder (named) lifetime would have to grow past its fixed region.

    Only raised when ``AnalysisConfig.strict_placeholders`` is set; otherwise
    the solver records a :class:`regionck.region_solver.PlaceholderViolation`.
    """

    default_code = ErrorCode.PLACEHOLDER_VIOLATION

    def __init__(self, violation: Any) -> None:
        super().__init__(
            f"placeholder lifetime '{violation.lifetime} would need "
            f"{len(violation.points)} extra point(s)",
            details={"lifetime": violation.lifetime},
        )
        self.violation = violation


class SolverLimitExceeded(RegionckError):
    """A host-supplied iteration budget ran out before a fixpoint."""

    default_code = ErrorCode.SOLVER_LIMIT

    def __init__(self, rounds: int, limit: int, phase: str = "region solving") -> None:
        super().__init__(
            f"{phase} stopped after {rounds} rounds (limit {limit})",
            details={"rounds": rounds, "limit": limit, "phase": phase},
        )
        self.rounds = rounds
        self.limit = limit
        self.phase = phase


# ═══════════════════════════════════════════════════════════════════════════════
# TEXTUAL BODIES
# ═══════════════════════════════════════════════════════════════════════════════

class SyntaxParseError(RegionckError):
    """A textual function body could not be parsed."""

    default_code = ErrorCode.PARSE_ERROR

    def __init__(
        self,
        message: str,
        line: int = 0,
        column: int = 0,
        code: Optional[ErrorCode] = None,
    ) -> None:
        super().__init__(message, code=code, details={"line": line, "column": column})
        self.line = line
        self.column = column

    def __str__(self) -> str:
        if self.line:
            return f"[{self.code.value}] {self.line}:{self.column}: {self.message}"
        return super().__str__()
