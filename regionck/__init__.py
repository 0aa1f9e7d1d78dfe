"""
regionck: Location-Sensitive Region Inference
==============================================

Given a function's control-flow graph with typed variables, borrows and
assignments, this package computes the smallest region (set of CFG
points) for every lifetime variable and reports accesses that invalidate
a borrow while it is still in use.

Core modules
------------
ctrlflow_graph
    Point-granular CFG with a dense point numbering and bounded
    reachability.
types, mir, body
    Types with variance, statements/places, and the per-function input.
dataflow_engine
    Generic lattice/worklist fixpoint engine.
liveness
    Use/drop liveness with may-dangle handling.
constraints
    ``Live`` and location-sensitive ``Outlives`` constraints.
region_solver
    Monotone bitset fixpoint solver with placeholders.
borrow_facts, conflicts, explain
    Borrow/access facts, three-point conflict records, narrative paths.
engine, config
    End-to-end driver and its configuration.
syntax
    Textual body format (Parsimonious grammar).

Quick start
-----------
>>> from regionck import parse_body, RegionCheckEngine
>>> body = parse_body('''
...     fn f { let x: i32; let p: &'p i32;
...            block A { p = &'a x; x = 1; use(*p); return; } }
... ''')
>>> report = RegionCheckEngine().analyze(body)
>>> [str(c.invalidating_point) for c in report.conflicts]
['A/1']
"""

from __future__ import annotations

import importlib
import logging
import sys
import warnings
from typing import TYPE_CHECKING, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_import)
#
#   CORE  : always imported; failure is fatal
#   ADDON : imported eagerly but failure only warns (the analysis API stays
#           usable without the textual front end's parser dependency)
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "ErrorCode",
        "RegionckError",
        "InternalInvariantError",
        "MalformedGraphError",
        "UnknownPointError",
        "UnknownLifetimeError",
        "UnknownVariableError",
        "TypeMismatchError",
        "FrozenConstraintSetError",
        "PlaceholderViolationError",
        "SolverLimitExceeded",
        "SyntaxParseError",
    ],
    "ctrlflow_graph": [
        "Point",
        "BasicBlock",
        "ControlFlowGraph",
        "CFGBuilder",
    ],
    "types": [
        "Variance",
        "Scalar",
        "Ref",
        "AdtParam",
        "AdtDecl",
        "Adt",
        "relate_types",
        "drop_lifetimes",
    ],
    "mir": [
        "Place",
        "Borrow",
        "Call",
        "Assign",
        "Use",
        "Drop",
        "StorageDead",
    ],
    "regions": [
        "Region",
    ],
    "body": [
        "Variable",
        "LifetimeKind",
        "LifetimeVariable",
        "SubtypeObligation",
        "OutlivesObligation",
        "FunctionBody",
        "FunctionBuilder",
    ],
    "liveness": [
        "LivenessAnalyzer",
    ],
    "constraints": [
        "ConstraintOrigin",
        "LiveConstraint",
        "OutlivesConstraint",
        "ConstraintSet",
        "ConstraintGenerator",
    ],
    "region_solver": [
        "RegionSolver",
        "SolveResult",
        "PlaceholderViolation",
        "verify_solution",
    ],
    "borrow_facts": [
        "BorrowKind",
        "AccessKind",
        "BorrowFact",
        "AccessFact",
        "ScopeExitFact",
        "derive_facts",
    ],
    "conflicts": [
        "ConflictCause",
        "ConflictRecord",
        "ConflictDetector",
    ],
    "explain": [
        "ConflictNarrative",
        "explain_conflict",
    ],
    "config": [
        "AnalysisConfig",
    ],
    "engine": [
        "AnalysisReport",
        "RegionCheckEngine",
        "analyze_functions",
    ],
}

_ADDON_MODULES = {
    "syntax": [
        "parse_bodies",
        "parse_body",
    ],
}

# ---------------------------------------------------------------------------
# Import helper
# ---------------------------------------------------------------------------

def _import_names(
    module_rel_name: str,
    names: List[str],
    *,
    fatal: bool = True,
) -> None:
    """Import *names* from a submodule and bind them in the package namespace.

    Parameters
    ----------
    module_rel_name:
        Module name relative to this package (e.g. ``"liveness"``).
    names:
        Public symbols to re-export.
    fatal:
        If ``True``, an ``ImportError`` propagates.  If ``False``, a warning
        is issued and the names are skipped (addon tier).
    """
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        if fatal:
            raise ImportError(
                f"regionck: required submodule '{module_rel_name}' "
                f"failed to import: {exc}"
            ) from exc
        warnings.warn(
            f"regionck: optional submodule '{module_rel_name}' "
            f"could not be imported ({exc}); related symbols will be unavailable.",
            ImportWarning,
            stacklevel=2,
        )
        _log.debug("Skipped optional module %s: %s", module_rel_name, exc)
        return

    current_module = sys.modules[__name__]
    for name in names:
        obj = getattr(mod, name, None)
        if obj is None:
            msg = f"regionck.{module_rel_name} does not export '{name}'"
            if fatal:
                raise AttributeError(msg)
            _log.warning(msg)
            continue
        setattr(current_module, name, obj)
        __all__.append(name)

    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names, fatal=True)

for _mod, _names in _ADDON_MODULES.items():
    _import_names(_mod, _names, fatal=False)

del _mod, _names

# ---------------------------------------------------------------------------
# Package-level utilities
# ---------------------------------------------------------------------------

def list_submodules() -> List[str]:
    """Return the names of all submodules in the package (core + addon)."""
    return sorted(set(list(_CORE_MODULES.keys()) + list(_ADDON_MODULES.keys())))


def package_info() -> dict:
    """Return a dict of metadata about the installed package."""
    loaded = []
    missing = []
    for mod_name in list_submodules():
        if f"{__name__}.{mod_name}" in sys.modules:
            loaded.append(mod_name)
        else:
            missing.append(mod_name)
    return {
        "package": __name__,
        "version": __version__,
        "python": sys.version,
        "loaded_submodules": loaded,
        "missing_submodules": missing,
    }


__all__ += ["list_submodules", "package_info", "__version__"]

if TYPE_CHECKING:
    from .body import FunctionBody as FunctionBody, FunctionBuilder as FunctionBuilder
    from .ctrlflow_graph import ControlFlowGraph as ControlFlowGraph, Point as Point
    from .engine import RegionCheckEngine as RegionCheckEngine
    from .syntax import parse_body as parse_body, parse_bodies as parse_bodies
