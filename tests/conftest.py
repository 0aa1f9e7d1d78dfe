# tests/conftest.py
"""
Shared fixtures: the textual bodies used across the test modules and a
helper that runs the whole pipeline on one of them.
"""

import pytest

from regionck.config import AnalysisConfig
from regionck.engine import RegionCheckEngine
from regionck.syntax import parse_body


# Branch/merge with a reassignment in one arm.
BRANCH_MERGE = """
fn branch_merge {
    let foo: i32;
    let bar: i32;
    let p: &'p i32;

    block A { p = &'foo foo; goto B C; }
    block B { use(*p); p = &'bar bar; goto C; }
    block C { use(*p); return; }
}
"""

# Optional mutable reference out of a map; only the `None` arm mutates.
MAP_GET_OR_INSERT = """
struct Option<T>;

fn get_default {
    let map: Map;
    let r: &'r mut Map;
    let o: Option<&'o mut i32>;
    let v: &'v mut i32;
    let w: &'w mut Map;
    let u: i32;

    block A {
        r = &'m mut map;
        o = get_mut(move r) as fn(&'q mut Map) -> Option<&'q mut i32>;
        switch copy o Some None;
    }
    block Some { v = move o[_]; use(*v); return; }
    block None {
        w = &'n mut map;
        u = insert(move w) as fn(&'s mut Map) -> i32;
        return;
    }
}
"""

# Shared borrow, write to the borrowed local, later read through it.
WRITE_WHILE_BORROWED = """
fn write_while_borrowed {
    let i: i32;
    let r: &'r i32;

    block A { r = &'b i; goto B; }
    block B { i = 1; goto C; }
    block C { use(*r); return; }
}
"""

# Mutable borrow used, then the reference is pointed elsewhere.
REASSIGNED_BEFORE_WRITE = """
fn reassigned {
    let x: i32;
    let y: i32;
    let p: &'p mut i32;

    block A {
        p = &'a mut x;
        use(*p);
        p = &'c mut y;
        x = 2;
        use(*p);
        return;
    }
}
"""


@pytest.fixture
def branch_merge():
    return parse_body(BRANCH_MERGE)


@pytest.fixture
def map_get_or_insert():
    return parse_body(MAP_GET_OR_INSERT)


@pytest.fixture
def write_while_borrowed():
    return parse_body(WRITE_WHILE_BORROWED)


@pytest.fixture
def reassigned():
    return parse_body(REASSIGNED_BEFORE_WRITE)


@pytest.fixture
def analyze():
    """Run the full pipeline on source text and return the report."""

    def _analyze(text, **config):
        return RegionCheckEngine(AnalysisConfig(**config)).analyze(parse_body(text))

    return _analyze
