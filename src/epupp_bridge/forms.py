"""ClojureScript snippets used to observe state cells in the browser tab.

Async work in the tab (promises from ``epupp.fs`` and friends) cannot be
awaited over nREPL. The pattern is to park the outcome in an atom that starts
out holding a sentinel, then poll the atom's printed value.
"""

from __future__ import annotations

import re

_CELL_RE = re.compile(r"[A-Za-z!*_?+<>=\-][\w!*?+<>=.\-]*")


def _check_cell(cell_name: str) -> str:
    if not _CELL_RE.fullmatch(cell_name):
        raise ValueError(f"invalid cell name: {cell_name!r}")
    return cell_name


def cell_probe(cell_name: str) -> str:
    """Probe that prints the current value of an atom."""
    return f"(pr-str @{_check_cell(cell_name)})"


def track_promise(cell_name: str, promise_expr: str, sentinel: str = ":pending") -> str:
    """Setup code that stores a promise's outcome in a fresh atom.

    The atom holds ``sentinel`` until the promise settles, then the resolved
    value or ``{:error <message>}``. Evaluates to ``:setup-done``.
    """
    cell = _check_cell(cell_name)
    return (
        f"(def {cell} (atom {sentinel}))\n"
        f"(-> {promise_expr}\n"
        f"    (.then (fn [r] (reset! {cell} r)))\n"
        f"    (.catch (fn [e] (reset! {cell} {{:error (.-message e)}}))))\n"
        f":setup-done"
    )


def unquote_value(value: str | None) -> str | None:
    """Strip one pair of surrounding double quotes from a printed string."""
    if value and len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value
