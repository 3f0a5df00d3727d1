"""
Wildcard translation.

User patterns use ``*`` (any run of characters) and ``?`` (exactly one
character). A backtick makes the next character literal, so ```*`` matches
a real asterisk. Patterns are compiled either to a SQL LIKE pattern (with
``\\`` as the ESCAPE character) or to a regular expression for in-process
path filtering. Matching is case-insensitive in both renderings: LIKE
patterns carry case-folded literals and are compared against
``casefold(column)``, a function every SQLiteDB connection registers.
SQLite's built-in LIKE folds ASCII letters only.
"""

import re
from typing import List, Tuple

from photoindex.errors import invalid_spec

ESCAPE_CHAR = "\\"
LIKE_ESCAPE_CLAUSE = "ESCAPE '\\'"
CASEFOLD_FUNCTION = "casefold"

_STAR = ("star", "")
_ONE = ("one", "")


def tokenize(pattern: str) -> List[Tuple[str, str]]:
    """Split a pattern into ('lit', ch), ('star', '') and ('one', '') tokens."""
    if not isinstance(pattern, str):
        raise invalid_spec(f"wildcard pattern must be a string, got {type(pattern).__name__}")
    tokens: List[Tuple[str, str]] = []
    escaped = False
    for ch in pattern:
        if escaped:
            tokens.append(("lit", ch))
            escaped = False
        elif ch == "`":
            escaped = True
        elif ch == "*":
            # Collapse runs of * so '**' and '*' compile identically
            if not tokens or tokens[-1] != _STAR:
                tokens.append(_STAR)
        elif ch == "?":
            tokens.append(_ONE)
        else:
            tokens.append(("lit", ch))
    if escaped:
        raise invalid_spec(f"dangling escape at end of pattern {pattern!r}")
    return tokens


def validate(pattern: str) -> str:
    """Reject patterns that can never be compiled; returns the pattern unchanged."""
    tokens = tokenize(pattern)
    if not tokens or all(kind == "lit" and not value.strip() for kind, value in tokens):
        raise invalid_spec("empty wildcard pattern")
    return pattern


def has_wildcards(pattern: str) -> bool:
    return any(kind != "lit" for kind, _ in tokenize(pattern))


def is_match_all(pattern: str) -> bool:
    """True for patterns such as '*' that match every value."""
    tokens = tokenize(pattern)
    return bool(tokens) and all(t == _STAR for t in tokens)


def to_like(pattern: str) -> str:
    """
    Translate a wildcard pattern into a LIKE pattern.

    Literal ``%``, ``_`` and ``\\`` are escaped with ``\\`` so they only
    match themselves; use together with LIKE_ESCAPE_CLAUSE. Literals are
    case-folded, so compare against folded(column).

    Example:
        to_like("sun*")      -> "sun%"
        to_like("100%_?")    -> "100\\%\\__"
        to_like("Ärger*")    -> "ärger%"
    """
    parts = []
    for kind, value in tokenize(pattern):
        if kind == "star":
            parts.append("%")
        elif kind == "one":
            parts.append("_")
        elif value in ("%", "_", ESCAPE_CHAR):
            parts.append(ESCAPE_CHAR + value)
        else:
            parts.append(value.casefold())
    return "".join(parts)


def folded(expression: str) -> str:
    """SQL expression comparing `expression` case-insensitively against to_like() output."""
    return f"{CASEFOLD_FUNCTION}({expression})"


def to_contains_like(pattern: str) -> str:
    """LIKE pattern for free-text search: patterns without wildcards match as substrings."""
    like = to_like(pattern)
    if has_wildcards(pattern):
        return like
    return f"%{like}%"


def to_regex(pattern: str) -> "re.Pattern":
    parts = []
    for kind, value in tokenize(pattern):
        if kind == "star":
            parts.append(".*")
        elif kind == "one":
            parts.append(".")
        else:
            parts.append(re.escape(value))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def path_matches(pattern: str, path: str) -> bool:
    """Path filter: wildcard patterns must match the whole path, plain text is a substring test."""
    if has_wildcards(pattern):
        return to_regex(pattern).fullmatch(path) is not None
    literal = "".join(value for _, value in tokenize(pattern))
    return literal.casefold() in path.casefold()
