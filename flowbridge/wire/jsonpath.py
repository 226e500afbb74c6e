"""
jsonpath.py - Path queries over step outputs.

Supported syntax (always rooted at "$"):

    $.a.b            field access
    $['a b']         quoted field access
    $.arr[1]         index, negative counts from the end
    $.arr[*], $.*    all elements / all values
    $.arr[0:5:2]     slice with Python semantics
    $.arr[0,2]       union of indices or quoted keys
    $.arr[?(@.price > 10)]
                     filter: compares one field of each element to a literal
    $..name          every "name" at any depth, depth-first document order

Missing fields and out-of-range indices yield None instead of raising.
Malformed query strings raise PathQueryError. Filters are parsed into a
field/operator/literal triple and never evaluated as code.

Once a selector produces several values (wildcard, slice, filter, descendant),
later selectors apply to each value and the result stays a list.
"""

from __future__ import annotations

import json
import operator
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, List, Optional, Tuple, Union

from flowbridge.errors import PathQueryError

_FIELD_CHARS = re.compile(r"[A-Za-z0-9_\-]")
_INT = re.compile(r"^-?\d+$")
_SLICE = re.compile(r"^(-?\d*):(-?\d*)(?::(-?\d*))?$")
_FILTER = re.compile(
    r"^@\.([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)\s*"
    r"(==|!=|<=|>=|<|>)\s*(.+)$"
)
_EXISTS_FILTER = re.compile(r"^@\.([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)$")

_OPERATORS = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

_MISSING = object()


# =============================================================================
# Tokens
# =============================================================================


@dataclass(frozen=True)
class FieldSel:
    name: str


@dataclass(frozen=True)
class IndexSel:
    index: int


@dataclass(frozen=True)
class WildcardSel:
    pass


@dataclass(frozen=True)
class SliceSel:
    start: Optional[int]
    end: Optional[int]
    step: Optional[int]


@dataclass(frozen=True)
class UnionSel:
    keys: Tuple[Union[int, str], ...]


@dataclass(frozen=True)
class FilterSel:
    field: Tuple[str, ...]
    op: Optional[str]  # None means "field exists and is truthy"
    literal: Any = None


@dataclass(frozen=True)
class DescendantSel:
    name: Optional[str]  # None for "$..*"


Selector = Union[FieldSel, IndexSel, WildcardSel, SliceSel, UnionSel, FilterSel, DescendantSel]

# Selectors after which the result is a list of matches
_MULTI = (WildcardSel, SliceSel, UnionSel, FilterSel, DescendantSel)


# =============================================================================
# Parsing
# =============================================================================


def _parse_literal(query: str, text: str, pos: int) -> Any:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    if text in ("true", "false", "null"):
        return {"true": True, "false": False, "null": None}[text]
    try:
        return json.loads(text)
    except ValueError:
        raise PathQueryError(query, f"Invalid filter literal '{text}'", pos)


def _parse_bracket(query: str, content: str, pos: int) -> Selector:
    content = content.strip()
    if not content:
        raise PathQueryError(query, "Empty brackets", pos)

    if content == "*":
        return WildcardSel()

    if _INT.match(content):
        return IndexSel(int(content))

    if len(content) >= 2 and content[0] == content[-1] and content[0] in ("'", '"'):
        return FieldSel(content[1:-1])

    slice_match = _SLICE.match(content)
    if slice_match:
        start, end, step = (
            int(part) if part not in (None, "") else None for part in slice_match.groups()
        )
        if step == 0:
            raise PathQueryError(query, "Slice step cannot be zero", pos)
        return SliceSel(start, end, step)

    if content.startswith("?(") and content.endswith(")"):
        body = content[2:-1].strip()
        match = _FILTER.match(body)
        if match:
            field_path, op, literal = match.groups()
            return FilterSel(
                tuple(field_path.split(".")), op, _parse_literal(query, literal, pos)
            )
        match = _EXISTS_FILTER.match(body)
        if match:
            return FilterSel(tuple(match.group(1).split(".")), None)
        raise PathQueryError(query, f"Unsupported filter '{body}'", pos)

    if "," in content:
        keys: List[Union[int, str]] = []
        for part in content.split(","):
            part = part.strip()
            if _INT.match(part):
                keys.append(int(part))
            elif len(part) >= 2 and part[0] == part[-1] and part[0] in ("'", '"'):
                keys.append(part[1:-1])
            else:
                raise PathQueryError(query, f"Invalid union member '{part}'", pos)
        return UnionSel(tuple(keys))

    raise PathQueryError(query, f"Invalid bracket expression '[{content}]'", pos)


def _read_field(query: str, i: int) -> Tuple[str, int]:
    start = i
    while i < len(query) and _FIELD_CHARS.match(query[i]):
        i += 1
    return query[start:i], i


def _find_closing_bracket(query: str, i: int) -> int:
    """Return the index of the ']' matching the '[' at i, honouring quotes."""
    depth = 0
    quote = None
    j = i
    while j < len(query):
        ch = query[j]
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return j
        j += 1
    raise PathQueryError(query, "Unclosed '['", i)


@lru_cache(maxsize=512)
def parse_path(query: str) -> Tuple[Selector, ...]:
    """Parse a path query into selectors.

    Raises:
        PathQueryError: if the query is malformed.
    """
    if not isinstance(query, str):
        raise PathQueryError(str(query), "Path query must be a string")
    query = query.strip()
    if query in ("", "$"):
        return ()
    if not query.startswith("$"):
        raise PathQueryError(query, "Path query must start with '$'", 0)

    selectors: List[Selector] = []
    i = 1
    while i < len(query):
        ch = query[i]
        if ch == ".":
            if query.startswith("..", i):
                i += 2
                if i < len(query) and query[i] == "*":
                    selectors.append(DescendantSel(None))
                    i += 1
                    continue
                name, i = _read_field(query, i)
                if not name:
                    raise PathQueryError(query, "Expected field name after '..'", i)
                selectors.append(DescendantSel(name))
                continue
            i += 1
            if i < len(query) and query[i] == "*":
                selectors.append(WildcardSel())
                i += 1
                continue
            name, i = _read_field(query, i)
            if not name:
                raise PathQueryError(query, "Expected field name after '.'", i)
            selectors.append(FieldSel(name))
        elif ch == "[":
            end = _find_closing_bracket(query, i)
            selectors.append(_parse_bracket(query, query[i + 1:end], i))
            i = end + 1
        else:
            raise PathQueryError(query, f"Unexpected character '{ch}'", i)
    return tuple(selectors)


def is_valid_path(query: str) -> bool:
    try:
        parse_path(query)
    except PathQueryError:
        return False
    return True


# =============================================================================
# Evaluation
# =============================================================================


def _get_field(value: Any, name: str) -> Any:
    if isinstance(value, dict):
        return value.get(name, _MISSING)
    if isinstance(value, list) and _INT.match(name):
        return _get_index(value, int(name))
    return _MISSING


def _get_index(value: Any, index: int) -> Any:
    if not isinstance(value, list):
        return _MISSING
    if index < 0:
        index += len(value)
    if 0 <= index < len(value):
        return value[index]
    return _MISSING


def _children(value: Any) -> List[Any]:
    if isinstance(value, list):
        return list(value)
    if isinstance(value, dict):
        return list(value.values())
    return []


def _descendants(value: Any, name: Optional[str]) -> List[Any]:
    results: List[Any] = []

    def search(node: Any) -> None:
        if isinstance(node, list):
            for item in node:
                if name is None:
                    results.append(item)
                search(item)
        elif isinstance(node, dict):
            if name is not None and name in node:
                results.append(node[name])
            for item in node.values():
                if name is None:
                    results.append(item)
                search(item)

    search(value)
    return results


def _compare(op: Callable[[Any, Any], bool], left: Any, right: Any) -> bool:
    # Only numbers compare with numbers and strings with strings for ordering
    if op in (operator.eq, operator.ne):
        return op(left, right)
    numeric = (int, float)
    if isinstance(left, bool) or isinstance(right, bool):
        return False
    if isinstance(left, numeric) and isinstance(right, numeric):
        return op(left, right)
    if isinstance(left, str) and isinstance(right, str):
        return op(left, right)
    return False


def _matches(item: Any, sel: FilterSel) -> bool:
    value = item
    for name in sel.field:
        value = _get_field(value, name)
        if value is _MISSING:
            return False
    if sel.op is None:
        return bool(value)
    return _compare(_OPERATORS[sel.op], value, sel.literal)


def _apply(value: Any, sel: Selector) -> Any:
    """Apply one selector to one value. Multi selectors return a list."""
    if isinstance(sel, FieldSel):
        return _get_field(value, sel.name)
    if isinstance(sel, IndexSel):
        return _get_index(value, sel.index)
    if isinstance(sel, WildcardSel):
        if not isinstance(value, (list, dict)):
            return _MISSING
        return _children(value)
    if isinstance(sel, SliceSel):
        if not isinstance(value, list):
            return _MISSING
        return value[sel.start:sel.end:sel.step]
    if isinstance(sel, UnionSel):
        results = []
        for key in sel.keys:
            item = _get_index(value, key) if isinstance(key, int) else _get_field(value, key)
            if item is not _MISSING:
                results.append(item)
        return results
    if isinstance(sel, FilterSel):
        if isinstance(value, dict):
            value = list(value.values())
        if not isinstance(value, list):
            return _MISSING
        return [item for item in value if _matches(item, sel)]
    if isinstance(sel, DescendantSel):
        return _descendants(value, sel.name)
    raise TypeError(f"Unknown selector {sel!r}")


def evaluate_path(data: Any, query: str) -> Any:
    """Evaluate a path query against data.

    >>> evaluate_path({"a": {"b": [10, 20, 30]}}, "$.a.b[-1]")
    30
    >>> evaluate_path({"a": {"b": [10, 20, 30]}}, "$.a.b[0:2]")
    [10, 20]

    Returns None for missing fields or out-of-range indices.

    Raises:
        PathQueryError: if the query is malformed.
    """
    selectors = parse_path(query)
    current = data
    multi = False

    for sel in selectors:
        if multi:
            mapped = []
            for item in current:
                result = _apply(item, sel)
                if result is _MISSING:
                    continue
                if isinstance(sel, _MULTI):
                    mapped.extend(result)
                else:
                    mapped.append(result)
            current = mapped
        else:
            current = _apply(current, sel)
            if current is _MISSING:
                return None
            if isinstance(sel, _MULTI):
                multi = True

    return current
