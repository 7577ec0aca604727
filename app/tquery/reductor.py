# app/tquery/reductor.py
"""Filter algebra: simplification of wire-format filters.

Filters are the JSON structures sent in a data request: the constants
``"always"`` and ``"never"`` or dicts of type ``op``, ``column``, ``custom``,
``global`` or ``const``. ``FilterReductor.reduce`` rewrites a filter into an
equivalent, simpler one using the column schema (nullability in particular)
without changing the set of rows it matches.
"""

from typing import Any, Dict, List, Optional, Union

from app.core.exceptions import BadFilterError

Filter = Union[str, Dict[str, Any]]

ALWAYS = "always"
NEVER = "never"

_STRIPPED_KEYS = {
    "op": ("type", "op", "val", "inv"),
    "column": ("type", "column", "op", "val", "inv"),
    "custom": ("type", "customFilter", "params", "inv"),
    "global": ("type", "op", "val", "inv"),
}


def invert_filter(filter: Filter, invert: bool = True) -> Filter:
    """Return the negation of the filter. ``invert_filter(invert_filter(f)) == f``."""
    if not invert:
        return filter
    if filter == ALWAYS:
        return NEVER
    if filter == NEVER:
        return ALWAYS
    if not isinstance(filter, dict):
        raise BadFilterError(filter)
    result = dict(filter)
    if filter.get("inv"):
        result.pop("inv")
    else:
        result["inv"] = True
    return result


def _strip(filter: Filter) -> Filter:
    """Drop bookkeeping fields and a false ``inv`` flag."""
    if not isinstance(filter, dict):
        return filter
    keys = _STRIPPED_KEYS.get(filter.get("type"))
    if keys is None:
        return filter
    result = {key: filter[key] for key in keys if key in filter}
    if not result.get("inv"):
        result.pop("inv", None)
    return result


class FilterReductor:
    """Reduces filters against an exported schema (``{"columns": [...]}``)."""

    def __init__(self, schema: Dict[str, Any]):
        self._columns: Dict[str, Dict[str, Any]] = {
            column["name"]: column for column in schema.get("columns", [])
        }

    def reduce(self, filter: Filter) -> Filter:
        if isinstance(filter, str):
            if filter in (ALWAYS, NEVER):
                return filter
            raise BadFilterError(filter)
        if not isinstance(filter, dict):
            raise BadFilterError(filter)
        filter_type = filter.get("type")
        if filter_type == "const":
            # Wraps a constant so that it can carry an inversion.
            value = filter.get("val")
            if value not in (ALWAYS, NEVER):
                raise BadFilterError(filter, "const filter value must be \"always\" or \"never\"")
            return invert_filter(value, bool(filter.get("inv")))
        if filter_type == "op":
            return _strip(self._reduce_bool_op(filter))
        if filter_type == "column":
            return _strip(self._reduce_column(filter))
        if filter_type == "custom":
            return _strip(filter)
        if filter_type == "global":
            value = filter.get("val")
            if not isinstance(value, str):
                raise BadFilterError(filter, "global filter value must be a string")
            if not value.strip():
                return invert_filter(ALWAYS, bool(filter.get("inv")))
            return _strip(filter)
        raise BadFilterError(filter, "unknown filter type")

    # ----- bool op -----

    def _reduce_bool_op(self, filter: Dict[str, Any]) -> Filter:
        op = filter.get("op")
        if op not in ("&", "|"):
            raise BadFilterError(filter, "unknown bool operator")
        sub_filters = filter.get("val")
        if not isinstance(sub_filters, list):
            raise BadFilterError(filter, "bool operator requires a list of filters")
        inverse = bool(filter.get("inv"))
        # The absorbing constant of the operator (never for &) and its identity.
        absorbing = NEVER if op == "&" else ALWAYS
        identity = ALWAYS if op == "&" else NEVER

        pending: List[Filter] = list(reversed(sub_filters))
        survivors: List[Filter] = []
        while pending:
            sub_filter = self.reduce(pending.pop())
            if sub_filter == absorbing:
                return invert_filter(absorbing, inverse)
            if sub_filter == identity:
                continue
            if sub_filter.get("type") == "op":
                if sub_filter["op"] == op and not sub_filter.get("inv"):
                    # Splice children of the same operator.
                    pending.extend(reversed(sub_filter["val"]))
                    continue
                if sub_filter["op"] != op and sub_filter.get("inv"):
                    # De Morgan: an inverted dual operator is this operator over inverted children.
                    pending.extend(reversed([invert_filter(child) for child in sub_filter["val"]]))
                    continue
            survivors.append(sub_filter)

        if not survivors:
            return invert_filter(identity, inverse)
        if len(survivors) == 1:
            return invert_filter(survivors[0], inverse)
        result: Dict[str, Any] = {"type": "op", "op": op, "val": survivors}
        return invert_filter(result, inverse)

    # ----- column -----

    def _reduce_column(self, filter: Dict[str, Any]) -> Filter:
        column = self._columns.get(filter.get("column"))
        if column is None:
            raise BadFilterError(filter, "unknown column")
        reduced = self._reduce_column_ignoring_inv(filter, column)
        if reduced is None:
            return filter
        return invert_filter(reduced, bool(filter.get("inv")))

    def _reduce_column_ignoring_inv(self, filter: Dict[str, Any], column: Dict[str, Any]) -> Optional[Filter]:
        name = filter["column"]
        op = filter.get("op")
        nullable = column.get("type") != "count" and bool(column.get("nullable"))

        if op == "null":
            return None if nullable else NEVER

        def null_filter() -> Filter:
            return {"type": "column", "column": name, "op": "null"} if nullable else NEVER

        value = filter.get("val")
        if isinstance(value, str) and value == "":
            if op in ("=", "==", "lv", "<="):
                return null_filter()
            if op == ">":
                return invert_filter(null_filter())
            if op in (">=", "v%", "%v", "%v%", "/v/"):
                return ALWAYS
            if op in ("<", "has"):
                return NEVER
            raise BadFilterError(filter, "empty value")

        if isinstance(value, str) and op in ("=", "==", "has") and value != value.strip():
            # Stored values of these operators never have leading or trailing whitespace.
            return NEVER

        if isinstance(value, list):
            return self._reduce_array(filter, name, op, value, null_filter)
        return None

    def _reduce_array(self, filter, name, op, value, null_filter) -> Filter:
        values = _unique(value)
        had_invalid = False
        if all(isinstance(v, str) for v in values):
            cleaned = [v for v in values if v and v == v.strip()]
            had_invalid = len(cleaned) != len(values)
            values = cleaned

        def column_filter(column_op: str, column_value: Any) -> Filter:
            return {"type": "column", "column": name, "op": column_op, "val": column_value}

        if op == "in":
            if not values:
                return NEVER
            if len(values) == 1:
                return column_filter("=", values[0])
            return column_filter("in", values)
        if op == "=":
            if had_invalid:
                return NEVER
            if not values:
                return null_filter()
            return column_filter("=", values)
        if op == "has_all":
            if had_invalid:
                return NEVER
            if not values:
                return ALWAYS
            if len(values) == 1:
                return column_filter("has", values[0])
            return column_filter("has_all", values)
        if op == "has_any":
            if not values:
                return NEVER
            if len(values) == 1:
                return column_filter("has", values[0])
            return column_filter("has_any", values)
        if op == "has_only":
            if not values:
                return null_filter()
            return column_filter("has_only", values)
        raise BadFilterError(filter, "operator does not take a list")


def _unique(values: List[Any]) -> List[Any]:
    result: List[Any] = []
    for value in values:
        if value not in result:
            result.append(value)
    return result
