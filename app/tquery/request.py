# app/tquery/request.py
"""Validation of data requests against an entity config.

``parse_request`` checks the whole request before anything is compiled and
collects every problem with a dotted path to the offending field (e.g.
``filter.val.1.op``). A request that passes is turned into a ``TqRequest``
holding the resolved column definitions and a tree of filter nodes that
compile themselves into SQLAlchemy clauses.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy import and_, false, func, not_, or_, true

from app.core.config import TQUERY_MAX_PAGE_SIZE
from app.core.exceptions import TqueryValidationError
from .config import ColumnDef, CustomFilterDef, TqueryConfig
from .data_types import FilterOperator, compile_column_condition, escape_like, invert_condition
from .schemas import DataRequest

# ===== FILTER NODES =====


class FilterNode:
    """A validated filter. ``inverse`` negates the node.

    ``to_clause(invert)`` pushes negation down to the leaves, so every column
    condition gets the null-aware inversion of ``invert_condition``.
    """

    inverse: bool = False

    def columns(self) -> Iterator[ColumnDef]:
        return iter(())

    def joins(self) -> Iterator[str]:
        return iter(())

    def to_clause(self, invert: bool = False):
        raise NotImplementedError


@dataclass
class ConstFilter(FilterNode):
    value: bool

    def to_clause(self, invert: bool = False):
        return true() if self.value != invert else false()


@dataclass
class BoolOpFilter(FilterNode):
    op: str
    filters: List[FilterNode]
    inverse: bool = False

    def columns(self):
        for sub_filter in self.filters:
            yield from sub_filter.columns()

    def joins(self):
        for sub_filter in self.filters:
            yield from sub_filter.joins()

    def to_clause(self, invert: bool = False):
        invert = invert != self.inverse
        # De Morgan: a negated conjunction is a disjunction of negations.
        combine = and_ if (self.op == "&") != invert else or_
        return combine(*(sub_filter.to_clause(invert) for sub_filter in self.filters))


@dataclass
class ColumnFilter(FilterNode):
    column: ColumnDef
    operator: FilterOperator
    value: Any = None
    inverse: bool = False

    def columns(self):
        yield self.column

    def to_clause(self, invert: bool = False):
        data_type = self.column.type
        expr = self.column.expr
        condition = compile_column_condition(data_type, self.operator, expr, self.value, self.column.list_source)
        if invert != self.inverse:
            return invert_condition(condition, expr, data_type, self.operator)
        return condition


@dataclass
class CustomFilter(FilterNode):
    definition: CustomFilterDef
    params: BaseModel
    inverse: bool = False

    def joins(self):
        yield from self.definition.joins

    def to_clause(self, invert: bool = False):
        clause = self.definition.compile(self.params)
        return not_(clause) if invert != self.inverse else clause


@dataclass
class GlobalFilter(FilterNode):
    """Free-text search: every word must appear in at least one searchable column."""

    words: List[str]
    searchable: List[ColumnDef]
    inverse: bool = False

    def columns(self):
        yield from self.searchable

    def _matches(self, column: ColumnDef, word: str, invert: bool):
        # A null column holds no text, so it never matches and always matches the negation.
        condition = func.coalesce(column.expr, "").ilike(f"%{escape_like(word)}%", escape="\\")
        return not_(condition) if invert else condition

    def to_clause(self, invert: bool = False):
        invert = invert != self.inverse
        if not self.words:
            return false() if invert else true()
        if not self.searchable:
            return true() if invert else false()
        each_word, any_column = (or_, and_) if invert else (and_, or_)
        return each_word(*(
            any_column(*(self._matches(column, word, invert) for column in self.searchable))
            for word in self.words
        ))


# ===== REQUEST =====


@dataclass
class SortColumn:
    column: ColumnDef
    desc: bool = False


@dataclass
class TqRequest:
    """A validated data request."""

    select_columns: List[ColumnDef]
    filter: FilterNode
    sort_columns: List[SortColumn]
    size: int
    offset: int
    distinct: bool = False

    def all_columns(self) -> List[ColumnDef]:
        """Columns referenced anywhere in the request, in first-use order."""
        seen: Dict[str, ColumnDef] = {}
        for column in self.select_columns:
            seen.setdefault(column.name, column)
        for column in self.filter.columns():
            seen.setdefault(column.name, column)
        for sort in self.sort_columns:
            seen.setdefault(sort.column.name, sort.column)
        return list(seen.values())


@dataclass
class _Errors:
    items: List[Dict[str, str]] = field(default_factory=list)

    def add(self, path: str, message: str, type: str = "invalid") -> None:
        self.items.append({"field": path, "message": message, "type": type})

    def __bool__(self) -> bool:
        return bool(self.items)


def _join_path(*parts: Union[str, int]) -> str:
    return ".".join(str(part) for part in parts if part != "")


def pydantic_errors(exc: ValidationError, prefix: str = "") -> List[Dict[str, str]]:
    """Convert pydantic errors into field-attributed errors."""
    return [
        {"field": _join_path(prefix, *error["loc"]), "message": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]


def parse_request(config: TqueryConfig, payload: Union[DataRequest, Dict[str, Any]],
                  max_page_size: int = TQUERY_MAX_PAGE_SIZE) -> TqRequest:
    """Validate the request against the config. Raises TqueryValidationError."""
    if not isinstance(payload, DataRequest):
        try:
            payload = DataRequest.model_validate(payload)
        except ValidationError as e:
            raise TqueryValidationError(pydantic_errors(e)) from e

    errors = _Errors()
    columns = config.columns_by_name

    select_columns: List[ColumnDef] = []
    selected_names = set()
    for i, request_column in enumerate(payload.columns):
        path = _join_path("columns", i, "column")
        column = columns.get(request_column.column)
        if column is None:
            errors.add(path, f"Unknown column {request_column.column!r}.", "unknown_column")
            continue
        if column.name in selected_names:
            errors.add(path, f"Column {column.name!r} is selected more than once.", "duplicate")
            continue
        if not column.is_data_column and not payload.distinct:
            errors.add(path, "The count column requires a distinct request.", "count_without_distinct")
            continue
        if payload.distinct and column.type.is_list():
            errors.add(path, "List columns cannot be selected in a distinct request.", "list_in_distinct")
            continue
        selected_names.add(column.name)
        select_columns.append(column)

    sort_columns: List[SortColumn] = []
    for i, sort in enumerate(payload.sort):
        path = _join_path("sort", i, "column")
        column = columns.get(sort.column)
        if column is None:
            errors.add(path, f"Unknown column {sort.column!r}.", "unknown_column")
            continue
        if not column.is_data_column:
            if not payload.distinct:
                errors.add(path, "The count column requires a distinct request.", "count_without_distinct")
                continue
        elif not column.type.is_sortable():
            errors.add(path, f"Column {column.name!r} is not sortable.", "not_sortable")
            continue
        if payload.distinct and column.name not in selected_names:
            errors.add(path, "A distinct request can only be sorted by selected columns.", "not_selected")
            continue
        sort_columns.append(SortColumn(column, sort.is_desc))

    paging = payload.paging
    if not 1 <= paging.size <= max_page_size:
        errors.add("paging.size", f"The page size must be between 1 and {max_page_size}.", "out_of_range")
    if paging.number is not None and paging.number < 1:
        errors.add("paging.number", "The page number must be at least 1.", "out_of_range")
    if paging.offset is not None and paging.offset < 0:
        errors.add("paging.offset", "The offset must not be negative.", "out_of_range")

    filter_node = _parse_filter(config, payload.filter, "filter", errors)

    if errors:
        raise TqueryValidationError(errors.items)
    return TqRequest(
        select_columns=select_columns,
        filter=filter_node,
        sort_columns=sort_columns,
        size=paging.size,
        offset=paging.get_offset(),
        distinct=payload.distinct,
    )


# ===== FILTER PARSING =====

_FILTER_KEYS = {
    "op": {"type", "op", "val", "inv"},
    "column": {"type", "column", "op", "val", "inv"},
    "custom": {"type", "customFilter", "params", "inv"},
    "global": {"type", "op", "val", "inv"},
}


def _parse_filter(config: TqueryConfig, data: Any, path: str, errors: _Errors) -> Optional[FilterNode]:
    if data == "always":
        return ConstFilter(True)
    if data == "never":
        return ConstFilter(False)
    if not isinstance(data, dict):
        errors.add(path, "The filter must be \"always\", \"never\" or an object.")
        return None

    filter_type = data.get("type")
    allowed = _FILTER_KEYS.get(filter_type)
    if allowed is None:
        errors.add(_join_path(path, "type"), f"Unknown filter type {filter_type!r}.", "unknown_filter_type")
        return None
    for key in sorted(set(data) - allowed):
        errors.add(_join_path(path, key), "Unexpected field.", "extra_forbidden")

    inverse = data.get("inv", False)
    if not isinstance(inverse, bool):
        errors.add(_join_path(path, "inv"), "The value must be a boolean.")
        inverse = False

    if filter_type == "op":
        return _parse_bool_op(config, data, path, inverse, errors)
    if filter_type == "column":
        return _parse_column_filter(config, data, path, inverse, errors)
    if filter_type == "custom":
        return _parse_custom_filter(config, data, path, inverse, errors)
    return _parse_global_filter(config, data, path, inverse, errors)


def _parse_bool_op(config, data, path, inverse, errors) -> Optional[FilterNode]:
    op = data.get("op")
    valid = True
    if op not in ("&", "|"):
        errors.add(_join_path(path, "op"), "The operator must be \"&\" or \"|\".", "unknown_operator")
        valid = False
    sub_filters = data.get("val")
    if not isinstance(sub_filters, list) or not sub_filters:
        errors.add(_join_path(path, "val"), "The value must be a non-empty list of filters.")
        return None
    nodes = [_parse_filter(config, sub_filter, _join_path(path, "val", i), errors)
             for i, sub_filter in enumerate(sub_filters)]
    if not valid or any(node is None for node in nodes):
        return None
    return BoolOpFilter(op, nodes, inverse)


def _parse_column_filter(config, data, path, inverse, errors) -> Optional[FilterNode]:
    column = config.columns_by_name.get(data.get("column"))
    if column is None:
        errors.add(_join_path(path, "column"), f"Unknown column {data.get('column')!r}.", "unknown_column")
        return None
    try:
        operator = FilterOperator(data.get("op"))
    except (TypeError, ValueError):
        operator = None
    if operator is None or operator not in column.type.operators():
        errors.add(
            _join_path(path, "op"),
            f"Operator {data.get('op')!r} is not allowed for column {column.name!r}.",
            "unknown_operator",
        )
        return None

    value_path = _join_path(path, "val")
    if operator == FilterOperator.NULL:
        if "val" in data:
            errors.add(value_path, "The null operator takes no value.", "extra_forbidden")
            return None
        return ColumnFilter(column, operator, None, inverse)
    if "val" not in data:
        errors.add(value_path, "The value is required.", "missing")
        return None

    value = data["val"]
    rule = column.type.value_validator(operator)
    if column.type.is_array_operand(operator):
        if not isinstance(value, list) or not value:
            errors.add(value_path, "The value must be a non-empty list.")
            return None
        prepared = []
        for i, member in enumerate(value):
            error = rule.validate(member)
            if error:
                errors.add(_join_path(value_path, i), error)
            else:
                prepared.append(rule.prepare(member))
        if len(prepared) != len(value):
            return None
        return ColumnFilter(column, operator, prepared, inverse)

    error = rule.validate(value)
    if error:
        errors.add(value_path, error)
        return None
    return ColumnFilter(column, operator, rule.prepare(value), inverse)


def _parse_custom_filter(config, data, path, inverse, errors) -> Optional[FilterNode]:
    definition = config.custom_filters_by_name.get(data.get("customFilter"))
    if definition is None:
        errors.add(
            _join_path(path, "customFilter"),
            f"Unknown custom filter {data.get('customFilter')!r}.",
            "unknown_custom_filter",
        )
        return None
    try:
        params = definition.params_model.model_validate(data.get("params", {}))
    except ValidationError as e:
        errors.items.extend(pydantic_errors(e, _join_path(path, "params")))
        return None
    return CustomFilter(definition, params, inverse)


def _parse_global_filter(config, data, path, inverse, errors) -> Optional[FilterNode]:
    if data.get("op") != FilterOperator.CONTAINS.value:
        errors.add(_join_path(path, "op"), "The global filter operator must be \"%v%\".", "unknown_operator")
        return None
    value = data.get("val")
    if not isinstance(value, str):
        errors.add(_join_path(path, "val"), "The value must be a string.")
        return None
    searchable = [column for column in config.searchable_columns() if column.is_data_column]
    return GlobalFilter(value.split(), searchable, inverse)
