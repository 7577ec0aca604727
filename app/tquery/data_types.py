# app/tquery/data_types.py
"""Column type system of the query engine.

Single source of truth mapping a column type to its nullability, sortability,
the filter operators legal on it, the operand validation rule of each operator,
the SQL compilation of each operator and the client-facing rendering of values.
Each of these concerns is kept in one mapping table below.
"""

import json
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import String, and_, cast, func, not_, or_


class FilterOperator(str, Enum):
    """Operators of column filters, valued by their wire representation."""

    NULL = "null"
    EQ = "="
    BIN_EQ = "=="
    IN = "in"
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    ENDS_WITH = "%v"
    STARTS_WITH = "v%"
    CONTAINS = "%v%"
    LIKE = "lv"
    REGEXP = "/v/"
    HAS = "has"
    HAS_ALL = "has_all"
    HAS_ANY = "has_any"
    HAS_ONLY = "has_only"


CMP_OPERATORS: Tuple[FilterOperator, ...] = (
    FilterOperator.GT, FilterOperator.LT, FilterOperator.GE, FilterOperator.LE,
)
LIKE_OPERATORS: Tuple[FilterOperator, ...] = (
    FilterOperator.ENDS_WITH, FilterOperator.STARTS_WITH, FilterOperator.CONTAINS,
    FilterOperator.LIKE, FilterOperator.REGEXP,
)
SETS_OPERATORS: Tuple[FilterOperator, ...] = (
    FilterOperator.HAS_ALL, FilterOperator.HAS_ANY, FilterOperator.HAS_ONLY,
)
# Operators whose operand is a list, regardless of the column type.
ARRAY_OPERATORS: Tuple[FilterOperator, ...] = (FilterOperator.IN,) + SETS_OPERATORS
# Operators requiring a string operand without leading or trailing whitespace.
TRIMMED_OPERATORS: Tuple[FilterOperator, ...] = (
    FilterOperator.EQ, FilterOperator.BIN_EQ, FilterOperator.IN, FilterOperator.HAS,
) + SETS_OPERATORS


class TqDataType(str, Enum):
    """Closed set of column types, including server-only nullable variants."""

    BOOL = "bool"
    DATE = "date"
    DATETIME = "datetime"
    INT = "int"
    STRING = "string"
    TEXT = "text"
    UUID = "uuid"
    DICT = "dict"
    UUID_LIST = "uuid_list"
    DICT_LIST = "dict_list"
    LIST = "list"
    OBJECT = "object"
    COUNT = "count"
    # nullable
    BOOL_NULLABLE = "bool_nullable"
    DATE_NULLABLE = "date_nullable"
    DATETIME_NULLABLE = "datetime_nullable"
    DECIMAL0_NULLABLE = "decimal0_nullable"
    INT_NULLABLE = "int_nullable"
    STRING_NULLABLE = "string_nullable"
    TEXT_NULLABLE = "text_nullable"
    UUID_NULLABLE = "uuid_nullable"
    DICT_NULLABLE = "dict_nullable"
    # query-only
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"

    def is_nullable(self) -> bool:
        return self in _NULLABLE_TYPES

    def not_null_type(self) -> "TqDataType":
        return _NOT_NULL_TYPES.get(self, self)

    def base_type(self) -> "TqDataType":
        if self in (TqDataType.IS_NULL, TqDataType.IS_NOT_NULL):
            return TqDataType.BOOL
        return self

    def not_null_base_type(self) -> "TqDataType":
        return self.base_type().not_null_type()

    def is_list(self) -> bool:
        return self.not_null_base_type() in (TqDataType.UUID_LIST, TqDataType.DICT_LIST)

    def is_dict(self) -> bool:
        return self.not_null_base_type() in (TqDataType.DICT, TqDataType.DICT_LIST)

    def is_sortable(self) -> bool:
        return self.not_null_base_type() not in _UNSORTABLE_TYPES

    def schema_type(self) -> str:
        """The type name exposed to the client."""
        return self.not_null_base_type().value

    def operators(self) -> FrozenSet[FilterOperator]:
        base = _OPERATORS[self.not_null_base_type()]
        if self.is_nullable():
            return frozenset((FilterOperator.NULL,)) | base
        return base

    def is_array_operand(self, operator: FilterOperator) -> bool:
        return operator in ARRAY_OPERATORS or (operator == FilterOperator.EQ and self.is_list())

    def value_validator(self, operator: FilterOperator) -> "ValueRule":
        """Validation rule of a single operand (or of each member of a list operand)."""
        if operator in LIKE_OPERATORS:
            return STRING_RULE
        base = self.not_null_base_type()
        if base in (TqDataType.STRING, TqDataType.TEXT):
            return TRIMMED_STRING_RULE if operator in TRIMMED_OPERATORS else STRING_RULE
        rule = _VALUE_RULES.get(base)
        if rule is None:
            raise ValueError(f"Type {self.value} has no value validator")
        return rule

    def render(self, value: Any) -> Any:
        if value is None:
            return [] if self.is_list() else None
        return _RENDERERS.get(self.not_null_base_type(), _identity)(value)


_NULLABLE_TYPES = frozenset({
    TqDataType.BOOL_NULLABLE, TqDataType.DATE_NULLABLE, TqDataType.DATETIME_NULLABLE,
    TqDataType.DECIMAL0_NULLABLE, TqDataType.INT_NULLABLE, TqDataType.STRING_NULLABLE,
    TqDataType.TEXT_NULLABLE, TqDataType.UUID_NULLABLE, TqDataType.DICT_NULLABLE,
    # An empty list is reported and filtered as null.
    TqDataType.UUID_LIST, TqDataType.DICT_LIST,
})

_NOT_NULL_TYPES = {
    TqDataType.BOOL_NULLABLE: TqDataType.BOOL,
    TqDataType.DATE_NULLABLE: TqDataType.DATE,
    TqDataType.DATETIME_NULLABLE: TqDataType.DATETIME,
    TqDataType.DECIMAL0_NULLABLE: TqDataType.INT,
    TqDataType.INT_NULLABLE: TqDataType.INT,
    TqDataType.STRING_NULLABLE: TqDataType.STRING,
    TqDataType.TEXT_NULLABLE: TqDataType.TEXT,
    TqDataType.UUID_NULLABLE: TqDataType.UUID,
    TqDataType.DICT_NULLABLE: TqDataType.DICT,
}

_UNSORTABLE_TYPES = frozenset({
    TqDataType.UUID, TqDataType.TEXT, TqDataType.UUID_LIST, TqDataType.DICT_LIST,
    TqDataType.LIST, TqDataType.OBJECT,
})

_OPERATORS: Dict[TqDataType, FrozenSet[FilterOperator]] = {
    TqDataType.BOOL: frozenset({FilterOperator.EQ}),
    TqDataType.DATE: frozenset({FilterOperator.EQ, FilterOperator.IN, *CMP_OPERATORS}),
    TqDataType.DATETIME: frozenset(CMP_OPERATORS),
    TqDataType.INT: frozenset({
        FilterOperator.EQ, FilterOperator.IN, *CMP_OPERATORS, *LIKE_OPERATORS,
    }),
    TqDataType.STRING: frozenset({
        FilterOperator.EQ, FilterOperator.BIN_EQ, FilterOperator.IN, *CMP_OPERATORS, *LIKE_OPERATORS,
    }),
    TqDataType.TEXT: frozenset(LIKE_OPERATORS),
    TqDataType.UUID: frozenset({FilterOperator.EQ, FilterOperator.IN}),
    TqDataType.DICT: frozenset({FilterOperator.EQ, FilterOperator.IN}),
    TqDataType.UUID_LIST: frozenset({FilterOperator.EQ, FilterOperator.HAS, *SETS_OPERATORS}),
    TqDataType.DICT_LIST: frozenset({FilterOperator.EQ, FilterOperator.HAS, *SETS_OPERATORS}),
    TqDataType.LIST: frozenset(),
    TqDataType.OBJECT: frozenset(),
    TqDataType.COUNT: frozenset(),
}


# ===== VALUE VALIDATION =====


class ValueRule:
    """Operand validation rule: ``validate`` returns an error message or None,
    ``prepare`` converts a valid operand into the value bound to the query."""

    def __init__(self, name: str, validate: Callable[[Any], Optional[str]],
                 prepare: Callable[[Any], Any] = lambda v: v):
        self.name = name
        self.validate = validate
        self.prepare = prepare

    def __repr__(self) -> str:
        return f"ValueRule({self.name})"


_UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d{3}|\.\d{6})?)?(Z|\+00:00)$")


def _validate_bool(value: Any) -> Optional[str]:
    return None if isinstance(value, bool) else "The value must be a boolean."


def _validate_int(value: Any) -> Optional[str]:
    if isinstance(value, bool) or not isinstance(value, int):
        return "The value must be an integer."
    return None


def _validate_string(value: Any) -> Optional[str]:
    return None if isinstance(value, str) else "The value must be a string."


def _validate_trimmed_string(value: Any) -> Optional[str]:
    error = _validate_string(value)
    if error:
        return error
    if value != value.strip():
        return "The value must not have leading or trailing whitespace."
    return None


def _validate_uuid(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not _UUID_PATTERN.match(value):
        return "The value must be a valid lowercase UUID."
    return None


def _validate_date(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not _DATE_PATTERN.match(value):
        return "The value must be a date in the YYYY-MM-DD format."
    try:
        date.fromisoformat(value)
    except ValueError:
        return "The value must be a valid date."
    return None


def _validate_datetime(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not _DATETIME_PATTERN.match(value):
        return "The value must be an ISO 8601 date-time in UTC."
    try:
        _parse_utc_datetime(value)
    except ValueError:
        return "The value must be a valid date-time."
    return None


def _parse_utc_datetime(value: str) -> datetime:
    # Stored as naive UTC.
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


BOOL_RULE = ValueRule("bool", _validate_bool)
INT_RULE = ValueRule("int", _validate_int)
STRING_RULE = ValueRule("string", _validate_string)
TRIMMED_STRING_RULE = ValueRule("trimmed_string", _validate_trimmed_string)
UUID_RULE = ValueRule("uuid", _validate_uuid)
DATE_RULE = ValueRule("date", _validate_date, date.fromisoformat)
DATETIME_RULE = ValueRule("datetime", _validate_datetime, _parse_utc_datetime)

_VALUE_RULES: Dict[TqDataType, ValueRule] = {
    TqDataType.BOOL: BOOL_RULE,
    TqDataType.INT: INT_RULE,
    TqDataType.UUID: UUID_RULE,
    TqDataType.DICT: UUID_RULE,
    TqDataType.UUID_LIST: UUID_RULE,
    TqDataType.DICT_LIST: UUID_RULE,
    TqDataType.DATE: DATE_RULE,
    TqDataType.DATETIME: DATETIME_RULE,
}


# ===== SQL COMPILATION =====


def escape_like(value: str) -> str:
    """Escape LIKE metacharacters so the operand matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _like(pattern: Callable[[str], str], escaped: bool = True):
    def compile_like(expr, value, data_type):
        if data_type.not_null_base_type() == TqDataType.INT:
            expr = cast(expr, String)
        if escaped:
            return expr.ilike(pattern(escape_like(value)), escape="\\")
        return expr.ilike(pattern(value))
    return compile_like


def _regexp(expr, value, data_type):
    if data_type.not_null_base_type() == TqDataType.INT:
        expr = cast(expr, String)
    return expr.regexp_match(value)


def _eq(expr, value, data_type):
    if data_type.not_null_base_type() == TqDataType.STRING:
        return func.lower(expr) == value.lower()
    return expr == value


def _in(expr, value, data_type):
    if data_type.not_null_base_type() == TqDataType.STRING:
        return func.lower(expr).in_([v.lower() for v in value])
    return expr.in_(value)


# Scalar operators: (column expression, prepared operand, column type) -> clause.
SQL_OPERATORS: Dict[FilterOperator, Callable[[Any, Any, TqDataType], Any]] = {
    FilterOperator.NULL: lambda expr, value, data_type: expr.is_(None),
    FilterOperator.EQ: _eq,
    # Exact comparison under the column's default (binary) collation.
    FilterOperator.BIN_EQ: lambda expr, value, data_type: expr == value,
    FilterOperator.IN: _in,
    FilterOperator.GT: lambda expr, value, data_type: expr > value,
    FilterOperator.LT: lambda expr, value, data_type: expr < value,
    FilterOperator.GE: lambda expr, value, data_type: expr >= value,
    FilterOperator.LE: lambda expr, value, data_type: expr <= value,
    FilterOperator.ENDS_WITH: _like(lambda v: f"%{v}"),
    FilterOperator.STARTS_WITH: _like(lambda v: f"{v}%"),
    FilterOperator.CONTAINS: _like(lambda v: f"%{v}%"),
    FilterOperator.LIKE: _like(lambda v: v, escaped=False),
    FilterOperator.REGEXP: _regexp,
}


# List operators: (list source, prepared operand) -> clause.
# The list source exposes ``value`` and ``exists(*criteria)`` / ``count_distinct(*criteria)``.
LIST_SQL_OPERATORS: Dict[FilterOperator, Callable[[Any, Any], Any]] = {
    FilterOperator.NULL: lambda source, value: not_(source.exists()),
    FilterOperator.HAS: lambda source, value: source.exists(source.value == value),
    FilterOperator.HAS_ANY: lambda source, value: source.exists(source.value.in_(value)),
    FilterOperator.HAS_ALL: lambda source, value: source.count_distinct(source.value.in_(value)) == len(value),
    FilterOperator.HAS_ONLY: lambda source, value: not_(source.exists(source.value.not_in(value))),
    FilterOperator.EQ: lambda source, value: and_(
        not_(source.exists(source.value.not_in(value))),
        source.count_distinct(source.value.in_(value)) == len(value),
    ),
}


def compile_column_condition(data_type: TqDataType, operator: FilterOperator, expr, value,
                             list_source=None):
    """Compile one column operator into a SQLAlchemy clause."""
    if data_type.is_list():
        return LIST_SQL_OPERATORS[operator](list_source, value)
    return SQL_OPERATORS[operator](expr, value, data_type)


def invert_condition(condition, expr, data_type: TqDataType, operator: FilterOperator):
    """Negate a column condition.

    SQL negation of a comparison with NULL yields NULL, so for nullable scalar
    columns the negated condition explicitly matches null values too.
    """
    if (data_type.is_nullable() and not data_type.is_list()
            and operator != FilterOperator.NULL and expr is not None):
        return or_(not_(condition), expr.is_(None))
    return not_(condition)


# ===== RENDERING =====


def _identity(value: Any) -> Any:
    return value


def _render_datetime(value: Any) -> str:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="seconds") + "Z"


def _render_date(value: Any) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat() if isinstance(value, date) else str(value)


def _render_int(value: Any) -> int:
    if isinstance(value, Decimal):
        return int(value.to_integral_value())
    return int(value)


def _render_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return sorted(value)
    return sorted(v for v in str(value).split(",") if v)


def _render_json(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


_RENDERERS: Dict[TqDataType, Callable[[Any], Any]] = {
    TqDataType.BOOL: bool,
    TqDataType.DATE: _render_date,
    TqDataType.DATETIME: _render_datetime,
    TqDataType.INT: _render_int,
    TqDataType.COUNT: _render_int,
    TqDataType.STRING: str,
    TqDataType.TEXT: str,
    TqDataType.UUID: str,
    TqDataType.DICT: str,
    TqDataType.UUID_LIST: _render_list,
    TqDataType.DICT_LIST: _render_list,
    TqDataType.LIST: _render_json,
    TqDataType.OBJECT: _render_json,
}
