# app/tquery/config.py
"""Schema descriptors for queryable entities.

A ``TqueryConfig`` is immutable data describing the columns, joins and custom
filters of an entity. Variants of an entity are built with ``extend_config``,
which applies a list of extension records to a base config and returns a new
config, e.g. the meeting attendants config is the meetings config plus the
joined attendant columns.
"""

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, Union

from pydantic import BaseModel
from sqlalchemy import distinct, func, select

from app.core.exceptions import TqueryConfigError
from .data_types import TqDataType

COUNT_COLUMN = "count"


@dataclass(frozen=True, eq=False)
class JoinDef:
    """A join reaching a table alias. Joins listed in ``depends_on`` are applied first.

    A ``required`` join defines the rows of the entity and is always applied.
    """

    alias: str
    target: Any
    on: Any
    left: bool = False
    depends_on: Tuple[str, ...] = ()
    required: bool = False


@dataclass(frozen=True, eq=False)
class ListSource:
    """Rows of a child table holding the members of a list column of the parent row."""

    value: Any
    correlation: Any
    criteria: Tuple[Any, ...] = ()

    def _where(self, extra):
        return (self.correlation, *self.criteria, *extra)

    def exists(self, *extra):
        return select(self.value).where(*self._where(extra)).exists()

    def count_distinct(self, *extra):
        return select(func.count(distinct(self.value))).where(*self._where(extra)).scalar_subquery()

    def aggregate(self):
        return select(func.aggregate_strings(self.value, ",")).where(*self._where(())).scalar_subquery()


@dataclass(frozen=True, eq=False)
class ColumnDef:
    name: str
    type: TqDataType
    expr: Any = None
    join: Optional[str] = None
    dictionary_id: Optional[str] = None
    searchable: bool = False
    list_source: Optional[ListSource] = None

    @property
    def select_expr(self):
        if self.list_source is not None:
            return self.list_source.aggregate()
        return self.expr

    @property
    def is_data_column(self) -> bool:
        return self.type != TqDataType.COUNT

    def schema(self) -> Dict[str, Any]:
        if not self.is_data_column:
            return {"name": self.name, "type": "count"}
        data: Dict[str, Any] = {
            "name": self.name,
            "type": self.type.schema_type(),
            "nullable": self.type.is_nullable(),
        }
        if self.dictionary_id:
            data["dictionaryId"] = self.dictionary_id
        return data


@dataclass(frozen=True, eq=False)
class CustomFilterDef:
    """Server-defined filter. ``compile`` turns validated params into a SQL clause."""

    name: str
    associated_column: str
    params_model: Type[BaseModel]
    compile: Callable[[BaseModel], Any]
    joins: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SortSuggestion:
    column: str
    desc: bool = False

    def schema(self) -> Dict[str, str]:
        return {"type": "column", "column": self.column, "dir": "desc" if self.desc else "asc"}


@dataclass(frozen=True)
class TqueryConfig:
    columns: Tuple[ColumnDef, ...] = ()
    joins: Tuple[JoinDef, ...] = ()
    custom_filters: Tuple[CustomFilterDef, ...] = ()
    suggested_columns: Optional[Tuple[str, ...]] = None
    suggested_sort: Tuple[SortSuggestion, ...] = ()

    @property
    def columns_by_name(self) -> Dict[str, ColumnDef]:
        return {column.name: column for column in self.columns}

    @property
    def joins_by_alias(self) -> Dict[str, JoinDef]:
        return {join.alias: join for join in self.joins}

    @property
    def custom_filters_by_name(self) -> Dict[str, CustomFilterDef]:
        return {custom.name: custom for custom in self.custom_filters}

    def searchable_columns(self) -> List[ColumnDef]:
        return [column for column in self.columns if column.searchable]

    def schema(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"columns": [column.schema() for column in self.columns]}
        if self.custom_filters:
            data["customFilters"] = {
                custom.name: {"associatedColumn": custom.associated_column} for custom in self.custom_filters
            }
        if self.suggested_columns is not None:
            data["suggestedColumns"] = list(self.suggested_columns)
        if self.suggested_sort:
            data["suggestedSort"] = [sort.schema() for sort in self.suggested_sort]
        return data


# ===== EXTENSION RECORDS =====


@dataclass(frozen=True)
class AddColumn:
    column: ColumnDef


@dataclass(frozen=True)
class AddJoin:
    join: JoinDef


@dataclass(frozen=True)
class AddJoined:
    """A column read from a joined table alias. Registers the join as well."""

    type: TqDataType
    join: JoinDef
    column: str
    name: str
    dictionary_id: Optional[str] = None
    searchable: bool = False


@dataclass(frozen=True)
class AddCustomFilter:
    custom_filter: CustomFilterDef


@dataclass(frozen=True)
class SuggestColumns:
    names: Tuple[str, ...]


@dataclass(frozen=True)
class SuggestSort:
    sort: Tuple[SortSuggestion, ...]


Extension = Union[AddColumn, AddJoin, AddJoined, AddCustomFilter, SuggestColumns, SuggestSort]


def _add_join(joins: List[JoinDef], join: JoinDef) -> None:
    for existing in joins:
        if existing.alias == join.alias:
            if existing is not join:
                raise TqueryConfigError(f"Conflicting joins for alias {join.alias!r}")
            return
    joins.append(join)


def extend_config(base: TqueryConfig, extensions: Sequence[Extension]) -> TqueryConfig:
    """Return a new config with the extensions applied to the base config."""
    columns = list(base.columns)
    joins = list(base.joins)
    custom_filters = list(base.custom_filters)
    suggested_columns = base.suggested_columns
    suggested_sort = base.suggested_sort

    for extension in extensions:
        if isinstance(extension, AddColumn):
            columns.append(extension.column)
        elif isinstance(extension, AddJoin):
            _add_join(joins, extension.join)
        elif isinstance(extension, AddJoined):
            _add_join(joins, extension.join)
            columns.append(ColumnDef(
                name=extension.name,
                type=extension.type,
                expr=extension.join.target.c[extension.column],
                join=extension.join.alias,
                dictionary_id=extension.dictionary_id,
                searchable=extension.searchable,
            ))
        elif isinstance(extension, AddCustomFilter):
            custom_filters.append(extension.custom_filter)
        elif isinstance(extension, SuggestColumns):
            suggested_columns = tuple(extension.names)
        elif isinstance(extension, SuggestSort):
            suggested_sort = tuple(extension.sort)
        else:
            raise TqueryConfigError(f"Unknown config extension: {extension!r}")

    config = TqueryConfig(
        columns=tuple(columns),
        joins=tuple(joins),
        custom_filters=tuple(custom_filters),
        suggested_columns=suggested_columns,
        suggested_sort=suggested_sort,
    )
    _check_config(config)
    return config


def with_count_column(config: TqueryConfig) -> TqueryConfig:
    """Add the count column, available in distinct requests."""
    if COUNT_COLUMN in config.columns_by_name:
        return config
    return replace(config, columns=config.columns + (ColumnDef(COUNT_COLUMN, TqDataType.COUNT, func.count()),))


def _check_config(config: TqueryConfig) -> None:
    names = set()
    for column in config.columns:
        if column.name in names:
            raise TqueryConfigError(f"Duplicate column name {column.name!r}")
        names.add(column.name)
        if column.join is not None and column.join not in config.joins_by_alias:
            raise TqueryConfigError(f"Column {column.name!r} requires unknown join {column.join!r}")
        if column.type.is_dict() and not column.dictionary_id:
            raise TqueryConfigError(f"Dictionary column {column.name!r} has no dictionary id")
        if column.type.is_list() and column.list_source is None:
            raise TqueryConfigError(f"List column {column.name!r} has no list source")
    aliases = config.joins_by_alias
    for join in config.joins:
        for dependency in join.depends_on:
            if dependency not in aliases:
                raise TqueryConfigError(f"Join {join.alias!r} depends on unknown join {dependency!r}")
    for custom in config.custom_filters:
        if custom.associated_column not in names:
            raise TqueryConfigError(f"Custom filter {custom.name!r} refers to unknown column {custom.associated_column!r}")
    for name in config.suggested_columns or ():
        if name not in names:
            raise TqueryConfigError(f"Suggested column {name!r} does not exist")
    for sort in config.suggested_sort:
        if sort.column not in names:
            raise TqueryConfigError(f"Suggested sort column {sort.column!r} does not exist")
