"""
Tquery: the dynamic tabular query engine.

Clients fetch the schema of an entity, then send data requests selecting
columns, filtering, sorting and paging. The engine validates each request
against the schema, compiles it into a single SQL query and returns typed rows.

Main Components:
- TqDataType: column types with their operators, validators and renderers
- TqueryConfig: immutable schema descriptors, composed with extend_config
- FilterReductor: simplification of wire-format filters
- TqueryEngine / TqBuilder: validation, SQL building and execution
- TableRequestController: table view state producing data requests
- build_table: rendering of response data for display and export
"""

from .builder import TqBuilder
from .config import (
    AddColumn,
    AddCustomFilter,
    AddJoin,
    AddJoined,
    ColumnDef,
    CustomFilterDef,
    JoinDef,
    ListSource,
    SortSuggestion,
    SuggestColumns,
    SuggestSort,
    TqueryConfig,
    extend_config,
)
from .data_types import FilterOperator, TqDataType
from .engine import TqueryEngine
from .reductor import FilterReductor, invert_filter
from .request import TqRequest, parse_request
from .request_builder import TableRequestController
from .table import DEFAULT_RENDERERS, RenderedTable, TableColumnConfig, build_table
from .tables import TABLES, TqueryTable

__all__ = [
    # Main classes
    "TqueryEngine",
    "TqBuilder",
    "FilterReductor",
    "TableRequestController",
    # Types
    "TqDataType",
    "FilterOperator",
    # Schema descriptors
    "TqueryConfig",
    "TqueryTable",
    "TABLES",
    "ColumnDef",
    "JoinDef",
    "ListSource",
    "CustomFilterDef",
    "SortSuggestion",
    # Config extensions
    "extend_config",
    "AddColumn",
    "AddJoin",
    "AddJoined",
    "AddCustomFilter",
    "SuggestColumns",
    "SuggestSort",
    # Requests and filters
    "TqRequest",
    "parse_request",
    "invert_filter",
    # Table component
    "TableColumnConfig",
    "RenderedTable",
    "DEFAULT_RENDERERS",
    "build_table",
]
