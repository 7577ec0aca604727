"""
Query execution engine.

TqueryEngine runs a validated request against one entity: it applies the
joins, the select list, the facility scope and the filter, the sort and the
paging to a TqBuilder, executes the data and count queries and shapes the rows
into the client representation of each column type.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import TqueryFatalError
from .builder import TqBuilder
from .request import ConstFilter, TqRequest
from .tables import TqueryTable

logger = logging.getLogger(__name__)


class TqueryEngine:
    """Executes one data request. Create a new engine per request."""

    def __init__(self, table: TqueryTable, facility_id: Optional[str], request: TqRequest,
                 session: Session, debug: bool = False):
        self.table = table
        self.facility_id = facility_id
        self.request = request
        self.session = session
        self.debug = debug
        self.builder = TqBuilder(table.base, table.config.joins_by_alias)

    def run(self) -> Dict[str, Any]:
        self._apply_joins()
        self._apply_select()
        self._apply_filter()
        self._apply_sort()
        self._apply_paging()

        sql = None
        dialect = self.session.get_bind().dialect
        if self.debug:
            sql = self.builder.get_sql(dialect)
            logger.debug(f"Tquery {self.table.name} SQL:\n{sql}")
        try:
            total = self.session.execute(self.builder.get_count()).scalar_one()
            rows = self.session.execute(self.builder.get_query()).mappings().all()
            data = [self._shape_row(row) for row in rows]
        except Exception as e:
            logger.error(f"Tquery {self.table.name} execution failed: {str(e)}")
            raise TqueryFatalError(sql=sql) from e

        response: Dict[str, Any] = {
            "meta": {
                "columns": [{"type": "column", "column": column.name} for column in self.request.select_columns],
                "totalDataSize": total,
            },
            "data": data,
        }
        if self.debug:
            response["sql"] = sql
        return response

    def _apply_joins(self) -> None:
        for join in self.table.config.joins:
            if join.required:
                self.builder.join(join.alias)
        for column in self.request.all_columns():
            if column.join is not None:
                self.builder.join(column.join)
        for alias in self.request.filter.joins():
            self.builder.join(alias)

    def _apply_select(self) -> None:
        for column in self.request.select_columns:
            self.builder.select(column.select_expr, column.name)
            if self.request.distinct and column.is_data_column:
                self.builder.group_by(column.select_expr)

    def _apply_filter(self) -> None:
        for clause in self.table.scope_clauses(self.facility_id):
            self.builder.where(clause)
        request_filter = self.request.filter
        if isinstance(request_filter, ConstFilter) and request_filter.value:
            return
        self.builder.where(request_filter.to_clause())

    def _apply_sort(self) -> None:
        for sort in self.request.sort_columns:
            self.builder.order_by(sort.column.select_expr, sort.desc)

    def _apply_paging(self) -> None:
        self.builder.apply_paging(self.request.offset, self.request.size)

    def _shape_row(self, row) -> Dict[str, Any]:
        return {column.name: column.type.render(row[column.name]) for column in self.request.select_columns}
