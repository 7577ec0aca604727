"""
SQL builder of the query engine.

TqBuilder assembles one SELECT statement from the base table of an entity, the
joins needed to reach the requested columns, the select list, the WHERE
clauses, ordering and paging. The same builder produces the data query, the
count query and the SQL text shown in debug mode.
"""

import logging
from typing import Any, Dict, List, Optional

import sqlparse
from sqlalchemy import func, select
from sqlalchemy.engine import Dialect
from sqlalchemy.sql import Select

from app.core.exceptions import TqueryConfigError
from .config import JoinDef

logger = logging.getLogger(__name__)


class TqBuilder:
    """Builds the SELECT statement of a data request."""

    def __init__(self, base: Any, joins: Dict[str, JoinDef]):
        self._from = base
        self._joins = joins
        self._joined: List[str] = []
        self._columns: List[Any] = []
        self._where: List[Any] = []
        self._order_by: List[Any] = []
        self._group_by: List[Any] = []
        self._offset: Optional[int] = None
        self._limit: Optional[int] = None

    @property
    def joined(self) -> List[str]:
        """Aliases joined so far, in join order."""
        return list(self._joined)

    def join(self, alias: str) -> "TqBuilder":
        """Join the alias and its dependencies. Joining an alias twice is a no-op."""
        self._join(alias, ())
        return self

    def _join(self, alias: str, path) -> None:
        if alias in self._joined:
            return
        if alias in path:
            raise TqueryConfigError(f"Circular join dependency: {' -> '.join(path + (alias,))}")
        join = self._joins.get(alias)
        if join is None:
            raise TqueryConfigError(f"Unknown join {alias!r}")
        for dependency in join.depends_on:
            self._join(dependency, path + (alias,))
        self._from = self._from.join(join.target, join.on, isouter=join.left)
        self._joined.append(alias)

    def select(self, expr: Any, alias: str) -> "TqBuilder":
        self._columns.append(expr.label(alias))
        return self

    def where(self, clause: Any) -> "TqBuilder":
        self._where.append(clause)
        return self

    def order_by(self, expr: Any, desc: bool = False) -> "TqBuilder":
        self._order_by.append(expr.desc() if desc else expr.asc())
        return self

    def group_by(self, expr: Any) -> "TqBuilder":
        self._group_by.append(expr)
        return self

    def apply_paging(self, offset: int, limit: int) -> "TqBuilder":
        self._offset = offset
        self._limit = limit
        return self

    def _filtered(self, columns) -> Select:
        query = select(*columns).select_from(self._from)
        if self._where:
            query = query.where(*self._where)
        return query

    def get_query(self) -> Select:
        """The data query, with ordering and paging."""
        query = self._filtered(self._columns)
        if self._group_by:
            query = query.group_by(*self._group_by)
        if self._order_by:
            query = query.order_by(*self._order_by)
        if self._limit is not None:
            query = query.limit(self._limit)
        if self._offset:
            query = query.offset(self._offset)
        return query

    def get_count(self) -> Select:
        """Count of all rows matching the filter, ignoring ordering and paging."""
        if self._group_by:
            grouped = self._filtered(self._columns).group_by(*self._group_by).subquery("grouped")
            return select(func.count()).select_from(grouped)
        return self._filtered([func.count()])

    def get_sql(self, dialect: Dialect, reindent: bool = True) -> str:
        """Compile the data query to SQL text."""
        query = self.get_query()
        try:
            sql = str(query.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))
        except Exception as e:
            # Some bind types cannot be rendered inline.
            logger.debug(f"Rendering SQL with bound parameters: {e}")
            sql = str(query.compile(dialect=dialect))
        if reindent:
            return sqlparse.format(sql, reindent=True, keyword_case="upper")
        return sql
