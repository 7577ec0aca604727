# app/tquery/request_builder.py
"""Table request controller.

Keeps the state of a table view (column visibility, global and column
filters, sorting, pagination) and derives the data request from it. Observers
subscribed with ``subscribe`` are notified after every completed state change.

The global filter is debounced: the text typed last becomes part of the
request only after ``debounce_seconds`` of quiet, checked by ``poll`` (or
forced by ``flush``). Responses are matched to requests with fetch tickets so
that a response to an outdated request is never shown.
"""

import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.core.config import TQUERY_DEFAULT_PAGE_SIZE
from .reductor import FilterReductor, Filter


@dataclass(frozen=True)
class SortState:
    column: str
    desc: bool = False


@dataclass(frozen=True)
class PaginationState:
    page_index: int = 0
    page_size: int = TQUERY_DEFAULT_PAGE_SIZE


@dataclass(frozen=True)
class FetchTicket:
    id: int
    request: Dict[str, Any]


class TableRequestController:
    """State of a table view producing data requests."""

    def __init__(
        self,
        intrinsic_filter: Optional[Filter] = None,
        initial_page_size: int = TQUERY_DEFAULT_PAGE_SIZE,
        debounce_seconds: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.intrinsic_filter = intrinsic_filter
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._subscribers: List[Callable[["TableRequestController"], None]] = []

        self.schema: Optional[Dict[str, Any]] = None
        self._reductor: Optional[FilterReductor] = None
        self.initialised = False
        self.column_visibility: Dict[str, bool] = {}
        self.global_filter = ""
        self._debounced_global_filter = ""
        self._global_filter_changed_at: Optional[float] = None
        self.column_filters: Dict[str, Optional[Filter]] = {}
        self.sorting: List[SortState] = []
        self.pagination = PaginationState(0, initial_page_size)

        self._last_ticket_id = 0
        self._in_flight: Optional[int] = None
        self.response: Optional[Dict[str, Any]] = None
        self.last_error: Optional[Exception] = None

    # ----- observers -----

    def subscribe(self, callback: Callable[["TableRequestController"], None]) -> Callable[[], None]:
        """Register an observer. Returns a function removing it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            callback(self)

    # ----- state changes -----

    def set_schema(self, schema: Dict[str, Any]) -> None:
        """Initialise the state from the schema suggestions."""
        self.schema = schema
        self._reductor = FilterReductor(schema)
        names = self._column_names()
        suggested = schema.get("suggestedColumns")
        if suggested is not None:
            self.column_visibility = {name: name in suggested for name in names}
        else:
            self.column_visibility = {name: True for name in names}
        self._ensure_visible({})
        self.column_filters = {name: None for name in names}
        self.sorting = [
            SortState(sort["column"], sort.get("dir") == "desc") for sort in schema.get("suggestedSort") or []
        ]
        self.pagination = PaginationState(0, self.pagination.page_size)
        self.initialised = True
        self._notify()

    def set_column_visibility(self, visibility: Dict[str, bool]) -> None:
        previous = self.column_visibility
        self.column_visibility = {**previous, **visibility}
        self._ensure_visible(previous)
        self._notify()

    def set_global_filter(self, text: str) -> None:
        """Set the global filter text. It reaches the request after the debounce delay."""
        self.global_filter = text
        self._global_filter_changed_at = self._clock()
        self._notify()

    def poll(self) -> bool:
        """Apply the pending global filter if the debounce delay has passed."""
        if self._global_filter_changed_at is None:
            return False
        if self._clock() - self._global_filter_changed_at < self.debounce_seconds:
            return False
        return self.flush()

    def flush(self) -> bool:
        """Apply the pending global filter immediately. Returns whether the request changed."""
        if self._global_filter_changed_at is None:
            return False
        self._global_filter_changed_at = None
        if self.global_filter == self._debounced_global_filter:
            return False
        self._debounced_global_filter = self.global_filter
        self._reset_page()
        self._notify()
        return True

    def set_column_filter(self, column: str, filter: Optional[Filter]) -> None:
        before = self._active_column_filters()
        self.column_filters = {**self.column_filters, column: filter}
        if self._active_column_filters() != before:
            self._reset_page()
        self._notify()

    def set_sorting(self, sorting: List[Tuple[str, bool]]) -> None:
        """Set the sort as a list of (column, desc) pairs."""
        main_sort = self.sorting[0] if self.sorting else None
        self.sorting = [SortState(column, desc) for column, desc in sorting]
        if (self.sorting[0] if self.sorting else None) != main_sort:
            self._reset_page()
        self._notify()

    def set_pagination(self, page_index: Optional[int] = None, page_size: Optional[int] = None) -> None:
        self.pagination = PaginationState(
            self.pagination.page_index if page_index is None else page_index,
            self.pagination.page_size if page_size is None else page_size,
        )
        self._notify()

    # ----- request -----

    def request(self) -> Optional[Dict[str, Any]]:
        """The data request of the current state, or None before the schema is set."""
        if self.schema is None or not self.initialised:
            return None
        columns = [name for name in self._column_names() if self.column_visibility.get(name, True)]
        and_filters: List[Filter] = []
        if self.intrinsic_filter is not None:
            and_filters.append(self.intrinsic_filter)
        if self._debounced_global_filter:
            and_filters.append({"type": "global", "op": "%v%", "val": self._debounced_global_filter})
        and_filters.extend(self._active_column_filters())
        return {
            "columns": [{"type": "column", "column": name} for name in columns],
            "filter": self._reductor.reduce({"type": "op", "op": "&", "val": and_filters}),
            "sort": [
                {"type": "column", "column": sort.column, "dir": "desc" if sort.desc else "asc"}
                for sort in self.sorting
            ],
            "paging": {"size": self.pagination.page_size, "number": self.pagination.page_index + 1},
        }

    # ----- fetching -----

    def begin_fetch(self) -> FetchTicket:
        """Issue a ticket for fetching the current request."""
        request = self.request()
        if request is None:
            raise RuntimeError("The table is not initialised")
        self._last_ticket_id += 1
        self._in_flight = self._last_ticket_id
        return FetchTicket(self._last_ticket_id, request)

    def accept_response(self, ticket: FetchTicket, response: Dict[str, Any]) -> bool:
        """Store the response unless a newer request was issued. Returns whether it was stored."""
        if ticket.id != self._last_ticket_id:
            return False
        self._in_flight = None
        self.response = response
        self.last_error = None
        self._notify()
        return True

    def fail_fetch(self, ticket: FetchTicket, error: Exception) -> bool:
        """Record a failed fetch. The previous response stays available."""
        if ticket.id != self._last_ticket_id:
            return False
        self._in_flight = None
        self.last_error = error
        self._notify()
        return True

    @property
    def is_fetching(self) -> bool:
        return self._in_flight is not None

    def rows_count(self) -> Optional[int]:
        if self.response is None:
            return None
        return self.response["meta"]["totalDataSize"]

    def page_count(self) -> int:
        return math.ceil(max(self.rows_count() or 0, 1) / self.pagination.page_size)

    # ----- helpers -----

    def _column_names(self) -> List[str]:
        return [column["name"] for column in self.schema["columns"] if column.get("type") != "count"]

    def _active_column_filters(self) -> List[Filter]:
        return [filter for filter in self.column_filters.values() if filter]

    def _reset_page(self) -> None:
        self.pagination = PaginationState(0, self.pagination.page_size)

    def _ensure_visible(self, previous: Dict[str, bool]) -> None:
        # At least one column is always visible.
        if any(self.column_visibility.values()):
            return
        if any(previous.values()):
            self.column_visibility = dict(previous)
        else:
            self.column_visibility = {name: True for name in self._column_names()}
