"""
Unit tests for the table request controller.
Tests how the view state is turned into data requests: initialisation from
the schema, debouncing of the global filter, pagination resets and matching
of responses to requests.
"""

import pytest

from app.tquery.request_builder import TableRequestController


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def controller(clients_schema, clock):
    controller = TableRequestController(initial_page_size=10, debounce_seconds=0.5, clock=clock)
    controller.set_schema(clients_schema)
    return controller


def response(total):
    return {"meta": {"columns": [], "totalDataSize": total}, "data": []}


class TestInitialisation:
    """State derived from the schema suggestions"""

    def test_no_request_before_schema(self):
        controller = TableRequestController()
        assert controller.request() is None
        with pytest.raises(RuntimeError):
            controller.begin_fetch()

    def test_initial_request(self, controller):
        assert controller.request() == {
            "columns": [
                {"type": "column", "column": "name"},
                {"type": "column", "column": "client.shortCode"},
                {"type": "column", "column": "client.birthDate"},
                {"type": "column", "column": "client.typeDictId"},
            ],
            "filter": "always",
            "sort": [{"type": "column", "column": "name", "dir": "asc"}],
            "paging": {"size": 10, "number": 1},
        }

    def test_all_columns_visible_without_suggestions(self, clock):
        controller = TableRequestController(clock=clock)
        controller.set_schema({"columns": [
            {"name": "name", "type": "string", "nullable": False},
            {"name": "count", "type": "count"},
        ]})
        assert controller.request()["columns"] == [{"type": "column", "column": "name"}]
        assert controller.request()["sort"] == []

    def test_intrinsic_filter_is_always_applied(self, clients_schema, clock):
        intrinsic = {"type": "column", "column": "client.shortCode", "op": "null", "inv": True}
        controller = TableRequestController(intrinsic_filter=intrinsic, clock=clock)
        controller.set_schema(clients_schema)
        assert controller.request()["filter"] == intrinsic
        controller.set_column_filter("name", {"type": "column", "column": "name", "op": "v%", "val": "A"})
        assert controller.request()["filter"] == {"type": "op", "op": "&", "val": [
            intrinsic,
            {"type": "column", "column": "name", "op": "v%", "val": "A"},
        ]}


class TestGlobalFilter:
    """Debounced free-text search"""

    def test_filter_applied_after_quiet_period(self, controller, clock):
        controller.set_global_filter("anna")
        assert controller.request()["filter"] == "always"
        clock.advance(0.3)
        assert controller.poll() is False
        clock.advance(0.3)
        assert controller.poll() is True
        assert controller.request()["filter"] == {"type": "global", "op": "%v%", "val": "anna"}

    def test_typing_restarts_the_delay(self, controller, clock):
        controller.set_global_filter("an")
        clock.advance(0.4)
        controller.set_global_filter("anna")
        clock.advance(0.4)
        assert controller.poll() is False
        clock.advance(0.2)
        assert controller.poll() is True
        assert controller.request()["filter"]["val"] == "anna"

    def test_debounced_change_resets_page(self, controller, clock):
        controller.set_pagination(page_index=3)
        controller.set_global_filter("anna")
        assert controller.pagination.page_index == 3
        assert controller.flush() is True
        assert controller.request()["paging"]["number"] == 1

    def test_blank_filter_reduces_to_always(self, controller):
        controller.set_global_filter("   ")
        controller.flush()
        assert controller.request()["filter"] == "always"

    def test_unchanged_text_does_not_reset_page(self, controller):
        controller.set_global_filter("anna")
        controller.flush()
        controller.set_pagination(page_index=2)
        controller.set_global_filter("anna")
        assert controller.flush() is False
        assert controller.pagination.page_index == 2


class TestColumnFiltersAndSorting:
    """Pagination reset on filter and sort changes"""

    def test_column_filter_is_reduced(self, controller):
        controller.set_column_filter("client.shortCode", {
            "type": "column", "column": "client.shortCode", "op": "=", "val": "",
        })
        assert controller.request()["filter"] == {"type": "column", "column": "client.shortCode", "op": "null"}

    def test_column_filter_change_resets_page(self, controller):
        controller.set_pagination(page_index=2)
        name_filter = {"type": "column", "column": "name", "op": "%v%", "val": "Client"}
        controller.set_column_filter("name", name_filter)
        assert controller.pagination.page_index == 0
        controller.set_pagination(page_index=2)
        controller.set_column_filter("name", dict(name_filter))
        assert controller.pagination.page_index == 2
        controller.set_column_filter("name", None)
        assert controller.pagination.page_index == 0
        assert controller.request()["filter"] == "always"

    def test_main_sort_change_resets_page(self, controller):
        controller.set_pagination(page_index=2)
        controller.set_sorting([("name", False), ("client.birthDate", True)])
        assert controller.pagination.page_index == 2
        controller.set_sorting([("client.birthDate", True)])
        assert controller.pagination.page_index == 0
        assert controller.request()["sort"] == [{"type": "column", "column": "client.birthDate", "dir": "desc"}]

    def test_page_size(self, controller):
        controller.set_pagination(page_index=1, page_size=25)
        assert controller.request()["paging"] == {"size": 25, "number": 2}


class TestColumnVisibility:

    def test_hidden_columns_are_not_requested(self, controller):
        controller.set_column_visibility({"client.shortCode": False, "email": True})
        names = [column["column"] for column in controller.request()["columns"]]
        assert names == ["name", "email", "client.birthDate", "client.typeDictId"]

    def test_at_least_one_column_stays_visible(self, controller):
        before = dict(controller.column_visibility)
        controller.set_column_visibility({name: False for name in before})
        assert controller.column_visibility == before


class TestObserversAndFetching:
    """Notifications and last-request-wins response handling"""

    def test_subscribers_are_notified(self, controller):
        calls = []
        unsubscribe = controller.subscribe(lambda c: calls.append(c.request()["paging"]["number"]))
        controller.set_pagination(page_index=4)
        unsubscribe()
        controller.set_pagination(page_index=5)
        assert calls == [5]

    def test_outdated_response_is_ignored(self, controller):
        first = controller.begin_fetch()
        controller.set_pagination(page_index=1)
        second = controller.begin_fetch()
        assert second.request["paging"]["number"] == 2
        assert controller.is_fetching
        assert controller.accept_response(first, response(99)) is False
        assert controller.accept_response(second, response(25)) is True
        assert not controller.is_fetching
        assert controller.rows_count() == 25
        assert controller.page_count() == 3

    def test_failed_fetch_keeps_previous_data(self, controller):
        ticket = controller.begin_fetch()
        controller.accept_response(ticket, response(7))
        ticket = controller.begin_fetch()
        error = RuntimeError("network")
        assert controller.fail_fetch(ticket, error) is True
        assert controller.last_error is error
        assert controller.rows_count() == 7

    def test_page_count_without_rows(self, controller):
        assert controller.page_count() == 1
        controller.accept_response(controller.begin_fetch(), response(0))
        assert controller.page_count() == 1
