"""
API tests for the tquery endpoints.
Tests schema and data requests over HTTP, error responses, exports and the
request log written by the logging middleware.
"""

import json

import pytest
from fastapi.testclient import TestClient

from app.core.database import SessionLocal
from app.core.exceptions import TqueryFatalError
from app.logging.models import Log
from app.tquery.engine import TqueryEngine


def facility_url(facility_data, entity: str, suffix: str = "") -> str:
    return f"/api/facility/{facility_data.facility_id}/{entity}/tquery{suffix}"


class TestSchemaEndpoints:
    """Schema of facility and admin entities"""

    def test_get_facility_schema(self, client: TestClient, facility_data):
        response = client.get(facility_url(facility_data, "clients"))
        assert response.status_code == 200

        schema = response.json()
        assert {"name": "count", "type": "count"} in schema["columns"]
        assert {"name": "groups", "type": "uuid_list", "nullable": True} in schema["columns"]
        assert schema["suggestedSort"] == [{"type": "column", "column": "name", "dir": "asc"}]
        assert "customFilters" not in schema

    def test_custom_filters_in_schema(self, client: TestClient, facility_data):
        schema = client.get(facility_url(facility_data, "meetings")).json()
        assert schema["customFilters"] == {"isAttendant": {"associatedColumn": "attendants"}}

    def test_get_admin_schema(self, client: TestClient):
        response = client.get("/api/admin/logs/tquery")
        assert response.status_code == 200
        assert response.json()["suggestedSort"] == [{"type": "column", "column": "timestamp", "dir": "desc"}]

    def test_unknown_entity(self, client: TestClient, facility_data):
        response = client.get(facility_url(facility_data, "invoices"))
        assert response.status_code == 404
        assert response.json() == {"detail": "Unknown entity: invoices"}

    def test_unknown_facility(self, client: TestClient, facility_data):
        response = client.get("/api/facility/00000000-0000-4000-8000-000000000000/clients/tquery")
        assert response.status_code == 404

    def test_scoped_entity_on_admin_route(self, client: TestClient, facility_data):
        assert client.get("/api/admin/clients/tquery").status_code == 404


class TestDataEndpoints:
    """Data requests over HTTP"""

    def test_first_page(self, client: TestClient, facility_data):
        response = client.post(facility_url(facility_data, "clients"), json={
            "columns": [{"type": "column", "column": "name"}],
            "filter": "always",
            "sort": [],
            "paging": {"size": 10, "number": 1},
        })
        assert response.status_code == 200

        body = response.json()
        assert len(body["data"]) == 10
        assert body["meta"]["totalDataSize"] == 25
        assert "sql" not in body

    def test_null_cells_are_returned(self, client: TestClient, facility_data):
        response = client.post(facility_url(facility_data, "clients"), json={
            "columns": [{"type": "column", "column": "name"}, {"type": "column", "column": "email"}],
            "sort": [{"type": "column", "column": "name"}],
            "paging": {"size": 2, "number": 1},
        })
        assert response.json()["data"] == [
            {"name": "Client 01", "email": "client01@example.com"},
            {"name": "Client 02", "email": None},
        ]

    def test_admin_query(self, client: TestClient, facility_data):
        response = client.post("/api/admin/users/tquery", json={
            "columns": [{"type": "column", "column": "name"}],
            "filter": {"type": "column", "column": "hasEmail", "op": "=", "val": False},
            "paging": {"size": 50, "number": 1},
        })
        assert response.status_code == 200
        # Bob, the even clients and the clients of the other facility.
        assert response.json()["meta"]["totalDataSize"] == 1 + 12 + 2

    def test_validation_errors(self, client: TestClient, facility_data):
        response = client.post(facility_url(facility_data, "clients"), json={
            "columns": [{"type": "column", "column": "age"}],
            "filter": {"type": "column", "column": "name", "op": "has", "val": "x"},
            "paging": {"size": 10, "number": 1},
        })
        assert response.status_code == 422
        assert [error["field"] for error in response.json()["detail"]] == ["columns.0.column", "filter.op"]

    def test_malformed_body(self, client: TestClient, facility_data):
        response = client.post(facility_url(facility_data, "clients"), json={
            "columns": [{"type": "column", "column": "name"}],
        })
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail[0]["field"] == "body.paging"
        assert set(detail[0]) == {"field", "message", "type"}

    def test_get_row(self, client: TestClient, facility_data):
        response = client.get(facility_url(facility_data, "meetings", f"/row/{facility_data.meetings[0]}"))
        assert response.status_code == 200
        row = response.json()
        assert row["id"] == facility_data.meetings[0]
        assert row["notes"] == "Intake"

    def test_row_of_other_facility(self, client: TestClient, facility_data):
        response = client.get(facility_url(facility_data, "meetings", f"/row/{facility_data.other_meeting_id}"))
        assert response.status_code == 404


class TestErrorResponses:
    """Engine errors are converted by the exception handlers"""

    def test_fatal_error_hides_sql_by_default(self, client: TestClient, facility_data, monkeypatch):
        def failing_run(self):
            raise TqueryFatalError()

        monkeypatch.setattr(TqueryEngine, "run", failing_run)
        response = client.post(facility_url(facility_data, "clients"), json={
            "columns": [{"type": "column", "column": "name"}],
            "paging": {"size": 10, "number": 1},
        })
        assert response.status_code == 500
        assert response.json() == {"detail": "Query engine error"}

    def test_fatal_error_with_sql(self, client: TestClient, facility_data, monkeypatch):
        def failing_run(self):
            raise TqueryFatalError(sql="SELECT 1")

        monkeypatch.setattr(TqueryEngine, "run", failing_run)
        response = client.post(facility_url(facility_data, "clients"), json={
            "columns": [{"type": "column", "column": "name"}],
            "paging": {"size": 10, "number": 1},
        })
        assert response.json() == {"detail": "Query engine error", "sql": "SELECT 1"}

    def test_filter_with_missing_list_is_a_validation_error(self, client: TestClient, facility_data):
        response = client.post(facility_url(facility_data, "clients"), json={
            "columns": [{"type": "column", "column": "name"}],
            "filter": {"type": "column", "column": "groups", "op": "has_any", "val": ""},
            "paging": {"size": 10, "number": 1},
        })
        assert response.status_code == 422
        assert response.json()["detail"] == [
            {"field": "filter.val", "message": "The value must be a non-empty list.", "type": "invalid"},
        ]


class TestExportEndpoint:
    """File downloads"""

    def test_csv(self, client: TestClient, facility_data):
        response = client.post(facility_url(facility_data, "staff", "/export?format=csv"), json={
            "columns": [{"type": "column", "column": "name"}, {"type": "column", "column": "staff.isActive"}],
            "sort": [{"type": "column", "column": "name"}],
            "paging": {"size": 10, "number": 1},
        })
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"] == "attachment; filename=staff.csv"
        assert response.text.splitlines() == [
            "name,staff.isActive", "Anna Staff,yes", "Bob Staff,yes", "Cecil Staff,no",
        ]

    def test_xlsx(self, client: TestClient, facility_data):
        response = client.post(facility_url(facility_data, "clients", "/export?format=xlsx"), json={
            "columns": [{"type": "column", "column": "name"}],
            "paging": {"size": 10, "number": 1},
        })
        assert response.status_code == 200
        assert response.headers["content-disposition"] == "attachment; filename=clients.xlsx"
        assert response.content[:2] == b"PK"

    def test_unknown_format(self, client: TestClient, facility_data):
        response = client.post(facility_url(facility_data, "clients", "/export?format=pdf"), json={
            "columns": [{"type": "column", "column": "name"}],
            "paging": {"size": 10, "number": 1},
        })
        assert response.status_code == 422


class TestRequestLog:
    """Requests are written to the log database once"""

    @pytest.fixture
    def logged(self):
        def rows(facility_id):
            with SessionLocal() as session:
                return session.query(Log).filter(Log.facility_id == facility_id).order_by(Log.id).all()
        return rows

    def test_successful_request_is_logged(self, client: TestClient, facility_data, logged):
        payload = {"columns": [{"type": "column", "column": "name"}], "paging": {"size": 1, "number": 1}}
        client.post(facility_url(facility_data, "clients"), json=payload)

        rows = logged(facility_data.facility_id)
        assert len(rows) == 1
        assert rows[0].method == "POST"
        assert rows[0].entity == "clients"
        assert rows[0].status_code == 200
        assert json.loads(rows[0].request_body) == payload
        assert json.loads(rows[0].response_body)["meta"]["totalDataSize"] == 25
        assert rows[0].processing_time is not None

    def test_error_request_is_logged_once(self, client: TestClient, facility_data, logged):
        client.post(facility_url(facility_data, "clients"), json={
            "columns": [{"type": "column", "column": "age"}],
            "paging": {"size": 1, "number": 1},
        })

        rows = logged(facility_data.facility_id)
        assert len(rows) == 1
        assert rows[0].status_code == 422
        assert rows[0].error_type == "TqueryValidationError"

    def test_export_body_is_not_logged(self, client: TestClient, facility_data, logged):
        client.post(facility_url(facility_data, "clients", "/export?format=xlsx"), json={
            "columns": [{"type": "column", "column": "name"}],
            "paging": {"size": 1, "number": 1},
        })

        rows = logged(facility_data.facility_id)
        assert rows[0].response_body.startswith("[application/vnd.openxmlformats")
