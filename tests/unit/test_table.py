"""
Unit tests for the generic table component.
Tests default cell renderers, column configuration and file export.
"""

import io

import pandas as pd
import pytest

from app.core.exceptions import TqueryConfigError
from app.facility.dictionaries import CLIENT_TYPE_CHILD, DICT_CLIENT_TYPE, dictionary_label
from app.tquery.table import CellContext, TableColumnConfig, build_table, render_cell

UUID_A = "0b9d8f0e-5a5e-4c3b-9a0e-2f8b5c1d7e6a"
UUID_B = "9f1c2d3e-0000-4000-8000-000000000001"

SCHEMA = {
    "columns": [
        {"name": "id", "type": "uuid", "nullable": False},
        {"name": "name", "type": "string", "nullable": False},
        {"name": "active", "type": "bool", "nullable": False},
        {"name": "birthDate", "type": "date", "nullable": True},
        {"name": "createdAt", "type": "datetime", "nullable": False},
        {"name": "typeDictId", "type": "dict", "nullable": True, "dictionaryId": DICT_CLIENT_TYPE},
        {"name": "groups", "type": "uuid_list", "nullable": True},
        {"name": "count", "type": "count"},
    ]
}

ROWS = [
    {
        "id": UUID_A, "name": "Client 01", "active": True, "birthDate": "1990-01-01",
        "createdAt": "2024-02-01T10:05:00Z", "typeDictId": CLIENT_TYPE_CHILD, "groups": [UUID_A, UUID_B],
    },
    {
        "id": UUID_B, "name": "Client 02", "active": False, "birthDate": None,
        "createdAt": "2024-02-02T08:00:00Z", "typeDictId": None, "groups": [],
    },
]


def ctx(column_name, **kwargs):
    column = next(c for c in SCHEMA["columns"] if c["name"] == column_name)
    return CellContext(row={}, column=column, **kwargs)


class TestRenderCell:
    """Default renderers per column type"""

    def test_empty_values(self):
        assert render_cell(None, ctx("name")) == ""
        assert render_cell([], ctx("groups")) == ""

    def test_bool(self):
        assert render_cell(True, ctx("active")) == "yes"
        assert render_cell(False, ctx("active")) == "no"

    def test_dates(self):
        assert render_cell("1990-01-31", ctx("birthDate")) == "31.01.1990"
        assert render_cell("2024-02-01T10:05:00Z", ctx("createdAt")) == "01.02.2024 10:05"
        assert render_cell("1990-01-31", ctx("birthDate", date_format="%Y/%m/%d")) == "1990/01/31"

    def test_uuids_are_shortened(self):
        assert render_cell(UUID_A, ctx("id")) == "0b9d8f0e…"
        assert render_cell([UUID_A, UUID_B], ctx("groups")) == "0b9d8f0e…, 9f1c2d3e…"

    def test_dictionary_labels(self):
        assert render_cell(CLIENT_TYPE_CHILD, ctx("typeDictId", dictionary_labels=dictionary_label)) == "Child"
        # Without a label source the position id is shown.
        assert render_cell(CLIENT_TYPE_CHILD, ctx("typeDictId")) == CLIENT_TYPE_CHILD

    def test_custom_renderer(self):
        assert render_cell("Anna", ctx("name"), lambda value, c: value.upper()) == "ANNA"


class TestBuildTable:
    """Column configuration and dev mode"""

    def test_configured_columns_in_order(self):
        table = build_table(SCHEMA, ROWS, [
            TableColumnConfig("name", header="Name"),
            TableColumnConfig("active", header="Active"),
        ])
        assert table.headers == ["Name", "Active"]
        assert table.rows == [["Client 01", "yes"], ["Client 02", "no"]]
        assert table.initial_visibility == {"name": True, "active": True}

    def test_unknown_column_raises(self):
        with pytest.raises(TqueryConfigError):
            build_table(SCHEMA, ROWS, [TableColumnConfig("age")])

    def test_dev_mode_appends_hidden_columns(self):
        table = build_table(SCHEMA, ROWS, [TableColumnConfig("name")], dev_mode=True)
        assert table.columns == ["name", "id", "active", "birthDate", "createdAt", "typeDictId", "groups"]
        assert table.initial_visibility["name"] is True
        assert table.initial_visibility["groups"] is False
        assert table.rows[1][3] == ""

    def test_missing_values_in_row(self):
        table = build_table(SCHEMA, [{"name": "Client 03"}], [TableColumnConfig("name"), TableColumnConfig("id")])
        assert table.rows == [["Client 03", ""]]


class TestExport:
    """CSV and XLSX files"""

    @pytest.fixture
    def table(self):
        return build_table(SCHEMA, ROWS, [TableColumnConfig("name"), TableColumnConfig("birthDate", "Birth date")])

    def test_csv(self, table):
        lines = table.to_csv().decode("utf-8").splitlines()
        assert lines == ["name,Birth date", "Client 01,01.01.1990", "Client 02,"]

    def test_xlsx(self, table):
        frame = pd.read_excel(io.BytesIO(table.to_xlsx()), sheet_name="Data", dtype=str)
        assert list(frame.columns) == ["name", "Birth date"]
        assert frame["name"].tolist() == ["Client 01", "Client 02"]
