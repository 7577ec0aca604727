# app/tquery/table.py
"""Generic table component: column configuration and cell rendering.

Turns the schema of an entity and the ``data`` of a response into rendered
headers and rows. Each column type has a default renderer, a column config can
override it. The export endpoint writes the result as CSV or XLSX.
"""

import io
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd

from app.core.exceptions import TqueryConfigError


@dataclass
class CellContext:
    """What a renderer knows about the cell besides its value."""

    row: Dict[str, Any]
    column: Dict[str, Any]
    dictionary_labels: Optional[Callable[[str, str], Optional[str]]] = None
    date_format: str = "%d.%m.%Y"
    datetime_format: str = "%d.%m.%Y %H:%M"

    def dictionary_label(self, position_id: str) -> str:
        dictionary_id = self.column.get("dictionaryId")
        if self.dictionary_labels is not None and dictionary_id:
            label = self.dictionary_labels(dictionary_id, position_id)
            if label is not None:
                return label
        return position_id


Renderer = Callable[[Any, CellContext], str]


@dataclass
class TableColumnConfig:
    name: str
    header: Optional[str] = None
    renderer: Optional[Renderer] = None
    initial_visible: bool = True


@dataclass
class RenderedTable:
    headers: List[str]
    columns: List[str]
    rows: List[List[str]] = field(default_factory=list)
    initial_visibility: Dict[str, bool] = field(default_factory=dict)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows, columns=self.headers)

    def to_csv(self) -> bytes:
        return self.to_dataframe().to_csv(index=False).encode("utf-8")

    def to_xlsx(self, sheet_name: str = "Data") -> bytes:
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            self.to_dataframe().to_excel(writer, sheet_name=sheet_name, index=False)
        return buffer.getvalue()


# ===== DEFAULT RENDERERS =====


def _short_uuid(value: str) -> str:
    return value[:8] + "…"


def _render_bool(value, ctx: CellContext) -> str:
    return "yes" if value else "no"


def _render_date(value, ctx: CellContext) -> str:
    if isinstance(value, str):
        value = date.fromisoformat(value)
    return value.strftime(ctx.date_format)


def _render_datetime(value, ctx: CellContext) -> str:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value.strftime(ctx.datetime_format)


def _render_uuid(value, ctx: CellContext) -> str:
    return _short_uuid(str(value))


def _render_uuid_list(value, ctx: CellContext) -> str:
    return ", ".join(_short_uuid(str(v)) for v in value)


def _render_dict(value, ctx: CellContext) -> str:
    return ctx.dictionary_label(str(value))


def _render_dict_list(value, ctx: CellContext) -> str:
    return ", ".join(ctx.dictionary_label(str(v)) for v in value)


def _render_json(value, ctx: CellContext) -> str:
    return json.dumps(value, ensure_ascii=False)


def _render_str(value, ctx: CellContext) -> str:
    return str(value)


DEFAULT_RENDERERS: Dict[str, Renderer] = {
    "bool": _render_bool,
    "date": _render_date,
    "datetime": _render_datetime,
    "int": _render_str,
    "count": _render_str,
    "string": _render_str,
    "text": _render_str,
    "uuid": _render_uuid,
    "dict": _render_dict,
    "uuid_list": _render_uuid_list,
    "dict_list": _render_dict_list,
    "list": _render_json,
    "object": _render_json,
}


def render_cell(value: Any, ctx: CellContext, renderer: Optional[Renderer] = None) -> str:
    if renderer is not None:
        return renderer(value, ctx)
    if value is None or (isinstance(value, list) and not value and ctx.column.get("type") != "list"):
        return ""
    return DEFAULT_RENDERERS.get(ctx.column.get("type"), _render_str)(value, ctx)


def build_table(
    schema: Dict[str, Any],
    data: Sequence[Dict[str, Any]],
    columns: Sequence[TableColumnConfig],
    dev_mode: bool = False,
    dictionary_labels: Optional[Callable[[str, str], Optional[str]]] = None,
    date_format: str = "%d.%m.%Y",
    datetime_format: str = "%d.%m.%Y %H:%M",
) -> RenderedTable:
    """Render the response data as a table.

    Only the configured columns are shown, in the configured order. In dev
    mode the remaining data columns of the schema are appended, hidden
    initially, with their raw names as headers. A configured column that is
    not in the schema is a configuration error.
    """
    schema_columns = {column["name"]: column for column in schema.get("columns", [])}
    configs: List[TableColumnConfig] = []
    for config in columns:
        if config.name not in schema_columns:
            raise TqueryConfigError(f"Table column {config.name!r} is not in the schema")
        configs.append(config)
    if dev_mode:
        configured = {config.name for config in configs}
        for name, column in schema_columns.items():
            if name not in configured and column.get("type") != "count":
                configs.append(TableColumnConfig(name, initial_visible=False))

    rows: List[List[str]] = []
    for row in data:
        cells = []
        for config in configs:
            ctx = CellContext(
                row=row,
                column=schema_columns[config.name],
                dictionary_labels=dictionary_labels,
                date_format=date_format,
                datetime_format=datetime_format,
            )
            cells.append(render_cell(row.get(config.name), ctx, config.renderer))
        rows.append(cells)

    return RenderedTable(
        headers=[config.header or config.name for config in configs],
        columns=[config.name for config in configs],
        rows=rows,
        initial_visibility={config.name: config.initial_visible for config in configs},
    )
