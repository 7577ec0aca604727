# app/tquery/service.py
"""Service layer of the tquery endpoints."""

import logging
from typing import Any, Dict, Optional, Tuple, Union

from sqlalchemy.orm import Session

from app.core.config import TQUERY_DEBUG, TQUERY_DEV_MODE, TQUERY_EXPORT_MAX_ROWS
from app.core.exceptions import NotFoundError, TqueryValidationError
from app.facility.dictionaries import dictionary_label
from app.facility.models import Facility
from .data_types import UUID_RULE
from .engine import TqueryEngine
from .request import parse_request
from .schemas import DataRequest
from .table import RenderedTable, TableColumnConfig, build_table
from .tables import FACILITY_TABLES, TABLES, TqueryTable

logger = logging.getLogger(__name__)

EXPORT_FORMATS = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


class TqueryService:
    """Runs tquery requests for one database session."""

    def __init__(self, db: Session, debug: bool = TQUERY_DEBUG, dev_mode: bool = TQUERY_DEV_MODE):
        self.db = db
        self.debug = debug
        self.dev_mode = dev_mode

    def get_table(self, entity: str, facility_id: Optional[str]) -> TqueryTable:
        """Resolve the entity, checking that the facility exists for scoped entities."""
        if facility_id is None:
            table = TABLES.get(entity)
            if table is None or table.is_facility_scoped:
                raise NotFoundError(f"Unknown entity: {entity}")
            return table
        table = FACILITY_TABLES.get(entity)
        if table is None:
            raise NotFoundError(f"Unknown entity: {entity}")
        if UUID_RULE.validate(facility_id) or self.db.get(Facility, facility_id) is None:
            raise NotFoundError("Facility not found")
        return table

    def get_schema(self, entity: str, facility_id: Optional[str] = None) -> Dict[str, Any]:
        return self.get_table(entity, facility_id).config.schema()

    def query(self, entity: str, facility_id: Optional[str],
              data_request: Union[DataRequest, Dict[str, Any]]) -> Dict[str, Any]:
        table = self.get_table(entity, facility_id)
        request = parse_request(table.config, data_request)
        return TqueryEngine(table, facility_id, request, self.db, debug=self.debug).run()

    def get_row(self, entity: str, facility_id: Optional[str], row_id: str) -> Dict[str, Any]:
        """A single row with all data columns. Rows outside the scope are not found."""
        table = self.get_table(entity, facility_id)
        if UUID_RULE.validate(row_id):
            raise NotFoundError()
        columns = [column.name for column in table.config.columns if column.is_data_column]
        request = parse_request(table.config, {
            "columns": [{"type": "column", "column": name} for name in columns],
            "filter": {"type": "column", "column": "id", "op": "=", "val": row_id},
            "paging": {"size": 1, "number": 1},
        })
        result = TqueryEngine(table, facility_id, request, self.db, debug=self.debug).run()
        if not result["data"]:
            raise NotFoundError()
        return result["data"][0]

    def export(self, entity: str, facility_id: Optional[str],
               data_request: Union[DataRequest, Dict[str, Any]], format: str) -> Tuple[bytes, str, str]:
        """Render all rows matching the request as a CSV or XLSX file.

        Returns the file content, its media type and a file name.
        """
        if format not in EXPORT_FORMATS:
            raise TqueryValidationError.single("format", f"Unknown export format: {format}")
        table = self.get_table(entity, facility_id)
        if isinstance(data_request, DataRequest):
            payload = data_request.model_dump(exclude_none=True)
        else:
            payload = dict(data_request)
        columns = [column["column"] for column in payload.get("columns", [])]
        if self.dev_mode:
            payload["columns"] = payload.get("columns", []) + [
                {"type": "column", "column": column.name}
                for column in table.config.columns
                if column.is_data_column and column.name not in columns
                and not (payload.get("distinct") and column.type.is_list())
            ]
        payload["paging"] = {"size": TQUERY_EXPORT_MAX_ROWS, "number": 1}
        request = parse_request(table.config, payload, max_page_size=TQUERY_EXPORT_MAX_ROWS)
        result = TqueryEngine(table, facility_id, request, self.db, debug=self.debug).run()
        if result["meta"]["totalDataSize"] > TQUERY_EXPORT_MAX_ROWS:
            logger.warning(
                f"Export of {entity} truncated to {TQUERY_EXPORT_MAX_ROWS} of {result['meta']['totalDataSize']} rows"
            )

        rendered = build_table(
            table.config.schema(),
            result["data"],
            [TableColumnConfig(name) for name in columns],
            dev_mode=self.dev_mode,
            dictionary_labels=dictionary_label,
        )
        return self._encode(rendered, format), EXPORT_FORMATS[format], f"{entity}.{format}"

    def _encode(self, rendered: RenderedTable, format: str) -> bytes:
        if format == "xlsx":
            return rendered.to_xlsx(sheet_name="Data")
        return rendered.to_csv()
