"""API router for the tquery endpoints."""

from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.core.dependencies import SessionDep
from app.tquery.schemas import DataRequest, TquerySchema
from app.tquery.service import TqueryService

router = APIRouter(tags=["tquery"])


def get_tquery_service(db: SessionDep) -> TqueryService:
    return TqueryService(db)


# ===== FACILITY ENTITIES =====


@router.get("/facility/{facility_id}/{entity}/tquery", response_model=TquerySchema, response_model_exclude_none=True)
def get_facility_schema(
    facility_id: str, entity: str, service: TqueryService = Depends(get_tquery_service)
) -> Dict[str, Any]:
    """Schema of a facility-scoped entity."""
    return service.get_schema(entity, facility_id)


@router.post("/facility/{facility_id}/{entity}/tquery")
def query_facility_entity(
    facility_id: str, entity: str, request: DataRequest, service: TqueryService = Depends(get_tquery_service)
) -> Dict[str, Any]:
    """Run a data request against a facility-scoped entity."""
    return service.query(entity, facility_id, request)


@router.post("/facility/{facility_id}/{entity}/tquery/export")
def export_facility_entity(
    facility_id: str,
    entity: str,
    request: DataRequest,
    format: Literal["csv", "xlsx"] = "csv",
    service: TqueryService = Depends(get_tquery_service),
) -> Response:
    """Export all rows matching a data request as CSV or XLSX."""
    content, media_type, file_name = service.export(entity, facility_id, request, format)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={file_name}"},
    )


@router.get("/facility/{facility_id}/{entity}/tquery/row/{row_id}")
def get_facility_row(
    facility_id: str, entity: str, row_id: str, service: TqueryService = Depends(get_tquery_service)
) -> Dict[str, Any]:
    """A single row of a facility-scoped entity, with all data columns."""
    return service.get_row(entity, facility_id, row_id)


# ===== ADMIN ENTITIES =====


@router.get("/admin/{entity}/tquery", response_model=TquerySchema, response_model_exclude_none=True)
def get_admin_schema(entity: str, service: TqueryService = Depends(get_tquery_service)) -> Dict[str, Any]:
    """Schema of an unscoped entity (users, logs)."""
    return service.get_schema(entity)


@router.post("/admin/{entity}/tquery")
def query_admin_entity(
    entity: str, request: DataRequest, service: TqueryService = Depends(get_tquery_service)
) -> Dict[str, Any]:
    return service.query(entity, None, request)
