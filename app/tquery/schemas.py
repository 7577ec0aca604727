"""Pydantic schemas of the tquery HTTP interface."""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RequestColumn(BaseModel):
    """A selected column."""

    type: Literal["column"] = "column"
    column: str

    model_config = ConfigDict(extra="forbid")


class RequestSortItem(BaseModel):
    """A sort entry. ``dir`` is the current form, ``desc`` the legacy one."""

    type: Literal["column"] = "column"
    column: str
    dir: Optional[Literal["asc", "desc"]] = None
    desc: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")

    @property
    def is_desc(self) -> bool:
        if self.dir is not None:
            return self.dir == "desc"
        return bool(self.desc)


class Paging(BaseModel):
    """Page size with either a 1-based page number or a row offset."""

    size: int
    number: Optional[int] = None
    offset: Optional[int] = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def validate_position(self):
        if self.number is not None and self.offset is not None:
            raise ValueError("Only one of number and offset can be specified")
        return self

    def get_offset(self) -> int:
        if self.number is not None:
            return (self.number - 1) * self.size
        return self.offset or 0


class DataRequest(BaseModel):
    """A data request. The filter is validated against the entity schema later."""

    columns: List[RequestColumn] = Field(min_length=1)
    filter: Union[str, Dict[str, Any]] = "always"
    sort: List[RequestSortItem] = []
    paging: Paging
    distinct: bool = False

    model_config = ConfigDict(extra="forbid")


# ===== RESPONSE SCHEMAS =====


class ColumnSchema(BaseModel):
    name: str
    type: str
    nullable: Optional[bool] = None
    dictionaryId: Optional[str] = None


class CustomFilterSchema(BaseModel):
    associatedColumn: str


class SortSchema(BaseModel):
    type: Literal["column"] = "column"
    column: str
    dir: Literal["asc", "desc"]


class TquerySchema(BaseModel):
    """Exported schema of an entity."""

    columns: List[ColumnSchema]
    customFilters: Optional[Dict[str, CustomFilterSchema]] = None
    suggestedColumns: Optional[List[str]] = None
    suggestedSort: Optional[List[SortSchema]] = None

