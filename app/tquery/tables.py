# app/tquery/tables.py
"""Queryable entity kinds and their schema descriptors.

Each entity is a base table, the facility scope restricting its rows and an
immutable ``TqueryConfig`` built once at import time. Variants are built by
extending the config of another entity, e.g. ``meeting_attendants`` extends
``meetings`` with the joined attendant columns.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import and_, select

from app.facility.dictionaries import (
    ATTENDANCE_TYPE_CLIENT,
    ATTENDANCE_TYPE_STAFF,
    DICT_ATTENDANCE_STATUS,
    DICT_ATTENDANCE_TYPE,
    DICT_CLIENT_TYPE,
    DICT_MEETING_CATEGORY,
    DICT_MEETING_STATUS,
    DICT_MEETING_TYPE,
)
from app.facility.models import (
    Client,
    ClientGroupMember,
    Meeting,
    MeetingAttendant,
    Member,
    StaffMember,
    User,
)
from app.logging.models import Log
from .config import (
    AddColumn,
    AddCustomFilter,
    AddJoined,
    ColumnDef,
    CustomFilterDef,
    JoinDef,
    ListSource,
    SortSuggestion,
    SuggestColumns,
    SuggestSort,
    TqueryConfig,
    extend_config,
    with_count_column,
)
from .data_types import TqDataType as T

# Table aliases
users = User.__table__.alias("users")
members = Member.__table__.alias("members")
staff_members = StaffMember.__table__.alias("staff_members")
clients = Client.__table__.alias("clients")
meetings = Meeting.__table__.alias("meetings")
meeting_attendants = MeetingAttendant.__table__.alias("meeting_attendants")
attendant = User.__table__.alias("attendant")
created_by = User.__table__.alias("created_by")
client_attendants = MeetingAttendant.__table__.alias("client_attendants")
client_user = User.__table__.alias("client_user")

# Aliases used only inside correlated subqueries
_member_facilities = Member.__table__.alias("member_facilities")
_group_members = ClientGroupMember.__table__.alias("group_members")
_list_attendants = MeetingAttendant.__table__.alias("list_attendants")


@dataclass(frozen=True)
class TqueryTable:
    """A queryable entity kind.

    ``scope`` returns the clauses limiting the rows to one facility. Unscoped
    entities (global administration) take no facility id.
    """

    name: str
    base: Any
    config: TqueryConfig
    scope: Optional[Callable[[str], List[Any]]] = None

    @property
    def is_facility_scoped(self) -> bool:
        return self.scope is not None

    def scope_clauses(self, facility_id: Optional[str]) -> List[Any]:
        if self.scope is None:
            return []
        return self.scope(facility_id)


# ===== USERS =====

_USER_COLUMNS = (
    AddColumn(ColumnDef("id", T.UUID, users.c.id)),
    AddColumn(ColumnDef("name", T.STRING, users.c.name, searchable=True)),
    AddColumn(ColumnDef("email", T.STRING_NULLABLE, users.c.email, searchable=True)),
    AddColumn(ColumnDef("hasEmail", T.IS_NOT_NULL, users.c.email.is_not(None))),
    AddColumn(ColumnDef("createdAt", T.DATETIME, users.c.created_at)),
    AddColumn(ColumnDef("updatedAt", T.DATETIME, users.c.updated_at)),
)

ADMIN_USERS_CONFIG = with_count_column(extend_config(TqueryConfig(), _USER_COLUMNS + (
    AddColumn(ColumnDef("isGlobalAdmin", T.BOOL, users.c.is_global_admin)),
    AddColumn(ColumnDef("lastLoginSuccessAt", T.DATETIME_NULLABLE, users.c.last_login_success_at)),
    AddColumn(ColumnDef(
        "facilities", T.UUID_LIST,
        list_source=ListSource(_member_facilities.c.facility_id, _member_facilities.c.user_id == users.c.id),
    )),
    SuggestColumns(("name", "email", "isGlobalAdmin", "lastLoginSuccessAt")),
    SuggestSort((SortSuggestion("name"),)),
)))

MEMBERS_JOIN = JoinDef("members", members, members.c.user_id == users.c.id, required=True)

_FACILITY_USER_CONFIG = extend_config(TqueryConfig(), _USER_COLUMNS + (
    AddJoined(T.BOOL, MEMBERS_JOIN, "has_facility_admin", "member.hasFacilityAdmin"),
))


def _member_scope(facility_id: str) -> List[Any]:
    return [members.c.facility_id == facility_id]


# ===== STAFF =====

STAFF_JOIN = JoinDef(
    "staff_members", staff_members, staff_members.c.id == members.c.staff_member_id,
    depends_on=("members",), required=True,
)

STAFF_CONFIG = with_count_column(extend_config(_FACILITY_USER_CONFIG, (
    AddJoined(T.DATETIME_NULLABLE, STAFF_JOIN, "deactivated_at", "staff.deactivatedAt"),
    AddColumn(ColumnDef(
        "staff.isActive", T.IS_NULL, staff_members.c.deactivated_at.is_(None), join="staff_members",
    )),
    SuggestColumns(("name", "email", "staff.isActive", "member.hasFacilityAdmin")),
    SuggestSort((SortSuggestion("name"),)),
)))


# ===== CLIENTS =====

CLIENT_JOIN = JoinDef(
    "clients", clients, clients.c.id == members.c.client_id,
    depends_on=("members",), required=True,
)

CLIENTS_CONFIG = with_count_column(extend_config(_FACILITY_USER_CONFIG, (
    AddJoined(T.STRING_NULLABLE, CLIENT_JOIN, "short_code", "client.shortCode", searchable=True),
    AddJoined(T.DATE_NULLABLE, CLIENT_JOIN, "birth_date", "client.birthDate"),
    AddJoined(T.DICT_NULLABLE, CLIENT_JOIN, "type_dict_id", "client.typeDictId", dictionary_id=DICT_CLIENT_TYPE),
    AddJoined(T.TEXT_NULLABLE, CLIENT_JOIN, "notes", "client.notes", searchable=True),
    AddColumn(ColumnDef(
        "groups", T.UUID_LIST,
        list_source=ListSource(_group_members.c.client_group_id, _group_members.c.user_id == users.c.id),
    )),
    SuggestColumns(("name", "client.shortCode", "client.birthDate", "client.typeDictId")),
    SuggestSort((SortSuggestion("name"),)),
)))


# ===== MEETINGS =====


def _attendants_source(*criteria) -> ListSource:
    return ListSource(
        _list_attendants.c.user_id,
        _list_attendants.c.meeting_id == meetings.c.id,
        criteria,
    )


class IsAttendantParams(BaseModel):
    """Params of the custom filter matching meetings attended by any of the users."""

    model_config = ConfigDict(extra="forbid")

    userIds: List[str] = Field(min_length=1)
    attendanceTypeDictId: Optional[str] = None


def _compile_is_attendant(params: IsAttendantParams):
    criteria = [_list_attendants.c.user_id.in_(params.userIds)]
    if params.attendanceTypeDictId is not None:
        criteria.append(_list_attendants.c.attendance_type_dict_id == params.attendanceTypeDictId)
    return select(_list_attendants.c.id).where(_list_attendants.c.meeting_id == meetings.c.id, *criteria).exists()


CREATED_BY_JOIN = JoinDef("created_by", created_by, created_by.c.id == meetings.c.created_by_id)

_MEETINGS_BASE_CONFIG = extend_config(TqueryConfig(), (
    AddColumn(ColumnDef("id", T.UUID, meetings.c.id)),
    AddColumn(ColumnDef("date", T.DATE, meetings.c.date)),
    AddColumn(ColumnDef("startDayminute", T.INT, meetings.c.start_dayminute)),
    AddColumn(ColumnDef("durationMinutes", T.INT, meetings.c.duration_minutes)),
    AddColumn(ColumnDef("statusDictId", T.DICT, meetings.c.status_dict_id, dictionary_id=DICT_MEETING_STATUS)),
    AddColumn(ColumnDef("categoryDictId", T.DICT, meetings.c.category_dict_id, dictionary_id=DICT_MEETING_CATEGORY)),
    AddColumn(ColumnDef("typeDictId", T.DICT, meetings.c.type_dict_id, dictionary_id=DICT_MEETING_TYPE)),
    AddColumn(ColumnDef("isRemote", T.BOOL, meetings.c.is_remote)),
    AddColumn(ColumnDef("notes", T.TEXT_NULLABLE, meetings.c.notes, searchable=True)),
    AddColumn(ColumnDef("interval", T.STRING_NULLABLE, meetings.c.interval)),
    AddColumn(ColumnDef("fromMeetingId", T.UUID_NULLABLE, meetings.c.from_meeting_id)),
    AddColumn(ColumnDef("isClone", T.IS_NOT_NULL, meetings.c.from_meeting_id.is_not(None))),
    AddColumn(ColumnDef("createdAt", T.DATETIME, meetings.c.created_at)),
    AddJoined(T.UUID, CREATED_BY_JOIN, "id", "createdBy.id"),
    AddJoined(T.STRING, CREATED_BY_JOIN, "name", "createdBy.name", searchable=True),
    AddColumn(ColumnDef("updatedAt", T.DATETIME, meetings.c.updated_at)),
    AddColumn(ColumnDef("attendants", T.UUID_LIST, list_source=_attendants_source())),
    AddColumn(ColumnDef("staff", T.UUID_LIST, list_source=_attendants_source(
        _list_attendants.c.attendance_type_dict_id == ATTENDANCE_TYPE_STAFF,
    ))),
    AddColumn(ColumnDef("clients", T.UUID_LIST, list_source=_attendants_source(
        _list_attendants.c.attendance_type_dict_id == ATTENDANCE_TYPE_CLIENT,
    ))),
    AddCustomFilter(CustomFilterDef(
        "isAttendant", "attendants", IsAttendantParams, _compile_is_attendant,
    )),
    SuggestColumns(("date", "startDayminute", "durationMinutes", "statusDictId", "staff", "clients")),
    SuggestSort((SortSuggestion("date", desc=True), SortSuggestion("startDayminute"))),
))

MEETINGS_CONFIG = with_count_column(_MEETINGS_BASE_CONFIG)


def _meeting_scope(facility_id: str) -> List[Any]:
    return [meetings.c.facility_id == facility_id]


# ===== MEETING ATTENDANTS =====

MEETING_ATTENDANTS_JOIN = JoinDef(
    "meeting_attendants", meeting_attendants, meeting_attendants.c.meeting_id == meetings.c.id, required=True,
)
ATTENDANT_JOIN = JoinDef(
    "attendant", attendant, attendant.c.id == meeting_attendants.c.user_id, depends_on=("meeting_attendants",),
)

MEETING_ATTENDANTS_CONFIG = with_count_column(extend_config(_MEETINGS_BASE_CONFIG, (
    AddJoined(T.UUID, MEETING_ATTENDANTS_JOIN, "user_id", "attendant.userId"),
    AddJoined(T.STRING, ATTENDANT_JOIN, "name", "attendant.name", searchable=True),
    AddJoined(
        T.DICT, MEETING_ATTENDANTS_JOIN, "attendance_type_dict_id", "attendant.attendanceTypeDictId",
        dictionary_id=DICT_ATTENDANCE_TYPE,
    ),
    AddJoined(
        T.DICT, MEETING_ATTENDANTS_JOIN, "attendance_status_dict_id", "attendant.attendanceStatusDictId",
        dictionary_id=DICT_ATTENDANCE_STATUS,
    ),
    SuggestColumns(("date", "startDayminute", "attendant.name", "attendant.attendanceStatusDictId")),
)))


# ===== MEETING CLIENTS =====

CLIENT_ATTENDANTS_JOIN = JoinDef(
    "client_attendants", client_attendants,
    and_(
        client_attendants.c.meeting_id == meetings.c.id,
        client_attendants.c.attendance_type_dict_id == ATTENDANCE_TYPE_CLIENT,
    ),
    required=True,
)
CLIENT_USER_JOIN = JoinDef(
    "client_user", client_user, client_user.c.id == client_attendants.c.user_id,
    depends_on=("client_attendants",),
)

MEETING_CLIENTS_CONFIG = with_count_column(extend_config(_MEETINGS_BASE_CONFIG, (
    AddJoined(T.UUID, CLIENT_ATTENDANTS_JOIN, "user_id", "client.userId"),
    AddJoined(T.STRING, CLIENT_USER_JOIN, "name", "client.name", searchable=True),
    AddJoined(
        T.DICT, CLIENT_ATTENDANTS_JOIN, "attendance_status_dict_id", "client.attendanceStatusDictId",
        dictionary_id=DICT_ATTENDANCE_STATUS,
    ),
    SuggestColumns(("date", "client.name", "statusDictId", "client.attendanceStatusDictId")),
)))


# ===== REQUEST LOG =====

log = Log.__table__.alias("log")

LOGS_CONFIG = with_count_column(extend_config(TqueryConfig(), (
    AddColumn(ColumnDef("id", T.INT, log.c.id)),
    AddColumn(ColumnDef("timestamp", T.DATETIME_NULLABLE, log.c.timestamp)),
    AddColumn(ColumnDef("method", T.STRING, log.c.method)),
    AddColumn(ColumnDef("path", T.STRING, log.c.path, searchable=True)),
    AddColumn(ColumnDef("facilityId", T.UUID_NULLABLE, log.c.facility_id)),
    AddColumn(ColumnDef("entity", T.STRING_NULLABLE, log.c.entity, searchable=True)),
    AddColumn(ColumnDef("statusCode", T.INT, log.c.status_code)),
    AddColumn(ColumnDef("errorType", T.STRING_NULLABLE, log.c.error_type, searchable=True)),
    AddColumn(ColumnDef("processingTime", T.DECIMAL0_NULLABLE, log.c.processing_time)),
    AddColumn(ColumnDef("clientIp", T.STRING_NULLABLE, log.c.client_ip)),
    AddColumn(ColumnDef("userAgent", T.STRING_NULLABLE, log.c.user_agent)),
    AddColumn(ColumnDef("username", T.STRING_NULLABLE, log.c.username, searchable=True)),
    AddColumn(ColumnDef("hostname", T.STRING_NULLABLE, log.c.hostname)),
    AddColumn(ColumnDef("applicationId", T.STRING_NULLABLE, log.c.application_id)),
    AddColumn(ColumnDef("requestBody", T.TEXT_NULLABLE, log.c.request_body)),
    AddColumn(ColumnDef("responseBody", T.TEXT_NULLABLE, log.c.response_body)),
    SuggestColumns(("timestamp", "method", "path", "statusCode", "processingTime")),
    SuggestSort((SortSuggestion("timestamp", desc=True),)),
)))


# ===== REGISTRY =====

TABLES: Dict[str, TqueryTable] = {
    table.name: table
    for table in (
        TqueryTable("users", users, ADMIN_USERS_CONFIG),
        TqueryTable("logs", log, LOGS_CONFIG),
        TqueryTable("staff", users, STAFF_CONFIG, _member_scope),
        TqueryTable("clients", users, CLIENTS_CONFIG, _member_scope),
        TqueryTable("meetings", meetings, MEETINGS_CONFIG, _meeting_scope),
        TqueryTable("meeting_attendants", meetings, MEETING_ATTENDANTS_CONFIG, _meeting_scope),
        TqueryTable("meeting_clients", meetings, MEETING_CLIENTS_CONFIG, _meeting_scope),
    )
}

FACILITY_TABLES = {name: table for name, table in TABLES.items() if table.is_facility_scoped}
