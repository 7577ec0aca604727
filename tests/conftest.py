"""
Test configuration and shared fixtures for the facility tquery test suite.
Provides database setup, the API client and a seeded facility.
"""

import os
import tempfile
import uuid

# Request logs written by the middleware go to a throwaway database.
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'tquery_test_log.db')}")

import pytest
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from app.app import create_app
from app.core.database import Base, create_all_tables, get_db
from app.facility.dictionaries import (
    ATTENDANCE_STATUS_CANCELLED,
    ATTENDANCE_STATUS_OK,
    ATTENDANCE_TYPE_CLIENT,
    ATTENDANCE_TYPE_STAFF,
    CLIENT_TYPE_ADULT,
    CLIENT_TYPE_CHILD,
    MEETING_CATEGORY_GENERAL,
    MEETING_STATUS_COMPLETED,
    MEETING_STATUS_PLANNED,
    MEETING_TYPE_INDIVIDUAL,
)
from app.facility.models import (
    Client,
    ClientGroup,
    ClientGroupMember,
    Facility,
    Meeting,
    MeetingAttendant,
    Member,
    StaffMember,
    User,
)
from app.tquery.service import TqueryService


def new_id() -> str:
    return str(uuid.uuid4())


# ===== DATABASE SETUP =====

@pytest.fixture(scope="session")
def engine():
    """Create in-memory SQLite engine"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_all_tables(bind=engine)
    return engine


@pytest.fixture(scope="function")
def db_session(engine):
    """Create a database session, cleaned up after each test"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)


@pytest.fixture
def client(db_session):
    """Create FastAPI test client with database overrides"""
    app = create_app()

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def tquery_service(db_session) -> TqueryService:
    return TqueryService(db_session, debug=False, dev_mode=False)


# ===== SAMPLE DATA =====

@dataclass
class FacilityData:
    """Ids of the seeded rows, by role."""

    facility_id: str
    other_facility_id: str
    staff: Dict[str, str] = field(default_factory=dict)
    clients: List[str] = field(default_factory=list)
    other_clients: List[str] = field(default_factory=list)
    group_id: str = ""
    meetings: List[str] = field(default_factory=list)
    other_meeting_id: str = ""


def _add_member(db, facility_id: str, user: User, staff: StaffMember = None, client: Client = None,
                admin: bool = False) -> None:
    db.add(Member(
        id=new_id(), user_id=user.id, facility_id=facility_id,
        staff_member_id=staff.id if staff else None,
        client_id=client.id if client else None,
        has_facility_admin=admin,
    ))


@pytest.fixture
def facility_data(db_session) -> FacilityData:
    """
    A facility with 3 staff members, 25 clients and 4 meetings, and a second
    facility with 2 clients and 1 meeting.

    Clients are named "Client 01" to "Client 25". Every fifth client has no
    short code, clients 21-25 are children, odd clients have an email.
    """
    facility = Facility(id=new_id(), name="Test facility", url="test")
    other = Facility(id=new_id(), name="Other facility", url="other")
    db_session.add_all([facility, other])
    data = FacilityData(facility_id=facility.id, other_facility_id=other.id)

    for name, email, admin, deactivated in [
        ("Anna Staff", "anna@example.com", True, None),
        ("Bob Staff", None, False, None),
        ("Cecil Staff", "cecil@example.com", False, datetime(2024, 1, 15, 12, 0)),
    ]:
        staff = StaffMember(id=new_id(), deactivated_at=deactivated)
        user = User(id=new_id(), name=name, email=email, is_global_admin=admin)
        db_session.add_all([staff, user])
        _add_member(db_session, facility.id, user, staff=staff, admin=admin)
        data.staff[name.split()[0].lower()] = user.id

    for i in range(1, 26):
        client = Client(
            id=new_id(),
            short_code=None if i % 5 == 0 else f"C{i:03d}",
            birth_date=date(1990, 1, i),
            type_dict_id=CLIENT_TYPE_CHILD if i > 20 else CLIENT_TYPE_ADULT,
            notes="Prefers 50%_off sessions" if i == 3 else None,
        )
        user = User(id=new_id(), name=f"Client {i:02d}", email=f"client{i:02d}@example.com" if i % 2 else None)
        db_session.add_all([client, user])
        _add_member(db_session, facility.id, user, client=client)
        data.clients.append(user.id)

    for i in range(1, 3):
        client = Client(id=new_id(), short_code=f"O{i:03d}", type_dict_id=CLIENT_TYPE_ADULT)
        user = User(id=new_id(), name=f"Other {i:02d}")
        db_session.add_all([client, user])
        _add_member(db_session, other.id, user, client=client)
        data.other_clients.append(user.id)

    group = ClientGroup(id=new_id(), facility_id=facility.id, name="Family")
    db_session.add(group)
    for user_id in data.clients[:2]:
        db_session.add(ClientGroupMember(id=new_id(), client_group_id=group.id, user_id=user_id))
    data.group_id = group.id

    anna, bob = data.staff["anna"], data.staff["bob"]
    meeting_specs = [
        # date, start, duration, status, notes, attendants as (user, type, status)
        (date(2024, 3, 1), 540, 60, MEETING_STATUS_COMPLETED, "Intake", [
            (anna, ATTENDANCE_TYPE_STAFF, ATTENDANCE_STATUS_OK),
            (data.clients[0], ATTENDANCE_TYPE_CLIENT, ATTENDANCE_STATUS_OK),
            (data.clients[1], ATTENDANCE_TYPE_CLIENT, ATTENDANCE_STATUS_CANCELLED),
        ]),
        (date(2024, 3, 2), 600, 30, MEETING_STATUS_PLANNED, None, [
            (anna, ATTENDANCE_TYPE_STAFF, ATTENDANCE_STATUS_OK),
            (data.clients[2], ATTENDANCE_TYPE_CLIENT, ATTENDANCE_STATUS_OK),
        ]),
        (date(2024, 3, 3), 540, 60, MEETING_STATUS_PLANNED, "Follow-up", [
            (bob, ATTENDANCE_TYPE_STAFF, ATTENDANCE_STATUS_OK),
            (data.clients[0], ATTENDANCE_TYPE_CLIENT, ATTENDANCE_STATUS_OK),
        ]),
        (date(2024, 3, 4), 720, 90, MEETING_STATUS_PLANNED, None, []),
    ]
    for i, (day, start, duration, status, notes, attendants) in enumerate(meeting_specs):
        meeting = Meeting(
            id=new_id(), facility_id=facility.id, date=day, start_dayminute=start, duration_minutes=duration,
            status_dict_id=status, category_dict_id=MEETING_CATEGORY_GENERAL, type_dict_id=MEETING_TYPE_INDIVIDUAL,
            is_remote=i == 1, notes=notes, created_by_id=anna,
            created_at=datetime(2024, 2, 1, 10, i),
            # The third meeting is a clone of the first one.
            from_meeting_id=data.meetings[0] if i == 2 else None,
        )
        db_session.add(meeting)
        db_session.flush()
        for user_id, attendance_type, attendance_status in attendants:
            db_session.add(MeetingAttendant(
                id=new_id(), meeting_id=meeting.id, user_id=user_id,
                attendance_type_dict_id=attendance_type, attendance_status_dict_id=attendance_status,
            ))
        data.meetings.append(meeting.id)

    other_meeting = Meeting(
        id=new_id(), facility_id=other.id, date=date(2024, 3, 1), start_dayminute=540, duration_minutes=60,
        status_dict_id=MEETING_STATUS_PLANNED, category_dict_id=MEETING_CATEGORY_GENERAL,
        type_dict_id=MEETING_TYPE_INDIVIDUAL, created_by_id=anna,
    )
    db_session.add(other_meeting)
    data.other_meeting_id = other_meeting.id

    db_session.commit()
    return data


# ===== UTILITY FIXTURES =====

@pytest.fixture
def clients_schema() -> Dict:
    """Exported schema of the clients entity"""
    from app.tquery.tables import CLIENTS_CONFIG
    return CLIENTS_CONFIG.schema()


@pytest.fixture
def reductor_schema() -> Dict:
    """A small schema covering nullable, non-nullable and list columns"""
    return {
        "columns": [
            {"name": "name", "type": "string", "nullable": False},
            {"name": "status", "type": "string", "nullable": True},
            {"name": "birthDate", "type": "date", "nullable": True},
            {"name": "tags", "type": "uuid_list", "nullable": True},
            {"name": "typeDictId", "type": "dict", "nullable": False, "dictionaryId": "d"},
            {"name": "count", "type": "count"},
        ]
    }


@pytest.fixture
def column_request():
    """Factory of data requests selecting the named columns, first page of 50 by default"""
    def make(*names: str, **extra) -> Dict:
        request = {
            "columns": [{"type": "column", "column": name} for name in names],
            "filter": "always",
            "paging": {"size": 50, "number": 1},
        }
        request.update(extra)
        return request
    return make
