# app/core/database.py
"""Database configuration, session generator and sample data seeding."""

from datetime import date, datetime, timedelta, timezone
import uuid

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.config import DATABASE_URL

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_all_tables(bind=None):
    """Create all tables."""
    # Import models to ensure they're registered with Base
    from app.facility import models  # noqa: F401
    from app.logging.models import Log  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def drop_all_tables(bind=None):
    """Drop all tables (use with caution!)."""
    from app.facility import models  # noqa: F401
    from app.logging.models import Log  # noqa: F401

    Base.metadata.drop_all(bind=bind or engine)


def init_db():
    """Initialize database tables."""
    create_all_tables()


# ===== SAMPLE DATA CREATION =====


def seed_sample_data():
    """Create a demo facility with staff, clients and meetings."""
    from app.facility.models import (
        Facility, User, Member, Client, StaffMember, Meeting, MeetingAttendant,
        ClientGroup, ClientGroupMember,
    )
    from app.facility.dictionaries import (
        ATTENDANCE_TYPE_STAFF, ATTENDANCE_TYPE_CLIENT, ATTENDANCE_STATUS_OK,
        MEETING_STATUS_PLANNED, MEETING_STATUS_COMPLETED, MEETING_CATEGORY_GENERAL,
        MEETING_TYPE_INDIVIDUAL, CLIENT_TYPE_ADULT,
    )

    db = SessionLocal()
    try:
        if db.query(Facility).count() > 0:
            print("Sample data already exists. Skipping creation.")
            return

        facility = Facility(id=str(uuid.uuid4()), name="Demo facility", url="demo")
        db.add(facility)

        staff_users = []
        for name in ["Anna Kowalska", "Jan Nowak"]:
            staff = StaffMember(id=str(uuid.uuid4()))
            user = User(id=str(uuid.uuid4()), name=name, email=f"{name.split()[0].lower()}@example.com")
            db.add_all([staff, user])
            db.add(Member(id=str(uuid.uuid4()), user_id=user.id, facility_id=facility.id, staff_member_id=staff.id))
            staff_users.append(user)

        client_users = []
        for i, name in enumerate(["Ewa Zielinska", "Piotr Wisniewski", "Maria Lewandowska"]):
            client = Client(
                id=str(uuid.uuid4()), short_code=f"C{i + 1:03d}",
                birth_date=date(1980 + i, 1 + i, 10), type_dict_id=CLIENT_TYPE_ADULT,
            )
            user = User(id=str(uuid.uuid4()), name=name)
            db.add_all([client, user])
            db.add(Member(id=str(uuid.uuid4()), user_id=user.id, facility_id=facility.id, client_id=client.id))
            client_users.append(user)

        group = ClientGroup(id=str(uuid.uuid4()), facility_id=facility.id, name="Family")
        db.add(group)
        for user in client_users[:2]:
            db.add(ClientGroupMember(id=str(uuid.uuid4()), client_group_id=group.id, user_id=user.id))

        today = date.today()
        for day in range(5):
            meeting = Meeting(
                id=str(uuid.uuid4()), facility_id=facility.id, date=today + timedelta(days=day),
                start_dayminute=9 * 60 + day * 30, duration_minutes=60,
                status_dict_id=MEETING_STATUS_COMPLETED if day == 0 else MEETING_STATUS_PLANNED,
                category_dict_id=MEETING_CATEGORY_GENERAL, type_dict_id=MEETING_TYPE_INDIVIDUAL,
                is_remote=bool(day % 2), notes=None if day % 2 else "Initial consultation",
                created_at=datetime.now(timezone.utc).replace(tzinfo=None), created_by_id=staff_users[0].id,
            )
            db.add(meeting)
            db.add(MeetingAttendant(
                id=str(uuid.uuid4()), meeting_id=meeting.id, user_id=staff_users[day % 2].id,
                attendance_type_dict_id=ATTENDANCE_TYPE_STAFF, attendance_status_dict_id=ATTENDANCE_STATUS_OK,
            ))
            db.add(MeetingAttendant(
                id=str(uuid.uuid4()), meeting_id=meeting.id, user_id=client_users[day % 3].id,
                attendance_type_dict_id=ATTENDANCE_TYPE_CLIENT, attendance_status_dict_id=ATTENDANCE_STATUS_OK,
            ))

        db.commit()
        print(f"✅ Sample data created for facility {facility.id}")

    except Exception as e:
        db.rollback()
        print(f"❌ Error creating sample data: {str(e)}")
        raise

    finally:
        db.close()


if __name__ == "__main__":
    # Allow running this file directly to initialize the database
    init_db()
    seed_sample_data()
