"""Database models for the facility scheduling entities queried by tquery."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.core.database import Base


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Facility(Base):
    """A tenant: every scoped query is limited to one facility."""

    __tablename__ = "facilities"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False)
    url = Column(String(100), nullable=False, unique=True)

    members = relationship("Member", back_populates="facility")


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(200), nullable=True, unique=True)
    is_global_admin = Column(Boolean, nullable=False, default=False)
    last_login_success_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    memberships = relationship("Member", back_populates="user")


class StaffMember(Base):
    __tablename__ = "staff_members"

    id = Column(String(36), primary_key=True)
    deactivated_at = Column(DateTime, nullable=True)


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True)
    short_code = Column(String(50), nullable=True)
    birth_date = Column(Date, nullable=True)
    type_dict_id = Column(String(36), nullable=True)
    notes = Column(Text, nullable=True)


class Member(Base):
    """Membership of a user in a facility, as staff and/or client."""

    __tablename__ = "members"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    facility_id = Column(String(36), ForeignKey("facilities.id"), nullable=False, index=True)
    staff_member_id = Column(String(36), ForeignKey("staff_members.id"), nullable=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True)
    has_facility_admin = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="memberships")
    facility = relationship("Facility", back_populates="members")


class ClientGroup(Base):
    __tablename__ = "client_groups"

    id = Column(String(36), primary_key=True)
    facility_id = Column(String(36), ForeignKey("facilities.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)


class ClientGroupMember(Base):
    __tablename__ = "client_group_members"

    id = Column(String(36), primary_key=True)
    client_group_id = Column(String(36), ForeignKey("client_groups.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)


class Meeting(Base):
    __tablename__ = "meetings"

    id = Column(String(36), primary_key=True)
    facility_id = Column(String(36), ForeignKey("facilities.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    start_dayminute = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status_dict_id = Column(String(36), nullable=False)
    category_dict_id = Column(String(36), nullable=False)
    type_dict_id = Column(String(36), nullable=False)
    is_remote = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    interval = Column(String(10), nullable=True)
    from_meeting_id = Column(String(36), ForeignKey("meetings.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    attendants = relationship("MeetingAttendant", back_populates="meeting", cascade="all, delete-orphan")


class MeetingAttendant(Base):
    __tablename__ = "meeting_attendants"

    id = Column(String(36), primary_key=True)
    meeting_id = Column(String(36), ForeignKey("meetings.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    attendance_type_dict_id = Column(String(36), nullable=False)
    attendance_status_dict_id = Column(String(36), nullable=False)

    meeting = relationship("Meeting", back_populates="attendants")
