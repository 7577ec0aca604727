# app/facility/__init__.py

from .models import (
    Facility,
    User,
    Member,
    StaffMember,
    Client,
    ClientGroup,
    ClientGroupMember,
    Meeting,
    MeetingAttendant,
)

__all__ = [
    "Facility",
    "User",
    "Member",
    "StaffMember",
    "Client",
    "ClientGroup",
    "ClientGroupMember",
    "Meeting",
    "MeetingAttendant",
]
