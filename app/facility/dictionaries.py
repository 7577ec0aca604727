"""Identifiers of the lookup dictionaries referenced by the queryable columns.

Labels are resolved by the dictionary service; the tquery engine only stores and
filters the raw position ids.
"""

# Dictionary ids
DICT_ATTENDANCE_TYPE = "e2ba36ab-7f4e-4b55-8b48-5c5a1f1a0a01"
DICT_ATTENDANCE_STATUS = "e2ba36ab-7f4e-4b55-8b48-5c5a1f1a0a02"
DICT_MEETING_STATUS = "e2ba36ab-7f4e-4b55-8b48-5c5a1f1a0a03"
DICT_MEETING_CATEGORY = "e2ba36ab-7f4e-4b55-8b48-5c5a1f1a0a04"
DICT_MEETING_TYPE = "e2ba36ab-7f4e-4b55-8b48-5c5a1f1a0a05"
DICT_CLIENT_TYPE = "e2ba36ab-7f4e-4b55-8b48-5c5a1f1a0a06"

# Positions used by the sample data
ATTENDANCE_TYPE_STAFF = "1f0e4a4c-0000-4000-8000-000000000101"
ATTENDANCE_TYPE_CLIENT = "1f0e4a4c-0000-4000-8000-000000000102"
ATTENDANCE_STATUS_OK = "1f0e4a4c-0000-4000-8000-000000000201"
ATTENDANCE_STATUS_CANCELLED = "1f0e4a4c-0000-4000-8000-000000000202"
MEETING_STATUS_PLANNED = "1f0e4a4c-0000-4000-8000-000000000301"
MEETING_STATUS_COMPLETED = "1f0e4a4c-0000-4000-8000-000000000302"
MEETING_CATEGORY_GENERAL = "1f0e4a4c-0000-4000-8000-000000000401"
MEETING_TYPE_INDIVIDUAL = "1f0e4a4c-0000-4000-8000-000000000501"
CLIENT_TYPE_ADULT = "1f0e4a4c-0000-4000-8000-000000000601"
CLIENT_TYPE_CHILD = "1f0e4a4c-0000-4000-8000-000000000602"

DEFAULT_LABELS = {
    ATTENDANCE_TYPE_STAFF: "Staff",
    ATTENDANCE_TYPE_CLIENT: "Client",
    ATTENDANCE_STATUS_OK: "OK",
    ATTENDANCE_STATUS_CANCELLED: "Cancelled",
    MEETING_STATUS_PLANNED: "Planned",
    MEETING_STATUS_COMPLETED: "Completed",
    MEETING_CATEGORY_GENERAL: "General",
    MEETING_TYPE_INDIVIDUAL: "Individual",
    CLIENT_TYPE_ADULT: "Adult",
    CLIENT_TYPE_CHILD: "Child",
}


def dictionary_label(dictionary_id: str, position_id: str):
    """Label of a dictionary position, or None when unknown."""
    return DEFAULT_LABELS.get(position_id)
