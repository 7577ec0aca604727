"""Database models for the request log."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Float, Text
from app.core.database import Base


class Log(Base):
    """One API request with its response, written by the logging middleware
    and by the exception handlers. Queryable as the ``logs`` admin entity."""

    __tablename__ = "log"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, default=datetime.now, index=True)
    method = Column(String(10), nullable=False)
    path = Column(String, nullable=False)
    # Facility and entity of tquery requests, parsed from the path.
    facility_id = Column(String(36), nullable=True, index=True)
    entity = Column(String(50), nullable=True)
    status_code = Column(Integer, nullable=False)
    client_ip = Column(String, nullable=True)
    request_body = Column(Text, nullable=True)
    response_body = Column(Text, nullable=True)
    error_type = Column(String(100), nullable=True)
    processing_time = Column(Float, nullable=True)
    user_agent = Column(String, nullable=True)
    username = Column(String, nullable=True)
    hostname = Column(String, nullable=True)
    application_id = Column(String, nullable=True)
