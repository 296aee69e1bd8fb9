from sqlalchemy import Column, Integer, String, Text, DateTime
from datetime import datetime, timezone

from .database import Base


def utcnow():
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


class SessionRecord(Base):
    """
    One persisted piece of session state.
    
    The application keeps three independent records keyed by name:
    'user' (signed-in profile), 'selected_patient' and 'history'.
    Each payload is the complete JSON document for that record and is
    replaced wholesale on every write. The payload is stored as text so
    that a corrupt value can be detected and ignored on load.
    """
    __tablename__ = "session_records"
    
    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(64), unique=True, index=True, nullable=False)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
