from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from tradedesk.database import Base


class SessionEntry(Base):
    """One persisted session key (token, serialized user, active company id)."""

    __tablename__ = "session_entries"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(128), unique=True, index=True, nullable=False)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SessionEntry(key='{self.key}')>"
