from sqlalchemy import Column, String, Boolean, Text, ForeignKey
import uuid

from autojob.database import Base
from autojob.database_types import GUID, JSON, UTCDateTime, utcnow


class Notification(Base):
    """In-app record of every event handed to the notifier."""
    __tablename__ = "notifications"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID, ForeignKey("users.id"), nullable=False, index=True)

    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
