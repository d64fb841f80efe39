from datetime import timedelta

from sqlalchemy import Column, String, Text, ForeignKey
import uuid

from autojob.database import Base
from autojob.database_types import GUID, UTCDateTime, utcnow


class UserCredential(Base):
    """
    OAuth credential the engine uses to call the job board on the user's behalf.

    One row per user. Refreshed in place; deleted on disconnect or when a
    refresh fails.
    """
    __tablename__ = "user_credentials"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID, ForeignKey("users.id"), nullable=False, unique=True, index=True)

    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(UTCDateTime, nullable=False)
    token_type = Column(String(20), nullable=False, default="bearer")
    scope = Column(String, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def expires_within(self, buffer: timedelta) -> bool:
        """True when the token is expired or expires inside the buffer."""
        return self.expires_at - utcnow() < buffer
