from sqlalchemy import Column, String

import uuid

from autojob.database import Base
from autojob.database_types import GUID, UTCDateTime, utcnow


class User(Base):
    """
    Owner of an automation job.

    Registration, login and profile editing belong to the surrounding
    application; the engine only needs identity and an address for
    notifications.
    """
    __tablename__ = "users"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)
