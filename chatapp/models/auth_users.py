import uuid

from sqlalchemy import Column, String, DateTime, Uuid, func
from . import Base, utcnow


class AuthUser(Base):
    """Identity record; every profile hangs off one of these."""
    __tablename__ = 'auth_users'
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
