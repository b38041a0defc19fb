import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid, func
from . import Base, utcnow


class SessionToken(Base):
    __tablename__ = 'session_tokens'
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('auth_users.id', ondelete='CASCADE'), index=True, nullable=False)
    device_id = Column(String(255), nullable=True)
    token_hash = Column(String(128), unique=True, nullable=False, index=True)
    user_agent = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
