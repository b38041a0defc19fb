import uuid

from sqlalchemy import Column, Text, DateTime, ForeignKey, CheckConstraint, Uuid, func
from . import Base, utcnow

PRIVATE = 'private'
GROUP = 'group'


class Conversation(Base):
    __tablename__ = 'conversations'
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    type = Column(Text, nullable=False)
    name = Column(Text, nullable=True)  # groups only
    created_by = Column(Uuid, ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    __table_args__ = (
        CheckConstraint("type IN ('private', 'group')", name='conversations_type_check'),
    )
