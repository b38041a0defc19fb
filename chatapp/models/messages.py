import uuid

from sqlalchemy import Column, Text, DateTime, ForeignKey, Index, Uuid, func
from . import Base, utcnow


class Message(Base):
    __tablename__ = 'messages'
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False)
    sender_id = Column(Uuid, ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    __table_args__ = (
        Index('idx_messages_conversation_id', 'conversation_id'),
        Index('idx_messages_created_at', 'created_at'),
    )
