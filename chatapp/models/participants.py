import uuid

from sqlalchemy import Column, DateTime, ForeignKey, UniqueConstraint, Index, Uuid, func
from . import Base, utcnow


class ConversationParticipant(Base):
    __tablename__ = 'conversation_participants'
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Uuid, ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False)
    joined_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    last_read_at = Column(DateTime(timezone=True), nullable=True)
    __table_args__ = (
        UniqueConstraint('conversation_id', 'user_id', name='conversation_participants_conversation_id_user_id_key'),
        Index('idx_conversation_participants_user_id', 'user_id'),
        Index('idx_conversation_participants_conversation_id', 'conversation_id'),
    )
