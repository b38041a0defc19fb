import uuid

from sqlalchemy import Column, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index, Uuid, func
from . import Base, utcnow


class Contact(Base):
    __tablename__ = 'contacts'
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False)
    contact_id = Column(Uuid, ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    __table_args__ = (
        UniqueConstraint('user_id', 'contact_id', name='contacts_user_id_contact_id_key'),
        CheckConstraint('user_id != contact_id', name='contacts_check'),
        Index('idx_contacts_user_id', 'user_id'),
    )
