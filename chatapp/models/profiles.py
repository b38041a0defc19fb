from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Uuid, func
from . import Base, utcnow


class Profile(Base):
    __tablename__ = 'profiles'
    # issued by auth_users, never generated here
    id = Column(Uuid, ForeignKey('auth_users.id', ondelete='CASCADE'), primary_key=True)
    email = Column(Text, unique=True, nullable=False)
    display_name = Column(Text, nullable=False)
    avatar_url = Column(Text, nullable=True)
    status = Column(String, default='offline', server_default='offline')
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
