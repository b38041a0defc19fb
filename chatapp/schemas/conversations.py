from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .messages import MessageOut
from .profiles import ProfileOut


class ParticipantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    user_id: UUID
    joined_at: Optional[datetime] = None
    last_read_at: Optional[datetime] = None
    profile: Optional[ProfileOut] = None


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: Literal['private', 'group']
    name: Optional[str] = None
    created_by: UUID
    created_at: datetime
    updated_at: datetime
    participants: List[ParticipantOut] = []
    last_message: Optional[MessageOut] = None
    unread_count: int = 0


class PrivateChatIn(BaseModel):
    contact_id: UUID


class PrivateChatOut(BaseModel):
    conversation: ConversationOut
    created: bool


class GroupChatIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    member_ids: List[UUID] = Field(min_length=1)


class RenameIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class ParticipantIn(BaseModel):
    user_id: UUID
