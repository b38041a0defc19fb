from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .profiles import ProfileOut


class MessageIn(BaseModel):
    content: str = Field(min_length=1, max_length=4000)


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    created_at: datetime
    updated_at: datetime


class MessageWithSenderOut(MessageOut):
    sender: ProfileOut
