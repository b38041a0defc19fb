from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from .profiles import ProfileOut


class ContactIn(BaseModel):
    contact_id: UUID


class ContactOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    contact_id: UUID
    created_at: Optional[datetime] = None
    contact_profile: ProfileOut
