"""
Profile routes
Every authenticated user may browse profiles; only your own can be edited.
"""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from ..schemas.profiles import ProfileOut, ProfileUpdateIn
from ..crud import list_profiles, get_profile, update_profile
from ..auth import get_current_user
from ..policies import Caller

router = APIRouter()


@router.get('/', response_model=List[ProfileOut])
async def browse(q: Optional[str] = None, include_self: bool = False,
                 current_user: Caller = Depends(get_current_user)):
    return await list_profiles(current_user, search=q, exclude_self=not include_self)


@router.patch('/me', response_model=ProfileOut)
async def update_me(payload: ProfileUpdateIn, current_user: Caller = Depends(get_current_user)):
    return await update_profile(
        current_user,
        display_name=payload.display_name,
        avatar_url=payload.avatar_url,
        status=payload.status,
    )


@router.get('/{user_id}', response_model=ProfileOut)
async def profile(user_id: UUID, current_user: Caller = Depends(get_current_user)):
    return await get_profile(current_user, user_id)
