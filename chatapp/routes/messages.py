from uuid import UUID

from fastapi import APIRouter, Depends

from ..schemas.messages import MessageIn, MessageWithSenderOut
from ..schemas.users import ActionOkOut
from ..crud import edit_message, delete_message
from ..auth import get_current_user
from ..policies import Caller

router = APIRouter()


@router.patch('/{message_id}', response_model=MessageWithSenderOut)
async def edit(message_id: UUID, payload: MessageIn, current_user: Caller = Depends(get_current_user)):
    return await edit_message(current_user, message_id, payload.content)


@router.delete('/{message_id}', response_model=ActionOkOut)
async def delete(message_id: UUID, current_user: Caller = Depends(get_current_user)):
    await delete_message(current_user, message_id)
    return {'ok': True}
