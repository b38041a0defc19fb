from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response

from ..schemas.conversations import (
    ConversationOut,
    PrivateChatIn,
    PrivateChatOut,
    GroupChatIn,
    RenameIn,
    ParticipantIn,
    ParticipantOut,
)
from ..schemas.messages import MessageIn, MessageWithSenderOut
from ..schemas.users import ActionOkOut
from ..crud import (
    list_conversations,
    get_conversation,
    create_private_conversation,
    create_group_conversation,
    rename_conversation,
    list_participants,
    add_participant,
    mark_as_read,
    leave_conversation,
    list_messages,
    send_message,
)
from ..auth import get_current_user
from ..policies import Caller

router = APIRouter()


@router.get('/', response_model=List[ConversationOut])
async def my_conversations(current_user: Caller = Depends(get_current_user)):
    return await list_conversations(current_user)


@router.post('/private', response_model=PrivateChatOut)
async def open_private(payload: PrivateChatIn, response: Response,
                       current_user: Caller = Depends(get_current_user)):
    conversation, created = await create_private_conversation(current_user, payload.contact_id)
    response.status_code = 201 if created else 200
    return {'conversation': conversation, 'created': created}


@router.post('/group', response_model=ConversationOut, status_code=201)
async def create_group(payload: GroupChatIn, current_user: Caller = Depends(get_current_user)):
    return await create_group_conversation(current_user, payload.name, payload.member_ids)


@router.get('/{conversation_id}', response_model=ConversationOut)
async def conversation(conversation_id: UUID, current_user: Caller = Depends(get_current_user)):
    return await get_conversation(current_user, conversation_id)


@router.patch('/{conversation_id}', response_model=ConversationOut)
async def rename(conversation_id: UUID, payload: RenameIn, current_user: Caller = Depends(get_current_user)):
    return await rename_conversation(current_user, conversation_id, payload.name)


@router.get('/{conversation_id}/participants', response_model=List[ParticipantOut])
async def participants(conversation_id: UUID, current_user: Caller = Depends(get_current_user)):
    return await list_participants(current_user, conversation_id)


@router.post('/{conversation_id}/participants', response_model=ParticipantOut, status_code=201)
async def invite(conversation_id: UUID, payload: ParticipantIn, current_user: Caller = Depends(get_current_user)):
    return await add_participant(current_user, conversation_id, payload.user_id)


@router.delete('/{conversation_id}/participants/me', response_model=ActionOkOut)
async def leave(conversation_id: UUID, current_user: Caller = Depends(get_current_user)):
    await leave_conversation(current_user, conversation_id)
    return {'ok': True}


@router.post('/{conversation_id}/read', response_model=ParticipantOut)
async def read(conversation_id: UUID, current_user: Caller = Depends(get_current_user)):
    return await mark_as_read(current_user, conversation_id)


@router.get('/{conversation_id}/messages', response_model=List[MessageWithSenderOut])
async def messages(conversation_id: UUID, limit: Optional[int] = Query(None, ge=1),
                   current_user: Caller = Depends(get_current_user)):
    return await list_messages(current_user, conversation_id, limit=limit)


@router.post('/{conversation_id}/messages', response_model=MessageWithSenderOut, status_code=201)
async def send(conversation_id: UUID, payload: MessageIn, current_user: Caller = Depends(get_current_user)):
    return await send_message(current_user, conversation_id, payload.content)
