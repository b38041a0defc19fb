from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends

from ..schemas.contacts import ContactIn, ContactOut
from ..schemas.users import ActionOkOut
from ..crud import list_contacts, add_contact, remove_contact
from ..auth import get_current_user
from ..policies import Caller

router = APIRouter()


@router.get('/', response_model=List[ContactOut])
async def my_contacts(current_user: Caller = Depends(get_current_user)):
    return await list_contacts(current_user)


@router.post('/', response_model=ContactOut, status_code=201)
async def add(payload: ContactIn, current_user: Caller = Depends(get_current_user)):
    return await add_contact(current_user, payload.contact_id)


@router.delete('/{contact_id}', response_model=ActionOkOut)
async def remove(contact_id: UUID, current_user: Caller = Depends(get_current_user)):
    await remove_contact(current_user, contact_id)
    return {'ok': True}
