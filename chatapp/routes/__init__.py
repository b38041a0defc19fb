from fastapi import APIRouter
from .users import router as users_router
from .profiles import router as profiles_router
from .contacts import router as contacts_router
from .conversations import router as conversations_router
from .messages import router as messages_router
from .ws import router as ws_router

router = APIRouter()
router.include_router(users_router, prefix='/users', tags=['users'])
router.include_router(profiles_router, prefix='/profiles', tags=['profiles'])
router.include_router(contacts_router, prefix='/contacts', tags=['contacts'])
router.include_router(conversations_router, prefix='/conversations', tags=['conversations'])
router.include_router(messages_router, prefix='/messages', tags=['messages'])
router.include_router(ws_router, prefix='/ws', tags=['ws'])
