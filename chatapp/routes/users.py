from fastapi import APIRouter, Depends, Form, Request

from ..schemas.users import RegisterIn, TokenOut, RefreshIn, LogoutIn, ActionOkOut
from ..schemas.profiles import ProfileOut
from ..crud import (
    register_user,
    authenticate_user,
    refresh_access_token,
    sign_out,
    get_profile,
)
from ..auth import get_current_user
from ..errors import AuthError
from ..policies import Caller

router = APIRouter()


@router.post('/register', response_model=ProfileOut, status_code=201)
async def register(payload: RegisterIn):
    return await register_user(payload.email, payload.password, payload.display_name)


@router.post('/login', response_model=TokenOut)
async def login(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    device_id: str = Form(None),
):
    # OAuth2 password form: the username field carries the email
    token = await authenticate_user(username, password, device_id=device_id,
                                    user_agent=request.headers.get('user-agent'))
    if not token:
        raise AuthError('Invalid credentials')
    return token


@router.post('/refresh', response_model=TokenOut)
async def refresh(payload: RefreshIn):
    token = await refresh_access_token(payload.refresh_token)
    if not token:
        raise AuthError('Invalid refresh token')
    return token


@router.post('/logout', response_model=ActionOkOut)
async def logout(payload: LogoutIn, current_user: Caller = Depends(get_current_user)):
    await sign_out(current_user, payload.refresh_token)
    return {'ok': True}


@router.get('/me', response_model=ProfileOut)
async def me(current_user: Caller = Depends(get_current_user)):
    return await get_profile(current_user, current_user.user_id)
