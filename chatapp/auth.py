import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from passlib.context import CryptContext

from .config import settings
from .errors import AuthError
from .policies import Caller

pwd_ctx = CryptContext(schemes=['bcrypt'], deprecated='auto')
oauth2_scheme = OAuth2PasswordBearer(tokenUrl='/api/users/login', auto_error=False)


def hash_password(password: str) -> str:
    return pwd_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_ctx.verify(password, hashed)


def generate_refresh_token() -> str:
    # 256-bit random token, URL-safe
    return secrets.token_urlsafe(48)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_access_token(user_id: UUID, email: str, expires_delta: timedelta = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = {'sub': str(user_id), 'email': email, 'role': 'authenticated', 'exp': expire}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def caller_from_token(token: Optional[str]) -> Optional[Caller]:
    if not token:
        return None
    payload = decode_token(token)
    if not payload or payload.get('role') != 'authenticated':
        return None
    try:
        return Caller(user_id=UUID(payload['sub']))
    except (KeyError, ValueError):
        return None


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> Caller:
    caller = caller_from_token(token)
    if caller is None:
        raise AuthError('Not authenticated')
    return caller
