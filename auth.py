from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from werkzeug.security import generate_password_hash, check_password_hash

from config import JWT_SECRET, JWT_ALGORITHM
from errors import AuthError, ForbiddenError

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    user_id: int
    username: str
    is_admin: bool


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    return check_password_hash(hashed, password)


def create_token(user) -> str:
    payload = {"userId": user.id, "username": user.username, "isAdmin": bool(user.is_admin)}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise AuthError("Invalid token")
    if not isinstance(payload.get("userId"), int):
        raise AuthError("Invalid token")
    return CurrentUser(
        user_id=payload["userId"],
        username=payload.get("username", ""),
        is_admin=bool(payload.get("isAdmin")),
    )


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> CurrentUser:
    """Зависимость: пользователь из Bearer-токена"""
    if credentials is None:
        raise AuthError("Missing Authorization header")
    return decode_token(credentials.credentials)


def require_admin(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Зависимость: только для админов"""
    if not current.is_admin:
        raise ForbiddenError("Admin only")
    return current
