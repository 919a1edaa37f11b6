from __future__ import annotations

from fastapi import Header, Request

from .errors import InvalidToken
from .models import User
from .service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_user(request: Request, authorization: str | None = Header(default=None)) -> User:
    if not authorization:
        raise InvalidToken("missing auth")
    if not authorization.lower().startswith("bearer "):
        raise InvalidToken("invalid auth")
    token = authorization.split(" ", 1)[1].strip()
    return get_auth_service(request).user_from_token(token)
