from fastapi import Depends, HTTPException, Request

from core.auth import SESSION_TOKEN_COOKIE, load_session
from core.models import SessionUser
from core.services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_session_user(request: Request) -> SessionUser:
    """Identity from the signed `session` cookie"""
    settings = request.app.state.services.settings
    user = load_session(
        request.cookies.get(SESSION_TOKEN_COOKIE), settings.secret_key, settings.session_max_age
    )
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_role(*roles: str):
    """Dependency that lets through only sessions with one of `roles`"""

    def checker(user: SessionUser = Depends(get_session_user)) -> SessionUser:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Not allowed for this role")
        return user

    return checker


def user_key(user: SessionUser) -> str:
    """The id a session acts under; demo accounts may only have an email"""
    return user.id or user.email
