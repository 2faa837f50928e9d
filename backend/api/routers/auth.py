import logging
from fastapi import APIRouter, Depends, HTTPException, Response

from api.deps import get_services, get_session_user
from api.schemas import LoginRequest, PatientRegistration
from core.auth import SESSION_COOKIE, SESSION_TOKEN_COOKIE, encode_session_cookie, sign_session
from core.exceptions import PortalError
from core.models import SessionUser
from core.services import Services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])


def _set_session_cookies(response: Response, user: SessionUser, services: Services) -> None:
    max_age = services.settings.session_max_age
    response.set_cookie(
        SESSION_TOKEN_COOKIE,
        sign_session(user, services.settings.secret_key),
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="lax",
    )
    response.set_cookie(
        SESSION_COOKIE,
        encode_session_cookie(user),
        max_age=max_age,
        path="/",
        samesite="lax",
    )


@router.post("/login")
async def login(payload: LoginRequest, response: Response, services: Services = Depends(get_services)):
    """Check credentials and start a session"""
    try:
        user = await services.sessions.login(payload.email, payload.password)
        _set_session_cookies(response, user, services)
        return {"user": user.to_dict(), "redirect": f"/{user.role}"}

    except (HTTPException, PortalError):
        raise
    except Exception as e:
        logger.error(f"Error during login: {e}")
        raise HTTPException(status_code=500, detail="An error occurred. Please try again.")


@router.post("/logout")
async def logout(response: Response, services: Services = Depends(get_services)):
    """End the session"""
    await services.sessions.logout()
    response.delete_cookie(SESSION_TOKEN_COOKIE, path="/")
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"message": "Logged out"}


@router.post("/register", status_code=201)
async def register_patient(
    payload: PatientRegistration,
    response: Response,
    services: Services = Depends(get_services),
):
    """Patient self-registration; logs the new patient in"""
    try:
        user = await services.sessions.register_patient(payload.model_dump(exclude_none=True))
        _set_session_cookies(response, user, services)
        return {"user": user.to_dict(), "redirect": "/patient"}

    except (HTTPException, PortalError):
        raise
    except Exception as e:
        logger.error(f"Error registering patient: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/me")
async def me(user: SessionUser = Depends(get_session_user)):
    """The identity carried by the signed session cookie"""
    return {"user": user.to_dict()}
