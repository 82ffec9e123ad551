# clinic/routers/auth.py
#
# This router handles authentication: exchanging the Cognito identity for the
# backend API token, and the 90-minute session window carried in the
# `ah_session_start` cookie.

import logging
import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from ..config import get_settings
from ..crud import db_get_user_by_id, db_revoke_sessions
from ..live import manager
from ..models import LoginResponse, SessionInfo, UserProfile
from ..security import create_final_api_token, get_cognito_user_info, get_current_user
from ..session import (
    DEACTIVATED_MESSAGE,
    OTHER_TAB_MESSAGE,
    SESSION_COOKIE,
    evaluate_session,
    expired_message,
    parse_session_cookie,
)
from ..timeutils import now_ms

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Authentication"])

settings = get_settings()


def _set_session_cookie(response: Response, start_ms: int):
    response.set_cookie(
        key=SESSION_COOKIE,
        value=str(start_ms),
        max_age=settings.session_duration_minutes * 60,
        path="/",
        samesite="strict",
        secure=settings.session_cookie_secure,
    )


def _clear_session_cookie(response: Response):
    response.delete_cookie(key=SESSION_COOKIE, path="/")


@router.post("/auth/login", response_model=LoginResponse)
async def cognito_login(
    response: Response,
    cognito_claims: Dict[str, Any] = Depends(get_cognito_user_info)
):
    """
    Exchanges a Cognito-authenticated identity for the backend API token.
    API Gateway's Cognito authorizer has already validated the ID token; the
    profile must exist and be active. The session window starts now.
    """
    cognito_sub = cognito_claims.get("sub")
    try:
        user = db_get_user_by_id(cognito_sub)
    except Exception as e:
        logger.error("AUTH: Profile fetch failed during login for %s: %s", cognito_sub, e)
        raise HTTPException(status_code=401, detail="No se pudo cargar el perfil de usuario.")

    if not user:
        logger.warning("AUTH: No profile for Cognito SUB %s", cognito_sub)
        raise HTTPException(status_code=401, detail="No se pudo cargar el perfil de usuario.")
    if user.get('isActive', True) is False:
        raise HTTPException(status_code=401, detail=DEACTIVATED_MESSAGE)

    try:
        token = create_final_api_token(user['id'], cognito_sub)
        session_start = now_ms()
        _set_session_cookie(response, session_start)
        return LoginResponse(
            message="Login successful.",
            api_token=token,
            user_profile=UserProfile(**user),
            sessionStart=session_start,
            expiresInMs=settings.session_duration_ms,
        )
    except Exception as e:
        logger.error("AUTH: Error during login processing: %s", e)
        raise HTTPException(status_code=500, detail="Internal server error during login.")


@router.get("/auth/session", response_model=SessionInfo)
async def read_session(
    request: Request,
    response: Response,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """
    Reports the remaining session time. A missing cookie (e.g. a restored
    browser session) starts a new window; a past window clears the cookie.
    """
    start = parse_session_cookie(request.cookies.get(SESSION_COOKIE))
    if start is None:
        start = now_ms()
        _set_session_cookie(response, start)
        logger.info("SESSION: New window for user %s", current_user['id'])

    status = evaluate_session(start, now_ms(), settings.session_duration_ms)
    if status.expired:
        logger.info("SESSION: Window expired for user %s", current_user['id'])
        headers = {"set-cookie": f"{SESSION_COOKIE}=; Max-Age=0; Path=/"}
        raise HTTPException(status_code=401, detail=expired_message(settings.session_duration_ms), headers=headers)
    return SessionInfo(sessionStart=start, expiresInMs=status.remaining_ms)


@router.post("/auth/logout")
async def logout(
    response: Response,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Ends the session everywhere: every token issued before now stops working."""
    try:
        db_revoke_sessions(current_user['id'], time.time())
    except Exception as e:
        logger.error("AUTH: Could not revoke sessions for %s: %s", current_user['id'], e)
        raise HTTPException(status_code=500, detail="Error al cerrar sesión.")
    _clear_session_cookie(response)
    await manager.send_to_user(current_user["id"], {"type": "logout", "message": OTHER_TAB_MESSAGE})
    return {"message": "Sesión cerrada."}
