# clinic/routers/notifications.py
#
# This router serves in-app notifications: the recipient's list, read marks
# and a live WebSocket feed that closes itself when the session window ends.

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from ..config import get_settings
from ..crud import db_list_notifications, db_mark_notification_read
from ..errors import StaleStateError
from ..live import manager
from ..models import Notification
from ..security import decode_api_token, get_current_user
from ..session import DEACTIVATED_MESSAGE, SESSION_COOKIE, SessionGate, parse_session_cookie
from ..timeutils import now_ms

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])

settings = get_settings()

POLL_SECONDS = 5
WS_POLICY_VIOLATION = 1008


@router.get("", response_model=List[Notification])
def list_notifications(limit: int = 50, current_user: Dict[str, Any] = Depends(get_current_user)):
    """Notifications addressed to the caller or to the caller's role, newest first."""
    try:
        return [Notification(**n) for n in db_list_notifications(current_user['id'], current_user['role'], limit)]
    except Exception as e:
        logger.error("NOTIFY: Error listing notifications for %s: %s", current_user['id'], e)
        raise HTTPException(status_code=500, detail="Error al cargar notificaciones.")


@router.post("/{notification_id}/read", response_model=Notification)
def mark_read(notification_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    try:
        return Notification(**db_mark_notification_read(notification_id))
    except StaleStateError:
        raise HTTPException(status_code=404, detail="Notificación no encontrada.")


@router.websocket("/ws")
async def notifications_feed(websocket: WebSocket, token: str, sessionStart: Optional[int] = None):
    """
    Pushes new notifications as they appear. The client sends "ping" to keep
    the connection alive; the server closes it with a logout message when
    the session window ends.
    """
    try:
        payload = await run_in_threadpool(decode_api_token, token)
    except HTTPException as e:
        logger.info("LIVE: Rejected feed connection: %s", e.detail)
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    user = payload["_user"]
    if user.get('isActive', True) is False:
        await websocket.close(code=WS_POLICY_VIOLATION, reason=DEACTIVATED_MESSAGE)
        return

    user_id = user['id']
    await manager.connect(user_id, websocket)

    async def force_logout(message: str):
        try:
            await websocket.send_json({"type": "logout", "message": message})
            await websocket.close()
        except Exception as e:
            logger.debug("LIVE: Feed for %s already closed: %s", user_id, e)

    logouts = []
    gate = SessionGate(
        settings.session_duration_ms,
        on_logout=lambda message: logouts.append(asyncio.ensure_future(force_logout(message))),
    )
    start = sessionStart or parse_session_cookie(websocket.cookies.get(SESSION_COOKIE)) or now_ms()
    if gate.evaluate(start).expired:
        await asyncio.gather(*logouts)
        manager.disconnect(user_id, websocket)
        return

    seen = set()
    try:
        initial = await run_in_threadpool(db_list_notifications, user_id, user['role'])
        seen.update(n['id'] for n in initial)
        await websocket.send_json({"type": "snapshot", "items": initial})

        while True:
            try:
                message = await asyncio.wait_for(websocket.receive_text(), timeout=POLL_SECONDS)
                if message == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                pass

            latest = await run_in_threadpool(db_list_notifications, user_id, user['role'])
            fresh = [n for n in latest if n['id'] not in seen]
            for notification in reversed(fresh):
                seen.add(notification['id'])
                await websocket.send_json({"type": "notification", "data": notification})
    except WebSocketDisconnect:
        logger.info("LIVE: User %s disconnected", user_id)
    except RuntimeError as e:
        # Sending after the gate closed the socket
        logger.info("LIVE: Feed for %s ended: %s", user_id, e)
    finally:
        gate.cancel()
        manager.disconnect(user_id, websocket)
