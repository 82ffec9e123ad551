# clinic/session.py
#
# The session gate: a fixed window (90 minutes by default) anchored to login.
# The start timestamp lives in the `ah_session_start` cookie (epoch ms), so a
# reload or a second tab shares the same window.

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .config import get_settings
from .timeutils import now_ms

logger = logging.getLogger(__name__)

SESSION_COOKIE = "ah_session_start"

EXPIRED_TEMPLATE = "Su sesión ha expirado por seguridad (límite de {minutes} min)"
TIMEOUT_MESSAGE = "Tiempo de sesión agotado por seguridad."
OTHER_TAB_MESSAGE = "Sesión cerrada desde otra pestaña."
DEACTIVATED_MESSAGE = "Su cuenta ha sido desactivada."


def expired_message(duration_ms: int) -> str:
    return EXPIRED_TEMPLATE.format(minutes=duration_ms // 60000)


EXPIRED_MESSAGE = expired_message(get_settings().session_duration_ms)


@dataclass
class SessionStatus:
    expired: bool
    remaining_ms: int


def evaluate_session(session_start_ms: int, current_ms: int, duration_ms: int) -> SessionStatus:
    elapsed = current_ms - session_start_ms
    if elapsed >= duration_ms:
        return SessionStatus(expired=True, remaining_ms=0)
    return SessionStatus(expired=False, remaining_ms=duration_ms - elapsed)


def parse_session_cookie(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("SESSION: Ignoring malformed session cookie %r", raw)
        return None


def _loop_scheduler(delay_seconds: float, callback: Callable[[], Any]):
    return asyncio.get_running_loop().call_later(delay_seconds, callback)


class SessionGate:
    """
    Evaluates a session start against the window. An expired start triggers
    the logout callback at once; otherwise exactly one logout is scheduled at
    the remaining delta, replacing any previously scheduled one.

    `scheduler(delay_seconds, callback)` must return a handle with `cancel()`.
    """

    def __init__(self, duration_ms: int, on_logout: Callable[[str], Any],
                 scheduler: Callable = _loop_scheduler, clock: Callable[[], int] = now_ms):
        self.duration_ms = duration_ms
        self.on_logout = on_logout
        self.scheduler = scheduler
        self.clock = clock
        self._handle = None

    def evaluate(self, session_start_ms: int) -> SessionStatus:
        status = evaluate_session(session_start_ms, self.clock(), self.duration_ms)
        self.cancel()
        if status.expired:
            logger.info("SESSION: Start %s is past the window, forcing logout", session_start_ms)
            self.on_logout(expired_message(self.duration_ms))
        else:
            self._handle = self.scheduler(status.remaining_ms / 1000, self._fire)
        return status

    def _fire(self):
        self._handle = None
        self.on_logout(TIMEOUT_MESSAGE)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def pending(self) -> bool:
        return self._handle is not None
