# clinic/audit.py
#
# Append-only audit trail. Writing an entry never raises: a failed audit
# write is logged and the calling operation carries on.

import logging

from .crud import db_put_audit_log
from .timeutils import format_gt, now_ms

logger = logging.getLogger(__name__)


def log_action(user_email: str, action: str, details: str) -> None:
    """Appends `{user, action, details, timestamp}`; details get a Guatemala-time stamp."""
    entry = {
        'user': user_email or 'desconocido',
        'action': action,
        'details': f"{details} [Fecha GT: {format_gt()}]",
        'timestamp': now_ms(),
    }
    try:
        db_put_audit_log(entry)
        logger.info("AUDIT: %s by %s", action, entry['user'])
    except Exception as e:
        logger.error("AUDIT: Failed to record %s by %s: %s", action, entry['user'], e)
