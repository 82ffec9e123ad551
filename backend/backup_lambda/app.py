# backup_lambda/app.py
#
# Scheduled (daily) Lambda: when automatic backups are enabled and today's
# weekday is configured, writes a `.ah` backup to the backups bucket.

import logging
from datetime import datetime, timezone

from clinic.backup import backup_filename, generate_system_backup, get_backup_settings, is_backup_due
from clinic.database import BACKUPS_BUCKET, s3_client

logger = logging.getLogger()
logger.setLevel(logging.INFO)

SYSTEM_USER = "sistema@respaldo-automatico"


def handler(event, context):
    moment = datetime.now(timezone.utc)
    settings = get_backup_settings()
    if not is_backup_due(settings, moment):
        logger.info("BACKUP: Not due today (enabled=%s, days=%s)", settings.get('enabled'), settings.get('days'))
        return {"status": "skipped"}

    payload = generate_system_backup(SYSTEM_USER)
    key = f"backups/{backup_filename(moment)}"
    s3_client.put_object(Bucket=BACKUPS_BUCKET, Key=key, Body=payload, ContentType="application/json")
    logger.info("BACKUP: Wrote %s (%d bytes)", key, len(payload))
    return {"status": "ok", "key": key, "bytes": len(payload)}
