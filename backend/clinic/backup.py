# clinic/backup.py
#
# Whole-system backup in the `.ah` format (JSON) and its restore.
#
#   {"meta": {"version", "generatedAt", "generatedBy", "system"},
#    "data": {"<collection>": [{"_id": ..., ...fields}]}}
#
# Top-level timestamp fields are tagged as {"_type": "Timestamp", "value": iso}
# so a restore can tell them apart from ordinary strings.

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from .audit import log_action
from .crud import db_get_setting, db_list_collection, db_merge_setting
from .database import from_dynamo, get_table, to_dynamo
from .errors import InvalidBackupError
from .timeutils import GT_TZ, now_ms

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"
BACKUP_SYSTEM = "Asociación Humana HIS"
RESTORE_CHUNK_SIZE = 400
BACKUP_SETTINGS_KEY = "backup_config"

TRACKED_COLLECTIONS = [
    'users',
    'patients',
    'inventory',
    'consultations',
    'specialties',
    'pathologies',
    'external_medicines',
    'system_settings',
    'audit_logs',
]

TIMESTAMP_FIELDS = {
    'createdAt', 'updatedAt', 'uploadedAt', 'confirmedAt', 'paidAt', 'cancelledAt', 'completedAt',
}


def _is_tagged_timestamp(value: Any) -> bool:
    return isinstance(value, dict) and value.get('_type') == 'Timestamp' and 'value' in value


def serialize_document(document: Dict[str, Any]) -> Dict[str, Any]:
    safe = {'_id': document.get('id')}
    for key, value in from_dynamo(document).items():
        if key == 'id':
            continue
        if key in TIMESTAMP_FIELDS and isinstance(value, str):
            value = {'_type': 'Timestamp', 'value': value}
        safe[key] = value
    return safe


def deserialize_document(record: Dict[str, Any]) -> Dict[str, Any]:
    document = {'id': record['_id']}
    for key, value in record.items():
        if key == '_id':
            continue
        document[key] = value['value'] if _is_tagged_timestamp(value) else value
    return document


def build_backup(generated_by: str) -> Dict[str, Any]:
    backup = {
        'meta': {
            'version': BACKUP_VERSION,
            'generatedAt': datetime.now(timezone.utc).isoformat(),
            'generatedBy': generated_by,
            'system': BACKUP_SYSTEM,
        },
        'data': {},
    }
    for collection in TRACKED_COLLECTIONS:
        documents = db_list_collection(collection)
        backup['data'][collection] = [serialize_document(d) for d in documents]
        logger.info("BACKUP: %s -> %d documents", collection, len(documents))
    return backup


def backup_filename(moment: datetime = None) -> str:
    moment = (moment or datetime.now(timezone.utc)).astimezone(GT_TZ)
    return f"AsociacionHumana_Respaldo_{moment.strftime('%Y-%m-%d_%H-%M')}.ah"


def generate_system_backup(user_email: str) -> bytes:
    """Builds the `.ah` payload, audits it and records the completion."""
    payload = json.dumps(build_backup(user_email), ensure_ascii=False, indent=2).encode("utf-8")
    log_action(user_email, 'BACKUP_GENERADO', 'Se generó y descargó una copia completa de la base de datos.')
    register_backup_completion()
    return payload


def parse_backup(raw: bytes) -> Dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        raise InvalidBackupError()
    if not isinstance(parsed, dict):
        raise InvalidBackupError()
    meta = parsed.get('meta')
    if not isinstance(meta, dict) or meta.get('system') != BACKUP_SYSTEM:
        raise InvalidBackupError()
    if not isinstance(parsed.get('data'), dict):
        raise InvalidBackupError()
    return parsed


def _chunks(records: List[Any], size: int):
    for start in range(0, len(records), size):
        yield records[start:start + size]


def restore_backup(raw: bytes, user_email: str) -> Dict[str, int]:
    """
    Overwrites documents by id from a `.ah` payload. The payload is validated
    before any write. Each chunk is committed on its own; an error aborts the
    remaining chunks and leaves the committed ones in place.
    """
    parsed = parse_backup(raw)
    restored: Dict[str, int] = {}

    for collection, records in parsed['data'].items():
        try:
            table = get_table(collection)
        except KeyError:
            logger.warning("RESTORE: Skipping unknown collection %s", collection)
            continue

        count = 0
        for chunk in _chunks(records or [], RESTORE_CHUNK_SIZE):
            with table.batch_writer(overwrite_by_pkeys=['id']) as batch:
                for record in chunk:
                    batch.put_item(Item=to_dynamo(deserialize_document(record)))
            count += len(chunk)
            logger.info("RESTORE: %s committed %d/%d", collection, count, len(records))
        restored[collection] = count

    log_action(
        user_email, 'RESTAURO_SISTEMA',
        f"Sistema restaurado desde archivo generado el: {parsed['meta'].get('generatedAt')}",
    )
    return restored


# --- Backup schedule settings ---

DEFAULT_BACKUP_SETTINGS = {'enabled': False, 'days': [], 'lastBackupDate': None, 'lastBackupDisplay': None}


def get_backup_settings() -> Dict[str, Any]:
    try:
        stored = db_get_setting(BACKUP_SETTINGS_KEY)
    except Exception as e:
        logger.error("BACKUP: Could not read backup settings: %s", e)
        stored = None
    if not stored:
        return dict(DEFAULT_BACKUP_SETTINGS)
    stored.pop('id', None)
    return dict(DEFAULT_BACKUP_SETTINGS, **stored)


def save_backup_settings(settings: Dict[str, Any], user_email: str) -> Dict[str, Any]:
    saved = db_merge_setting(BACKUP_SETTINGS_KEY, settings)
    log_action(user_email, 'CONFIG_BACKUP', 'Configuración de respaldo actualizada.')
    saved.pop('id', None)
    return saved


def register_backup_completion() -> None:
    moment = datetime.now(GT_TZ)
    try:
        db_merge_setting(BACKUP_SETTINGS_KEY, {
            'lastBackupDate': moment.date().isoformat(),
            'lastBackupDisplay': moment.strftime('%d/%m/%Y, %I:%M %p'),
            'lastBackupTs': now_ms(),
        })
    except Exception as e:
        logger.error("BACKUP: Could not record backup completion: %s", e)


def is_backup_due(settings: Dict[str, Any], moment: datetime = None) -> bool:
    """Days use 0 = Sunday ... 6 = Saturday; at most one backup per day."""
    moment = (moment or datetime.now(timezone.utc)).astimezone(GT_TZ)
    if not settings.get('enabled'):
        return False
    weekday = (moment.weekday() + 1) % 7
    if weekday not in (settings.get('days') or []):
        return False
    return settings.get('lastBackupDate') != moment.date().isoformat()
