# clinic/database.py
#
# This module is responsible for initializing the DynamoDB table resources and
# the S3 client. It centralizes all storage setup. Every collection lives in
# its own table keyed by `id`.

import logging
from decimal import Decimal
from typing import Any, Dict

import boto3

from .config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# --- DynamoDB Configuration ---
dynamodb = boto3.resource('dynamodb', region_name=settings.aws_region)
users_table = dynamodb.Table(settings.users_table_name)
patients_table = dynamodb.Table(settings.patients_table_name)
consultations_table = dynamodb.Table(settings.consultations_table_name)
appointments_table = dynamodb.Table(settings.appointments_table_name)
notifications_table = dynamodb.Table(settings.notifications_table_name)
audit_logs_table = dynamodb.Table(settings.audit_logs_table_name)
inventory_table = dynamodb.Table(settings.inventory_table_name)
laboratory_table = dynamodb.Table(settings.laboratory_table_name)
external_medicines_table = dynamodb.Table(settings.external_medicines_table_name)
pathologies_table = dynamodb.Table(settings.pathologies_table_name)
specialties_table = dynamodb.Table(settings.specialties_table_name)
system_settings_table = dynamodb.Table(settings.system_settings_table_name)

# --- S3 Configuration ---
s3_client = boto3.client('s3', region_name=settings.aws_region)
FILES_BUCKET = settings.files_bucket
BACKUPS_BUCKET = settings.backups_bucket


def get_table(collection: str):
    """Resolves a collection name to its table resource."""
    tables = {
        'users': users_table,
        'patients': patients_table,
        'consultations': consultations_table,
        'appointments': appointments_table,
        'notifications': notifications_table,
        'audit_logs': audit_logs_table,
        'inventory': inventory_table,
        'laboratory_catalog': laboratory_table,
        'external_medicines': external_medicines_table,
        'pathologies': pathologies_table,
        'specialties': specialties_table,
        'system_settings': system_settings_table,
    }
    if collection not in tables:
        raise KeyError(f"Unknown collection: {collection}")
    return tables[collection]


# --- Type conversion ---
# DynamoDB rejects Python floats and hands numbers back as Decimal.

def to_dynamo(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [from_dynamo(v) for v in value]
    return value


def scan_all(table, **kwargs) -> list:
    """Scans a whole table, following pagination."""
    response = table.scan(**kwargs)
    items = list(response.get('Items', []))
    while response.get('LastEvaluatedKey'):
        response = table.scan(ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs)
        items.extend(response.get('Items', []))
    logger.debug("DB Read: Scanned %d items from %s", len(items), getattr(table, 'name', table))
    return items


def item_or_none(response: Dict[str, Any]):
    return response.get('Item') or None
