# clinic/crud.py
#
# This module contains all the functions for Create, Read, Update, and Delete
# (CRUD) operations, interacting directly with the DynamoDB tables.
# Every read returns plain Python values (Decimals converted).

import logging
import uuid
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from .database import (
    users_table,
    patients_table,
    consultations_table,
    appointments_table,
    notifications_table,
    audit_logs_table,
    system_settings_table,
    get_table,
    scan_all,
    to_dynamo,
    from_dynamo,
)
from .errors import DuplicatePatientError, StaleStateError
from .models import title_case
from .timeutils import now_iso, now_ms

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def _is_condition_failure(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException'


def _build_update(fields: Dict[str, Any]):
    """Builds a SET expression with placeholder names for every field."""
    names, values, clauses = {}, {}, []
    for i, (key, value) in enumerate(fields.items()):
        names[f"#f{i}"] = key
        values[f":v{i}"] = to_dynamo(value)
        clauses.append(f"#f{i} = :v{i}")
    return "SET " + ", ".join(clauses), names, values


def _update_item(table, item_id: str, fields: Dict[str, Any], expected_status: Optional[str] = None) -> Dict[str, Any]:
    update_expression, names, values = _build_update(fields)
    update_args = {
        'Key': {'id': item_id},
        'UpdateExpression': update_expression,
        'ExpressionAttributeNames': names,
        'ExpressionAttributeValues': values,
        'ReturnValues': "ALL_NEW",
    }
    if expected_status is not None:
        names['#expected'] = 'status'
        values[':expected'] = expected_status
        update_args['ConditionExpression'] = "attribute_exists(id) AND #expected = :expected"
    else:
        update_args['ConditionExpression'] = "attribute_exists(id)"
    try:
        response = table.update_item(**update_args)
    except ClientError as e:
        if _is_condition_failure(e):
            raise StaleStateError(f"Document {item_id} missing or not in status {expected_status}")
        raise
    return from_dynamo(response.get('Attributes', {}))


def _get_item(table, item_id: str) -> Optional[Dict[str, Any]]:
    response = table.get_item(Key={'id': item_id})
    item = response.get('Item')
    return from_dynamo(item) if item else None


# --- Users ---

def db_get_user_by_id(user_id: str) -> Optional[Dict[str, Any]]:
    """Finds a user profile by identity-provider id (Primary Key)."""
    logger.info("DB Read: Searching for user with ID: %s", user_id)
    user = _get_item(users_table, user_id)
    if user:
        logger.info("DB Read: Found user for ID: %s", user_id)
        return user
    logger.info("DB Read: User not found for ID: %s", user_id)
    return None


def db_list_users() -> List[Dict[str, Any]]:
    return from_dynamo(scan_all(users_table))


def db_list_users_by_role(role: str, active_only: bool = True) -> List[Dict[str, Any]]:
    users = from_dynamo(scan_all(users_table, FilterExpression=Attr('role').eq(role)))
    if active_only:
        users = [u for u in users if u.get('isActive', True) is not False]
    return sorted(users, key=lambda u: (u.get('name') or '').lower())


def db_create_user_profile(user_id: str, email: str, name: str, role: str, specialty: Optional[str]) -> Dict[str, Any]:
    timestamp = now_iso()
    new_user = {
        'id': user_id,
        'email': email,
        'name': name,
        'role': role,
        'specialty': specialty,
        'isActive': True,
        'createdAt': timestamp,
        'updatedAt': timestamp,
    }
    users_table.put_item(Item=to_dynamo(new_user), ConditionExpression="attribute_not_exists(id)")
    logger.info("DB Write: Created user profile %s with role %s", user_id, role)
    return new_user


def db_update_user(user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    fields = dict(fields, updatedAt=now_iso())
    logger.info("DB Write: Updating user %s fields %s", user_id, sorted(fields))
    return _update_item(users_table, user_id, fields)


def db_set_user_active(user_id: str, is_active: bool, reason: Optional[str] = None) -> Dict[str, Any]:
    return db_update_user(user_id, {'isActive': is_active, 'disableReason': None if is_active else reason})


def db_revoke_sessions(user_id: str, revoked_at: int) -> None:
    """Tokens issued before `revoked_at` (epoch seconds) stop being accepted."""
    _update_item(users_table, user_id, {'sessionRevokedAt': revoked_at})
    logger.info("DB Write: Revoked sessions for user %s at %s", user_id, revoked_at)


# --- Patients ---

def db_get_patient(patient_id: str) -> Optional[Dict[str, Any]]:
    logger.info("DB Read: Fetching patient %s", patient_id)
    return _get_item(patients_table, patient_id)


def db_create_patient(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Creates a patient whose document id is its billing code. An existing
    document with the same code is never overwritten.
    """
    billing_code = data['billingCode']
    if _get_item(patients_table, billing_code):
        logger.warning("DB Write: Duplicate billing code %s rejected", billing_code)
        raise DuplicatePatientError(billing_code)

    timestamp = now_iso()
    patient = dict(data)
    patient.update({
        'id': billing_code,
        'fullName': title_case(patient['fullName']),
        'isActive': True,
        'historyFiles': patient.get('historyFiles') or [],
        'createdAt': timestamp,
        'updatedAt': timestamp,
    })
    try:
        patients_table.put_item(Item=to_dynamo(patient), ConditionExpression="attribute_not_exists(id)")
    except ClientError as e:
        if _is_condition_failure(e):
            raise DuplicatePatientError(billing_code)
        raise
    logger.info("DB Write: Created patient %s", billing_code)
    return patient


def db_update_patient(patient_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    fields = dict(fields, updatedAt=now_iso())
    logger.info("DB Write: Updating patient %s", patient_id)
    return _update_item(patients_table, patient_id, fields)


def db_set_patient_reconsultation(patient_id: str) -> bool:
    """Switches the patient to 'Reconsulta' when any prior consultation exists."""
    if not db_patient_has_consultations(patient_id):
        return False
    db_update_patient(patient_id, {'consultationType': 'Reconsulta'})
    return True


def db_add_patient_file(patient_id: str, file_entry: Dict[str, Any]) -> Dict[str, Any]:
    response = patients_table.update_item(
        Key={'id': patient_id},
        UpdateExpression="SET historyFiles = list_append(if_not_exists(historyFiles, :empty), :f), updatedAt = :ua",
        ExpressionAttributeValues={':f': [to_dynamo(file_entry)], ':empty': [], ':ua': now_iso()},
        ConditionExpression="attribute_exists(id)",
        ReturnValues="ALL_NEW",
    )
    logger.info("DB Write: Attached file %s to patient %s", file_entry.get('name'), patient_id)
    return from_dynamo(response.get('Attributes', {}))


def db_search_patients(term: Optional[str]) -> List[Dict[str, Any]]:
    """
    Blank term: the 10 most recent patients.
    Digits: exact billing code, then id prefix.
    Otherwise: title-cased name prefix, then a substring scan over 50 patients.
    """
    patients = from_dynamo(scan_all(patients_table))
    clean = (term or '').strip()

    if not clean:
        patients.sort(key=lambda p: p.get('createdAt') or '', reverse=True)
        return patients[:10]

    if clean.isdigit():
        by_code = [p for p in patients if p.get('billingCode') == clean]
        if by_code:
            return by_code[:5]
        by_id = sorted((p for p in patients if str(p.get('id', '')).startswith(clean)), key=lambda p: p['id'])
        return by_id[:5]

    prefix = title_case(clean)
    by_name = sorted(
        (p for p in patients if (p.get('fullName') or '').startswith(prefix)),
        key=lambda p: p.get('fullName') or '',
    )
    if by_name:
        return by_name[:20]

    needle = clean.lower()
    return [p for p in patients[:50] if needle in (p.get('fullName') or '').lower()]


# --- Consultations ---

def db_get_consultation(consultation_id: str) -> Optional[Dict[str, Any]]:
    logger.info("DB Read: Fetching consultation %s", consultation_id)
    return _get_item(consultations_table, consultation_id)


def db_create_consultation(consultation: Dict[str, Any]) -> Dict[str, Any]:
    consultation = dict(consultation)
    consultation.setdefault('id', new_id())
    consultation.setdefault('createdAt', now_iso())
    consultations_table.put_item(Item=to_dynamo(consultation))
    logger.info("DB Write: Created consultation %s (%s)", consultation['id'], consultation.get('status'))
    return consultation


def db_open_consultation(patient: Dict[str, Any], doctor: Dict[str, Any], status: str,
                         **extra: Any) -> Dict[str, Any]:
    """Creates a consultation for a patient/doctor pair with empty clinical content."""
    consultation = {
        'patientId': patient['id'],
        'patientName': patient.get('fullName'),
        'patientAge': patient.get('age'),
        'patientGender': patient.get('gender'),
        'doctorId': doctor['id'],
        'doctorName': doctor.get('name'),
        'status': status,
        'date': now_ms(),
        'diagnosis': '',
        'prescription': [],
        'exams': [],
        'referralGroups': [],
        'specialtyReferrals': [],
        'omittedFields': {},
        'printedDocs': {'prescription': False, 'labs': False, 'report': False},
    }
    consultation.update(extra)
    return db_create_consultation(consultation)


def db_update_consultation(consultation_id: str, fields: Dict[str, Any], expected_status: Optional[str] = None) -> Dict[str, Any]:
    logger.info("DB Write: Updating consultation %s", consultation_id)
    return _update_item(consultations_table, consultation_id, fields, expected_status)


def db_delete_consultation(consultation_id: str) -> None:
    consultations_table.delete_item(Key={'id': consultation_id})
    logger.info("DB Write: Deleted consultation %s", consultation_id)


def db_list_consultations(status: Optional[List[str]] = None, doctor_id: Optional[str] = None,
                          patient_id: Optional[str] = None) -> List[Dict[str, Any]]:
    condition = None
    if status:
        condition = Attr('status').is_in(status)
    if doctor_id:
        c = Attr('doctorId').eq(doctor_id)
        condition = c if condition is None else condition & c
    if patient_id:
        c = Attr('patientId').eq(patient_id)
        condition = c if condition is None else condition & c
    kwargs = {'FilterExpression': condition} if condition is not None else {}
    return from_dynamo(scan_all(consultations_table, **kwargs))


def db_list_active_consultations(doctor_id: Optional[str] = None) -> List[Dict[str, Any]]:
    items = db_list_consultations(status=['waiting', 'in_progress'], doctor_id=doctor_id)
    return sorted(items, key=lambda c: c.get('date') or 0)


def db_patient_has_consultations(patient_id: str) -> bool:
    return len(db_list_consultations(patient_id=patient_id)) > 0


def db_list_consultations_between(start_ms: int, end_ms: int) -> List[Dict[str, Any]]:
    items = from_dynamo(scan_all(consultations_table, FilterExpression=Attr('date').between(start_ms, end_ms)))
    return sorted(items, key=lambda c: c.get('date') or 0, reverse=True)


# --- Appointments ---

def db_get_appointment(appointment_id: str) -> Optional[Dict[str, Any]]:
    return _get_item(appointments_table, appointment_id)


def db_create_appointment(appointment: Dict[str, Any]) -> Dict[str, Any]:
    appointment = dict(appointment)
    appointment.setdefault('id', new_id())
    appointment.setdefault('createdAt', now_iso())
    appointments_table.put_item(Item=to_dynamo(appointment))
    logger.info("DB Write: Created appointment %s for patient %s", appointment['id'], appointment.get('patientId'))
    return appointment


def db_update_appointment(appointment_id: str, fields: Dict[str, Any], expected_status: Optional[str] = None) -> Dict[str, Any]:
    logger.info("DB Write: Updating appointment %s", appointment_id)
    return _update_item(appointments_table, appointment_id, fields, expected_status)


def db_list_appointments_between(start_ms: int, end_ms: int, doctor_id: Optional[str] = None) -> List[Dict[str, Any]]:
    condition = Attr('date').between(start_ms, end_ms)
    if doctor_id:
        condition = condition & Attr('doctorId').eq(doctor_id)
    items = from_dynamo(scan_all(appointments_table, FilterExpression=condition))
    return sorted(items, key=lambda a: a.get('date') or 0)


# --- Notifications ---

def db_put_notification(notification: Dict[str, Any]) -> Dict[str, Any]:
    notification = dict(notification)
    notification.setdefault('id', new_id())
    notifications_table.put_item(Item=to_dynamo(notification))
    return notification


def db_list_notifications(user_id: str, role: str, limit: int = 50) -> List[Dict[str, Any]]:
    condition = Attr('targetUserId').eq(user_id) | Attr('targetRole').is_in([role, 'all'])
    items = from_dynamo(scan_all(notifications_table, FilterExpression=condition))
    items.sort(key=lambda n: n.get('timestamp') or '', reverse=True)
    return items[:limit]


def db_mark_notification_read(notification_id: str) -> Dict[str, Any]:
    return _update_item(notifications_table, notification_id, {'read': True})


# --- Audit log ---

def db_put_audit_log(entry: Dict[str, Any]) -> None:
    entry = dict(entry)
    entry.setdefault('id', new_id())
    audit_logs_table.put_item(Item=to_dynamo(entry))


def db_list_audit_logs(limit: Optional[int] = None) -> List[Dict[str, Any]]:
    items = from_dynamo(scan_all(audit_logs_table))
    items.sort(key=lambda e: e.get('timestamp') or 0, reverse=True)
    return items[:limit] if limit else items


# --- Generic collections (catalogs, admin surfaces) ---

def db_list_collection(collection: str) -> List[Dict[str, Any]]:
    logger.info("DB Read: Listing collection %s", collection)
    return from_dynamo(scan_all(get_table(collection)))


def db_get_document(collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
    return _get_item(get_table(collection), doc_id)


def db_put_document(collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
    document = dict(document)
    document.setdefault('id', new_id())
    get_table(collection).put_item(Item=to_dynamo(document))
    logger.info("DB Write: Put %s/%s", collection, document['id'])
    return document


def db_update_document(collection: str, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    logger.info("DB Write: Updating %s/%s", collection, doc_id)
    return _update_item(get_table(collection), doc_id, fields)


def db_delete_document(collection: str, doc_id: str) -> None:
    get_table(collection).delete_item(Key={'id': doc_id})
    logger.info("DB Write: Deleted %s/%s", collection, doc_id)


def db_find_by_name(collection: str, name: str) -> Optional[Dict[str, Any]]:
    items = from_dynamo(scan_all(get_table(collection), FilterExpression=Attr('name').eq(name)))
    return items[0] if items else None


# --- System settings ---

def db_get_setting(key: str) -> Optional[Dict[str, Any]]:
    return _get_item(system_settings_table, key)


def db_merge_setting(key: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Upserts the given fields into a settings document."""
    update_expression, names, values = _build_update(fields)
    response = system_settings_table.update_item(
        Key={'id': key},
        UpdateExpression=update_expression,
        ExpressionAttributeNames=names,
        ExpressionAttributeValues=values,
        ReturnValues="ALL_NEW",
    )
    logger.info("DB Write: Merged settings %s", key)
    return from_dynamo(response.get('Attributes', {}))
