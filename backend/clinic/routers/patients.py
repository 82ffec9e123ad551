# clinic/routers/patients.py
#
# This router handles patient registration, search, edits and the clinical
# history attachments stored in S3.

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from ..audit import log_action
from ..crud import db_add_patient_file, db_create_patient, db_get_patient, db_search_patients, db_update_patient
from ..database import FILES_BUCKET, s3_client
from ..errors import DuplicatePatientError, StaleStateError
from ..models import Patient, PatientCreate, PatientUpdate
from ..security import get_current_user
from ..timeutils import now_iso, now_ms

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/patients", tags=["Patients"])


@router.post("", response_model=Patient, status_code=201)
def create_patient(
    patient: PatientCreate,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Registers a patient under its billing code. A code already in use is a 409."""
    try:
        created = db_create_patient(patient.model_dump(exclude_none=True))
    except DuplicatePatientError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error("PATIENTS: Error creating patient %s: %s", patient.billingCode, e)
        raise HTTPException(status_code=500, detail="Error al registrar el paciente.")
    log_action(current_user['email'], 'CREACION_PACIENTES', f"Paciente {created['fullName']} ({created['id']}) registrado.")
    return Patient(**created)


@router.get("/search", response_model=List[Patient])
def search_patients(q: str = "", current_user: Dict[str, Any] = Depends(get_current_user)):
    try:
        return [Patient(**p) for p in db_search_patients(q)]
    except Exception as e:
        logger.error("PATIENTS: Search failed for %r: %s", q, e)
        raise HTTPException(status_code=500, detail="Error en la búsqueda de pacientes.")


@router.get("/{patient_id}", response_model=Patient)
def read_patient(patient_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    patient = db_get_patient(patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail="Paciente no encontrado.")
    return Patient(**patient)


@router.put("/{patient_id}", response_model=Patient)
def update_patient(
    patient_id: str,
    changes: PatientUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    fields = changes.model_dump(exclude_unset=True)
    if changes.address is not None:
        fields['address'] = changes.address.model_dump()
    if not fields:
        raise HTTPException(status_code=400, detail="Sin cambios.")
    try:
        updated = db_update_patient(patient_id, fields)
    except StaleStateError:
        raise HTTPException(status_code=404, detail="Paciente no encontrado.")
    except Exception as e:
        logger.error("PATIENTS: Error updating patient %s: %s", patient_id, e)
        raise HTTPException(status_code=500, detail="Error al actualizar el paciente.")
    log_action(current_user['email'], 'EDICION_PACIENTES', f"Paciente {updated.get('fullName')} ({patient_id}) actualizado.")
    return Patient(**updated)


@router.post("/{patient_id}/files", response_model=Patient)
async def upload_patient_file(
    patient_id: str,
    file: UploadFile = File(...),
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Attaches a clinical history file under `patients/{id}/files/`."""
    if not db_get_patient(patient_id):
        raise HTTPException(status_code=404, detail="Paciente no encontrado.")
    content = await file.read()
    key = f"patients/{patient_id}/files/{now_ms()}_{file.filename}"
    try:
        s3_client.put_object(
            Bucket=FILES_BUCKET, Key=key, Body=content,
            ContentType=file.content_type or "application/octet-stream",
        )
        updated = db_add_patient_file(patient_id, {
            'name': file.filename,
            'url': f"s3://{FILES_BUCKET}/{key}",
            'type': file.content_type,
            'uploadedAt': now_iso(),
        })
    except Exception as e:
        logger.error("PATIENTS: Error uploading file for %s: %s", patient_id, e)
        raise HTTPException(status_code=500, detail="Error al subir el archivo.")
    log_action(current_user['email'], 'CARGA_ARCHIVO', f"Archivo {file.filename} agregado al paciente {patient_id}.")
    return Patient(**updated)
