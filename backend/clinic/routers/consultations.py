# clinic/routers/consultations.py
#
# This router handles the consultation lifecycle:
#
#   check-in (waiting) -> start (in_progress) -> finish (finished) -> deliver (delivered)
#
# plus cancellation of waiting consultations, autosaved drafts, signing,
# post-finish edits and the printable documents.

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Response

from ..audit import log_action
from ..crud import (
    db_delete_consultation,
    db_get_consultation,
    db_get_patient,
    db_get_user_by_id,
    db_list_active_consultations,
    db_list_consultations,
    db_open_consultation,
    db_set_patient_reconsultation,
    db_update_appointment,
    db_update_consultation,
)
from ..drafts import draft_store
from ..email_service import email_service
from ..errors import CertificateMissingError, CertificatePasswordError, StaleStateError, WizardGateError
from ..models import (
    CancelRequest,
    CheckInRequest,
    Consultation,
    ConsultationEdit,
    DeliverRequest,
    DocumentType,
    FinishRequest,
    SignatureRequest,
)
from ..notifications import (
    notify_consultation_cancelled,
    notify_consultation_created,
    notify_consultation_delivered,
    notify_consultation_finished,
)
from ..pdf_service import generate_document
from ..security import ensure_role, get_current_user
from ..signatures import build_signature, manual_signature
from ..timeutils import now_ms
from ..wizard import SECTION_LABELS, ConsultationWizard, WizardStep, reclassify_omissions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/consultations", tags=["Consultations"])

CLINICAL_ROLES = ('doctor', 'resident', 'admin')
DOCUMENT_LABELS = {'prescription': 'Receta', 'labs': 'Laboratorios', 'report': 'Reporte de Enfermería'}


def _load(consultation_id: str) -> Dict[str, Any]:
    consultation = db_get_consultation(consultation_id)
    if not consultation:
        raise HTTPException(status_code=404, detail="Consulta no encontrada.")
    return consultation


def _ensure_attending(user: Dict[str, Any], consultation: Dict[str, Any]) -> None:
    ensure_role(user, *CLINICAL_ROLES)
    if user['role'] == 'doctor' and consultation.get('doctorId') != user['id']:
        raise HTTPException(status_code=403, detail="Esta consulta está asignada a otro médico.")


def _own_draft(consultation_id: str, user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The autosaved draft, only when the caller wrote it."""
    draft = draft_store.load(consultation_id)
    if draft is None or draft.get('savedBy') != user['id']:
        return None
    return draft


def _sign(request: SignatureRequest, user: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return build_signature(request.method, user, request.password)
    except CertificatePasswordError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except CertificateMissingError as e:
        raise HTTPException(status_code=400, detail=str(e))


# --- Reception ---

@router.post("/check-in", response_model=Consultation, status_code=201)
def check_in(
    request: CheckInRequest,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Puts a paid patient in the doctor's waiting room."""
    ensure_role(current_user, 'receptionist', 'admin')
    patient = db_get_patient(request.patientId)
    if not patient:
        raise HTTPException(status_code=404, detail="Paciente no encontrado.")
    doctor = db_get_user_by_id(request.doctorId)
    if not doctor or doctor.get('role') != 'doctor' or doctor.get('isActive', True) is False:
        raise HTTPException(status_code=404, detail="Médico no disponible.")

    try:
        db_set_patient_reconsultation(patient['id'])
        consultation = db_open_consultation(
            patient, doctor, 'waiting',
            paymentReceipt=request.paymentReceipt,
            paymentAmount=request.paymentAmount,
            receptionistId=current_user['id'],
            receptionistName=current_user.get('name'),
            appointmentId=request.appointmentId,
        )
    except Exception as e:
        logger.error("CONSULTATIONS: Check-in failed for patient %s: %s", request.patientId, e)
        raise HTTPException(status_code=500, detail="Error al registrar la consulta.")

    notify_consultation_created(doctor, patient.get('fullName'), current_user.get('name') or current_user['email'])
    log_action(
        current_user['email'], 'CREACION_CONSULTA',
        f"Consulta para {patient.get('fullName')} con Dr. {doctor.get('name')}. Boleta: {request.paymentReceipt}",
    )
    return Consultation(**consultation)


@router.get("/active", response_model=List[Consultation])
def list_active(current_user: Dict[str, Any] = Depends(get_current_user)):
    """Waiting room and in-progress consultations. Doctors only see their own."""
    doctor_id = current_user['id'] if current_user['role'] == 'doctor' else None
    try:
        return [Consultation(**c) for c in db_list_active_consultations(doctor_id)]
    except Exception as e:
        logger.error("CONSULTATIONS: Error listing active consultations: %s", e)
        raise HTTPException(status_code=500, detail="Error al cargar la sala de espera.")


@router.get("/history", response_model=List[Consultation])
def list_history(
    patientId: Optional[str] = None,
    doctorId: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    try:
        items = db_list_consultations(status=['finished', 'delivered'], doctor_id=doctorId, patient_id=patientId)
    except Exception as e:
        logger.error("CONSULTATIONS: Error listing history: %s", e)
        raise HTTPException(status_code=500, detail="Error al cargar el historial.")
    items.sort(key=lambda c: c.get('date') or 0, reverse=True)
    return [Consultation(**c) for c in items]


@router.get("/{consultation_id}", response_model=Consultation)
def read_consultation(consultation_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    return Consultation(**_load(consultation_id))


# --- Attention ---

@router.post("/{consultation_id}/start")
def start_consultation(consultation_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    """Moves a waiting consultation to in_progress and returns any autosaved draft."""
    consultation = _load(consultation_id)
    _ensure_attending(current_user, consultation)

    if consultation['status'] == 'waiting':
        try:
            consultation = db_update_consultation(
                consultation_id, {'status': 'in_progress', 'startedAt': now_ms()}, expected_status='waiting'
            )
        except StaleStateError:
            raise HTTPException(status_code=409, detail="La consulta cambió de estado.")
    elif consultation['status'] != 'in_progress':
        raise HTTPException(status_code=409, detail="La consulta ya fue finalizada.")

    return {"consultation": Consultation(**consultation), "draft": _own_draft(consultation_id, current_user)}


@router.put("/{consultation_id}/draft")
def save_draft(
    consultation_id: str,
    draft: Dict[str, Any] = Body(...),
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    _ensure_attending(current_user, _load(consultation_id))
    try:
        draft_store.save(consultation_id, dict(draft, savedAt=now_ms(), savedBy=current_user['id']))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"saved": True}


@router.get("/{consultation_id}/draft")
def read_draft(consultation_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    _ensure_attending(current_user, _load(consultation_id))
    return {"draft": _own_draft(consultation_id, current_user)}


@router.post("/{consultation_id}/signature")
def sign_consultation(
    consultation_id: str,
    request: SignatureRequest,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Checks the signing method and certificate password and returns the signature the finish step will apply."""
    consultation = _load(consultation_id)
    _ensure_attending(current_user, consultation)
    return _sign(request, current_user)


@router.post("/{consultation_id}/finish")
def finish_consultation(
    consultation_id: str,
    request: FinishRequest,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """
    Closes the encounter. Every section must have content or an explicit
    omission confirmation; the omission map is derived here from the
    confirmations, never taken from the client.
    """
    consultation = _load(consultation_id)
    _ensure_attending(current_user, consultation)
    if consultation['status'] != 'in_progress':
        raise HTTPException(status_code=409, detail="La consulta no está en atención.")

    form = request.form.model_dump()
    if request.signature is not None:
        form['signature'] = _sign(request.signature, current_user)
    elif form.get('signature') is not None:
        form['signature'] = manual_signature()

    wizard = ConsultationWizard(form=form, step=WizardStep.FINALIZE, confirmed=request.confirmedKeys)
    try:
        omitted = wizard.finish()
    except WizardGateError as e:
        raise HTTPException(status_code=422, detail={
            "message": "Complete o confirme todas las secciones antes de finalizar.",
            "missing": [SECTION_LABELS[s] for s in e.missing],
        })

    fields = dict(form)
    fields.update({
        'status': 'finished',
        'omittedFields': omitted,
        'printedDocs': {'prescription': False, 'labs': False, 'report': False},
        'finishedAt': now_ms(),
    })
    try:
        finished = db_update_consultation(consultation_id, fields, expected_status='in_progress')
    except StaleStateError:
        raise HTTPException(status_code=409, detail="La consulta ya fue finalizada.")
    except Exception as e:
        logger.error("CONSULTATIONS: Error finishing %s: %s", consultation_id, e)
        raise HTTPException(status_code=500, detail="Error al finalizar la consulta.")

    draft_store.clear(consultation_id)
    if finished.get('appointmentId'):
        try:
            db_update_appointment(finished['appointmentId'], {'status': 'completed', 'completedAt': now_ms()})
        except Exception as e:
            logger.error("CONSULTATIONS: Could not complete appointment %s: %s", finished['appointmentId'], e)

    notify_consultation_finished(finished, current_user.get('name'))
    omitted_labels = ", ".join(SECTION_LABELS[s] for s in omitted) or "Ninguna"
    log_action(
        current_user['email'], 'FINALIZACION_CONSULTA',
        f"Consulta de {finished.get('patientName')} finalizada. Secciones omitidas: {omitted_labels}",
    )
    return {"consultation": Consultation(**finished), "closesEncounter": True}


@router.post("/{consultation_id}/cancel")
def cancel_consultation(
    consultation_id: str,
    request: CancelRequest,
    background_tasks: BackgroundTasks,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Removes a consultation still in the waiting room. The reason is mandatory."""
    ensure_role(current_user, 'receptionist', 'admin')
    consultation = _load(consultation_id)
    if consultation['status'] != 'waiting':
        raise HTTPException(status_code=409, detail="Solo se pueden anular consultas en espera.")

    cancelled_by = current_user.get('name') or current_user['email']
    try:
        db_delete_consultation(consultation_id)
        draft_store.clear(consultation_id)
    except Exception as e:
        logger.error("CONSULTATIONS: Error cancelling %s: %s", consultation_id, e)
        raise HTTPException(status_code=500, detail="Error al anular la consulta.")

    background_tasks.add_task(
        email_service.notify_cancellation_to_admins, consultation.get('patientName'), cancelled_by, request.reason
    )
    notify_consultation_cancelled(consultation, cancelled_by, request.reason)
    log_action(
        current_user['email'], 'ANULACION_CONSULTA',
        f"Consulta de {consultation.get('patientName')} anulada. Motivo: {request.reason}",
    )
    return {"message": "Consulta anulada.", "id": consultation_id}


@router.post("/{consultation_id}/deliver", response_model=Consultation)
def deliver_consultation(
    consultation_id: str,
    request: DeliverRequest,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Closes the care cycle. Unprinted documents require a reason."""
    ensure_role(current_user, 'nurse', 'admin')
    consultation = _load(consultation_id)
    if consultation['status'] != 'finished':
        raise HTTPException(status_code=409, detail="La consulta no está lista para entrega.")

    printed = consultation.get('printedDocs') or {}
    missing = [DOCUMENT_LABELS[t] for t in DOCUMENT_LABELS if not printed.get(t)]
    reason = (request.nonPrintReason or '').strip()
    if missing and not reason:
        raise HTTPException(status_code=400, detail="Indique el motivo por el que no se imprimieron todos los documentos.")

    try:
        delivered = db_update_consultation(consultation_id, {
            'status': 'delivered',
            'deliveredAt': now_ms(),
            'deliveredBy': current_user.get('name') or current_user['email'],
            'nonPrintReason': reason or None,
        }, expected_status='finished')
    except StaleStateError:
        raise HTTPException(status_code=409, detail="La consulta ya fue entregada.")
    except Exception as e:
        logger.error("CONSULTATIONS: Error delivering %s: %s", consultation_id, e)
        raise HTTPException(status_code=500, detail="Error al registrar la entrega.")

    notify_consultation_delivered(delivered, current_user.get('name') or current_user['email'])
    details = f"Entrega de {delivered.get('patientName')}."
    if missing:
        details += f" Documentos no impresos: {', '.join(missing)}. Motivo: {reason}"
    log_action(current_user['email'], 'ENTREGA_FINALIZADA', details)
    return Consultation(**delivered)


@router.put("/{consultation_id}", response_model=Consultation)
def edit_consultation(
    consultation_id: str,
    edit: ConsultationEdit,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Post-finish correction. Omitted sections that gain content become 'edited'."""
    consultation = _load(consultation_id)
    _ensure_attending(current_user, consultation)
    if consultation['status'] not in ('finished', 'delivered'):
        raise HTTPException(status_code=409, detail="Solo se editan consultas finalizadas.")

    form = edit.model_dump()
    if form.get('signature') is None:
        form['signature'] = consultation.get('signature')
    else:
        form['signature'] = manual_signature()
    fields = dict(form)
    fields['omittedFields'] = reclassify_omissions(consultation.get('omittedFields'), form)
    fields['editedAt'] = now_ms()
    try:
        updated = db_update_consultation(consultation_id, fields)
    except Exception as e:
        logger.error("CONSULTATIONS: Error editing %s: %s", consultation_id, e)
        raise HTTPException(status_code=500, detail="Error al guardar los cambios.")
    log_action(current_user['email'], 'EDICION_CONSULTA', f"Consulta de {updated.get('patientName')} editada.")
    return Consultation(**updated)


# --- Documents ---

@router.get("/{consultation_id}/documents/{doc_type}")
def download_document(
    consultation_id: str,
    doc_type: DocumentType,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Streams a PDF. Prints by nursing or admin staff are recorded on the consultation."""
    consultation = _load(consultation_id)
    try:
        patient = db_get_patient(consultation['patientId']) or {
            'id': consultation['patientId'],
            'fullName': consultation.get('patientName'),
            'age': consultation.get('patientAge'),
            'gender': consultation.get('patientGender'),
        }
        doctor = db_get_user_by_id(consultation.get('doctorId')) if consultation.get('doctorId') else None
        doctor = doctor or {'name': consultation.get('doctorName')}
        pdf_bytes = generate_document(doc_type, consultation, patient, doctor)
    except Exception as e:
        logger.error("CONSULTATIONS: PDF %s failed for %s: %s", doc_type, consultation_id, e)
        raise HTTPException(status_code=500, detail="Error al generar el documento.")

    if current_user['role'] in ('nurse', 'admin'):
        printed = dict(consultation.get('printedDocs') or {})
        printed[doc_type] = True
        try:
            db_update_consultation(consultation_id, {'printedDocs': printed})
        except Exception as e:
            logger.error("CONSULTATIONS: Could not record print of %s for %s: %s", doc_type, consultation_id, e)
        log_action(
            current_user['email'], 'IMPRESION_DOCUMENTO',
            f"{DOCUMENT_LABELS[doc_type]} de {consultation.get('patientName')} impreso.",
        )

    filename = f"{doc_type}_{consultation_id[:8]}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )
