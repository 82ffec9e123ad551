# clinic/routers/appointments.py
#
# This router handles the appointment agenda:
#
#   scheduled -> confirmed_phone -> paid_checked_in -> in_progress -> completed
#
# with cancellation possible before attention starts. Attending a paid
# appointment opens its consultation directly in progress.

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from ..audit import log_action
from ..crud import (
    db_create_appointment,
    db_get_appointment,
    db_get_patient,
    db_get_user_by_id,
    db_list_appointments_between,
    db_open_consultation,
    db_set_patient_reconsultation,
    db_update_appointment,
)
from ..email_service import email_service
from ..errors import StaleStateError
from ..models import Appointment, AppointmentCreate, CancelRequest, ConfirmRequest, Consultation, PaymentRequest
from ..notifications import notify_appointment_cancelled, notify_appointment_created
from ..security import ensure_role, get_current_user
from ..timeutils import GT_TZ, format_gt, now_ms

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

FRONT_DESK_ROLES = ('receptionist', 'admin')
ATTENDING_ROLES = ('doctor', 'resident', 'admin')
CANCELLABLE = ('scheduled', 'confirmed_phone', 'paid_checked_in')


def _load(appointment_id: str) -> Dict[str, Any]:
    appointment = db_get_appointment(appointment_id)
    if not appointment:
        raise HTTPException(status_code=404, detail="Cita no encontrada.")
    return appointment


def _transition(appointment: Dict[str, Any], allowed: tuple, fields: Dict[str, Any]) -> Dict[str, Any]:
    if appointment['status'] not in allowed:
        raise HTTPException(status_code=409, detail=f"La cita está en estado {appointment['status']}.")
    try:
        return db_update_appointment(appointment['id'], fields, expected_status=appointment['status'])
    except StaleStateError:
        raise HTTPException(status_code=409, detail="La cita cambió de estado.")
    except Exception as e:
        logger.error("APPOINTMENTS: Error updating %s: %s", appointment['id'], e)
        raise HTTPException(status_code=500, detail="Error al actualizar la cita.")


def _release(appointment_id: str) -> None:
    """Puts an appointment whose consultation could not be opened back in the paid queue."""
    try:
        db_update_appointment(appointment_id, {'status': 'paid_checked_in'}, expected_status='in_progress')
    except Exception as e:
        logger.error("APPOINTMENTS: Could not release %s after a failed attend: %s", appointment_id, e)


def _date_label(ms: int) -> str:
    return format_gt(ms, "%d/%m/%Y %H:%M")


@router.post("", response_model=Appointment, status_code=201)
def create_appointment(
    request: AppointmentCreate,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    ensure_role(current_user, *FRONT_DESK_ROLES)
    try:
        appointment = db_create_appointment(dict(
            request.model_dump(),
            status='scheduled',
            createdBy=current_user['id'],
        ))
    except Exception as e:
        logger.error("APPOINTMENTS: Error creating appointment for %s: %s", request.patientId, e)
        raise HTTPException(status_code=500, detail="Error al agendar la cita.")

    notify_appointment_created(request.patientName, request.doctorName, request.doctorId, _date_label(request.date))
    log_action(
        current_user['email'], 'CREACION_CITA',
        f"Cita de {request.patientName} con Dr. {request.doctorName} para {_date_label(request.date)}",
    )
    return Appointment(**appointment)


@router.get("", response_model=List[Appointment])
def list_appointments(
    start: int,
    end: int,
    doctorId: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Appointments whose start falls in [start, end] (epoch ms). Doctors see their own."""
    if current_user['role'] == 'doctor':
        doctorId = current_user['id']
    try:
        return [Appointment(**a) for a in db_list_appointments_between(start, end, doctorId)]
    except Exception as e:
        logger.error("APPOINTMENTS: Error listing agenda: %s", e)
        raise HTTPException(status_code=500, detail="Error al cargar la agenda.")


@router.get("/today", response_model=List[Appointment])
def list_today(doctorId: Optional[str] = None, current_user: Dict[str, Any] = Depends(get_current_user)):
    today = datetime.now(GT_TZ).replace(hour=0, minute=0, second=0, microsecond=0)
    start = int(today.timestamp() * 1000)
    end = int((today + timedelta(days=1)).timestamp() * 1000) - 1
    return list_appointments(start, end, doctorId, current_user)


@router.post("/{appointment_id}/confirm", response_model=Appointment)
def confirm_appointment(
    appointment_id: str,
    request: ConfirmRequest,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    ensure_role(current_user, *FRONT_DESK_ROLES)
    appointment = _transition(_load(appointment_id), ('scheduled',), {
        'status': 'confirmed_phone',
        'confirmationMethod': request.method,
        'confirmedAt': now_ms(),
    })
    return Appointment(**appointment)


@router.post("/{appointment_id}/payment", response_model=Appointment)
def register_payment(
    appointment_id: str,
    request: PaymentRequest,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    ensure_role(current_user, *FRONT_DESK_ROLES)
    appointment = _transition(_load(appointment_id), ('scheduled', 'confirmed_phone'), {
        'status': 'paid_checked_in',
        'paymentReceipt': request.receipt,
        'paymentAmount': request.amount,
        'paidAt': now_ms(),
    })
    log_action(
        current_user['email'], 'PAGO_CITA',
        f"Pago de {appointment.get('patientName')}. Boleta: {request.receipt}, Monto: Q{request.amount:.2f}",
    )
    return Appointment(**appointment)


@router.post("/{appointment_id}/attend", response_model=Consultation, status_code=201)
def attend_appointment(appointment_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    """Only paid appointments can be attended; the consultation opens in progress."""
    ensure_role(current_user, *ATTENDING_ROLES)
    appointment = _load(appointment_id)
    if appointment['status'] != 'paid_checked_in':
        raise HTTPException(status_code=409, detail="La cita debe estar pagada antes de atenderla.")
    if current_user['role'] == 'doctor' and appointment.get('doctorId') != current_user['id']:
        raise HTTPException(status_code=403, detail="Esta cita está asignada a otro médico.")

    patient = db_get_patient(appointment['patientId']) or {
        'id': appointment['patientId'], 'fullName': appointment.get('patientName'),
    }
    doctor = db_get_user_by_id(appointment['doctorId']) or {
        'id': appointment['doctorId'], 'name': appointment.get('doctorName'),
    }

    _transition(appointment, ('paid_checked_in',), {'status': 'in_progress'})
    try:
        db_set_patient_reconsultation(patient['id'])
        consultation = db_open_consultation(
            patient, doctor, 'in_progress',
            startedAt=now_ms(),
            appointmentId=appointment_id,
            paymentReceipt=appointment.get('paymentReceipt'),
            paymentAmount=appointment.get('paymentAmount'),
        )
    except Exception as e:
        logger.error("APPOINTMENTS: Error opening consultation for %s: %s", appointment_id, e)
        _release(appointment_id)
        raise HTTPException(status_code=500, detail="Error al iniciar la consulta.")

    try:
        db_update_appointment(appointment_id, {'consultationId': consultation['id']})
    except Exception as e:
        logger.error("APPOINTMENTS: Could not link consultation %s to %s: %s", consultation['id'], appointment_id, e)

    log_action(current_user['email'], 'ATENCION_CITA', f"Inicio de atención de {patient.get('fullName')}")
    return Consultation(**consultation)


@router.post("/{appointment_id}/complete", response_model=Appointment)
def complete_appointment(appointment_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    ensure_role(current_user, *ATTENDING_ROLES)
    appointment = _transition(_load(appointment_id), ('in_progress',), {
        'status': 'completed',
        'completedAt': now_ms(),
    })
    return Appointment(**appointment)


@router.post("/{appointment_id}/cancel", response_model=Appointment)
def cancel_appointment(
    appointment_id: str,
    request: CancelRequest,
    background_tasks: BackgroundTasks,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    ensure_role(current_user, *FRONT_DESK_ROLES)
    cancelled_by = current_user.get('name') or current_user['email']
    appointment = _transition(_load(appointment_id), CANCELLABLE, {
        'status': 'cancelled',
        'cancelReason': request.reason,
        'cancelledBy': cancelled_by,
        'cancelledAt': now_ms(),
    })

    notify_appointment_cancelled(
        appointment.get('patientName'), appointment.get('doctorName'), appointment.get('doctorId'),
        request.reason, cancelled_by,
    )
    background_tasks.add_task(
        email_service.notify_appointment_cancellation_to_admins,
        appointment.get('patientName'), appointment.get('doctorName'), _date_label(appointment['date']),
        cancelled_by, request.reason,
    )
    log_action(
        current_user['email'], 'CANCELACION_CITA',
        f"Cita de {appointment.get('patientName')} cancelada. Motivo: {request.reason}",
    )
    return Appointment(**appointment)
