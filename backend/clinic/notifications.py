# clinic/notifications.py
#
# In-app notification fan-out. Each helper writes one notification per
# recipient (a specific user or a whole role). Failures are logged only.

import logging
from typing import Any, Dict, Optional

from .crud import db_put_notification
from .timeutils import now_iso

logger = logging.getLogger(__name__)


def create_notification(title: str, message: str, type: str = 'info',
                        target_role: Optional[str] = None, target_user_id: Optional[str] = None) -> None:
    notification = {
        'title': title,
        'message': message,
        'type': type,
        'targetRole': target_role,
        'targetUserId': target_user_id,
        'read': False,
        'timestamp': now_iso(),
    }
    try:
        db_put_notification(notification)
    except Exception as e:
        logger.error("NOTIFY: Could not create notification '%s': %s", title, e)


# --- Agenda ---

def notify_appointment_created(patient_name: str, doctor_name: str, doctor_id: str, date_string: str) -> None:
    create_notification(
        "Nueva Cita Agendada",
        f"Tiene una nueva cita con {patient_name} para el {date_string}.",
        'info', target_user_id=doctor_id,
    )
    create_notification(
        "Nueva Cita en Agenda",
        f"Se ha agendado una cita: Paciente {patient_name} con Dr. {doctor_name} ({date_string}).",
        'info', target_role='admin',
    )


def notify_appointment_cancelled(patient_name: str, doctor_name: str, doctor_id: str,
                                 reason: str, cancelled_by: str) -> None:
    msg = f"Cita de {patient_name} cancelada por {cancelled_by}. Motivo: {reason}"
    create_notification("Cita Cancelada", msg, 'alert', target_user_id=doctor_id)
    create_notification("Cancelación de Cita", f"Agenda Dr. {doctor_name}: {msg}", 'alert', target_role='admin')


# --- Consultations ---

def notify_consultation_created(doctor: Dict[str, Any], patient_name: str, receptionist_name: str) -> None:
    msg = f"Paciente: {patient_name}. Creado por: {receptionist_name}."
    create_notification(
        "Nueva Consulta Asignada",
        f"Se le ha asignado un nuevo paciente. {msg}",
        'info', target_user_id=doctor.get('id'),
    )
    create_notification(
        "Nueva Consulta en Sala",
        f"Dr. {doctor.get('name')} tiene un nuevo paciente. {msg}",
        'info', target_role='admin',
    )


def notify_consultation_cancelled(consultation: Dict[str, Any], cancelled_by: str, reason: str) -> None:
    details = f"Paciente: {consultation.get('patientName')}. Anulado por: {cancelled_by}. Motivo: {reason}"
    if consultation.get('doctorId'):
        create_notification(
            "Consulta Cancelada",
            f"Una consulta de su lista ha sido anulada. {details}",
            'alert', target_user_id=consultation['doctorId'],
        )
    create_notification(
        "Consulta Anulada",
        f"Atención cancelada en sala de espera. {details}",
        'alert', target_role='nurse',
    )
    create_notification("Anulación Registrada", details, 'alert', target_role='admin')


def notify_consultation_finished(consultation: Dict[str, Any], doctor_name: str) -> None:
    patient_name = consultation.get('patientName')
    msg = f"Paciente: {patient_name}. Atendido por: Dr. {doctor_name}."
    create_notification(
        "Paciente Listo para Entrega",
        f"Consulta finalizada. Proceder con entrega de documentos/medicinas. {msg}",
        'success', target_role='nurse',
    )
    create_notification(
        "Consulta Finalizada",
        f"El Dr. {doctor_name} ha finalizado la atención de {patient_name}.",
        'info', target_role='receptionist',
    )
    create_notification("Consulta Médica Completada", msg, 'success', target_role='admin')


def notify_consultation_delivered(consultation: Dict[str, Any], nurse_name: str) -> None:
    msg = f"Paciente: {consultation.get('patientName')}. Entregado por: {nurse_name}."
    create_notification(
        "Expediente Entregado y Finalizado",
        f"El ciclo de atención ha concluido. {msg}",
        'success', target_role='admin',
    )
