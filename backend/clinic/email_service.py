# clinic/email_service.py
#
# Transactional email to administrators through SendGrid. Delivery is
# best-effort: failures are logged, never retried and never surfaced.

import logging
from typing import Dict, List

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from .config import get_settings
from .crud import db_list_users_by_role

logger = logging.getLogger(__name__)


class EmailService:
    def __init__(self):
        settings = get_settings()
        self.sender_email = settings.sender_email
        self.reply_to = settings.reply_to_email
        self.enabled = settings.email_enabled
        self.sg = SendGridAPIClient(api_key=settings.sendgrid_api_key) if self.enabled else None

        if not self.enabled:
            logger.warning("SENDGRID_API_KEY not found - Email service disabled")

    def send(self, to_email: str, to_name: str, subject: str, html_message: str) -> bool:
        if not to_email or 'example.com' in to_email:
            return False
        if not self.enabled:
            logger.info("EMAIL: Would send '%s' to %s", subject, to_email)
            return False
        try:
            mail = Mail(
                from_email=self.sender_email,
                to_emails=to_email,
                subject=subject,
                html_content=html_message,
            )
            mail.reply_to = self.reply_to
            self.sg.send(mail)
            logger.info("EMAIL: Sent '%s' to %s (%s)", subject, to_email, to_name)
            return True
        except Exception as e:
            logger.error("EMAIL: Error sending '%s' to %s: %s", subject, to_email, e)
            return False

    def get_admin_recipients(self) -> List[Dict[str, str]]:
        try:
            admins = db_list_users_by_role('admin', active_only=True)
        except Exception as e:
            logger.error("EMAIL: Error fetching admin emails: %s", e)
            return []
        return [{'email': a['email'], 'name': a.get('name') or 'Administrador'} for a in admins if a.get('email')]

    def notify_cancellation_to_admins(self, patient_name: str, cancelled_by: str, reason: str) -> int:
        html = f"""
        <div style="font-family: sans-serif; max-width: 600px; margin: auto; border: 2px solid #fee2e2; border-radius: 16px; padding: 25px; background-color: #fef2f2;">
            <div style="color: #dc2626; font-size: 18px; font-weight: bold; margin-bottom: 15px;">ALERTA DE SEGURIDAD: CONSULTA ANULADA</div>
            <p style="color: #991b1b; font-size: 15px;">Se ha eliminado una consulta activa del sistema.</p>
            <table width="100%" style="font-size: 14px; color: #334155; margin-bottom: 20px;">
                <tr><td><b>Paciente Afectado:</b></td><td>{patient_name}</td></tr>
                <tr><td><b>Responsable de la Acción:</b></td><td>{cancelled_by}</td></tr>
            </table>
            <div style="background-color: #ffffff; border: 1px solid #fee2e2; border-radius: 12px; padding: 15px;">
                <div style="font-size: 12px; color: #94a3b8;">MOTIVO REGISTRADO:</div>
                <div style="font-size: 14px; color: #b91c1c; font-style: italic;">"{reason}"</div>
            </div>
        </div>
        """
        sent = 0
        for admin in self.get_admin_recipients():
            if self.send(admin['email'], admin['name'], f"ALERTA: Anulación de Consulta - {patient_name}", html):
                sent += 1
        return sent

    def notify_appointment_cancellation_to_admins(self, patient_name: str, doctor_name: str, date_string: str,
                                                  cancelled_by: str, reason: str) -> int:
        html = f"""
        <div style="font-family: sans-serif; max-width: 600px; margin: auto; border: 2px solid #fef3c7; border-radius: 16px; padding: 25px; background-color: #fffbeb;">
            <div style="color: #92400e; font-size: 18px; font-weight: bold; margin-bottom: 15px;">AGENDA: CITA CANCELADA</div>
            <table width="100%" style="font-size: 14px; color: #334155; margin-bottom: 20px;">
                <tr><td><b>Paciente:</b></td><td>{patient_name}</td></tr>
                <tr><td><b>Doctor:</b></td><td>{doctor_name}</td></tr>
                <tr><td><b>Fecha Original:</b></td><td>{date_string}</td></tr>
                <tr><td><b>Cancelado por:</b></td><td>{cancelled_by}</td></tr>
            </table>
            <div style="background-color: #ffffff; border: 1px solid #fcd34d; border-radius: 12px; padding: 15px;">
                <div style="font-size: 12px; color: #94a3b8;">MOTIVO:</div>
                <div style="font-size: 14px; color: #b45309; font-style: italic;">"{reason}"</div>
            </div>
        </div>
        """
        sent = 0
        for admin in self.get_admin_recipients():
            if self.send(admin['email'], admin['name'], f"AGENDA: Cita Cancelada - {patient_name}", html):
                sent += 1
        return sent


email_service = EmailService()
