# clinic/pdf_service.py
#
# Printable consultation documents: prescription, laboratory order and the
# nursing summary. Each is drawn on a reportlab canvas with the clinic header,
# a patient box, a watermark and a signature block that depends on how the
# consultation was signed.

import io
import logging
import textwrap
from typing import Any, Dict, List

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas

from .timeutils import format_gt, now_ms

logger = logging.getLogger(__name__)

PRIMARY = colors.Color(124 / 255, 58 / 255, 237 / 255)
TEXT_DARK = colors.Color(15 / 255, 23 / 255, 42 / 255)
TEXT_GRAY = colors.Color(71 / 255, 85 / 255, 105 / 255)
BG_GRAY = colors.Color(248 / 255, 250 / 255, 252 / 255)
WATERMARK = colors.Color(221 / 255, 214 / 255, 254 / 255)

OMITTED_LABEL = "(Sección omitida)"
FOOTER_TEXT = "Este documento es oficial y generado por el sistema HIS de Asociación Humana."

PAGE_WIDTH, PAGE_HEIGHT = letter
MARGIN = 1.5 * cm
BOTTOM_LIMIT = 3 * cm


class _Page:
    """Tracks the cursor and breaks pages when the bottom margin is reached."""

    def __init__(self, c: canvas.Canvas, consultation: Dict[str, Any]):
        self.c = c
        self.consultation = consultation
        self.y = PAGE_HEIGHT - MARGIN

    def ensure(self, height: float):
        if self.y - height < BOTTOM_LIMIT:
            _draw_footer(self.c, self.consultation)
            self.c.showPage()
            _draw_watermark(self.c)
            self.y = PAGE_HEIGHT - MARGIN

    def heading(self, text: str, size: int = 13):
        self.ensure(1 * cm)
        self.c.setFont("Helvetica-Bold", size)
        self.c.setFillColor(PRIMARY)
        self.c.drawString(MARGIN, self.y, text)
        self.y -= 0.7 * cm

    def lines(self, text: str, size: int = 11, indent: float = 0, max_chars: int = 95,
              font: str = "Helvetica", color=TEXT_DARK):
        if text is None or str(text).strip() == "":
            text = "-"
        for raw in str(text).splitlines() or ["-"]:
            for line in textwrap.wrap(raw, max_chars) or [""]:
                self.ensure(0.5 * cm)
                self.c.setFont(font, size)
                self.c.setFillColor(color)
                self.c.drawString(MARGIN + indent, self.y, line)
                self.y -= 0.5 * cm

    def omitted(self):
        self.lines(OMITTED_LABEL, font="Helvetica-Oblique", color=colors.grey)
        self.y -= 0.3 * cm

    def gap(self, amount: float = 0.4 * cm):
        self.y -= amount


def _draw_watermark(c: canvas.Canvas):
    c.saveState()
    c.setFillColor(WATERMARK)
    c.setFont("Helvetica-Bold", 60)
    c.translate(PAGE_WIDTH / 2, PAGE_HEIGHT / 2)
    c.rotate(35)
    c.drawCentredString(0, 0, "Asociación Humana")
    c.restoreState()


def _draw_footer(c: canvas.Canvas, consultation: Dict[str, Any]):
    c.setStrokeColor(colors.lightgrey)
    c.line(MARGIN, 2 * cm, PAGE_WIDTH - MARGIN, 2 * cm)
    c.setFont("Helvetica", 8)
    c.setFillColor(colors.grey)
    c.drawString(MARGIN, 1.5 * cm, FOOTER_TEXT)
    c.drawRightString(PAGE_WIDTH - MARGIN, 1.5 * cm, f"ID: {(consultation.get('id') or '')[:8]}")


def _draw_header(page: _Page, title: str):
    c = page.c
    consultation = page.consultation
    c.setFont("Helvetica", 9)
    c.setFillColor(TEXT_GRAY)
    c.drawRightString(PAGE_WIDTH - MARGIN, page.y, format_gt(consultation.get('date') or now_ms(), "%d/%m/%Y %H:%M"))

    c.setFont("Helvetica-Bold", 16)
    c.setFillColor(PRIMARY)
    c.drawString(MARGIN, page.y, "Asociación Humana")
    page.y -= 0.5 * cm
    c.setFont("Helvetica", 9)
    c.setFillColor(TEXT_GRAY)
    c.drawString(MARGIN, page.y, "Gestión Clínica & Farmacia")
    page.y -= 0.4 * cm
    c.drawString(MARGIN, page.y, "Guatemala, C.A.")
    page.y -= 0.4 * cm
    c.setStrokeColor(PRIMARY)
    c.setLineWidth(1)
    c.line(MARGIN, page.y, PAGE_WIDTH - MARGIN, page.y)
    page.y -= 0.9 * cm

    c.setFont("Helvetica-Bold", 14)
    c.setFillColor(TEXT_DARK)
    c.drawCentredString(PAGE_WIDTH / 2, page.y, title)
    page.y -= 0.8 * cm


def _draw_patient_box(page: _Page, patient: Dict[str, Any]):
    c = page.c
    box_height = 1.8 * cm
    c.setFillColor(BG_GRAY)
    c.roundRect(MARGIN, page.y - box_height + 0.4 * cm, PAGE_WIDTH - 2 * MARGIN, box_height, 4, stroke=0, fill=1)

    gender = str(patient.get('gender') or '').lower()
    is_male = gender == 'm' or gender.startswith('masc')
    rows = [
        (("PACIENTE:", patient.get('fullName') or ''), ("EDAD:", f"{patient.get('age') or 0} años")),
        (("DPI/CÓDIGO:", patient.get('id') or ''), ("GÉNERO:", 'Masculino' if is_male else 'Femenino')),
    ]
    for left, right in rows:
        c.setFillColor(TEXT_DARK)
        c.setFont("Helvetica-Bold", 10)
        c.drawString(MARGIN + 0.3 * cm, page.y, left[0])
        c.drawString(PAGE_WIDTH / 2 + 1 * cm, page.y, right[0])
        c.setFont("Helvetica", 10)
        c.drawString(MARGIN + 2.6 * cm, page.y, str(left[1]))
        c.drawString(PAGE_WIDTH / 2 + 3 * cm, page.y, str(right[1]))
        page.y -= 0.7 * cm
    page.y -= 0.6 * cm


def _draw_signature(page: _Page, doctor: Dict[str, Any]):
    consultation = page.consultation
    signature = consultation.get('signature') or {}
    page.ensure(4 * cm)
    c = page.c
    page.y -= 1 * cm
    center = PAGE_WIDTH / 2

    if signature.get('type') == 'digital_p12':
        c.setStrokeColor(PRIMARY)
        c.rect(center - 5 * cm, page.y - 2.4 * cm, 10 * cm, 3 * cm)
        c.setFont("Helvetica-Bold", 9)
        c.setFillColor(PRIMARY)
        c.drawCentredString(center, page.y, "DOCUMENTO FIRMADO DIGITALMENTE")
        c.setFont("Helvetica", 8)
        c.setFillColor(TEXT_DARK)
        c.drawCentredString(center, page.y - 0.55 * cm, f"Firmante: {signature.get('signerName') or doctor.get('name')}")
        signed_at = format_gt(signature.get('signatureDate') or now_ms(), "%d/%m/%Y %H:%M")
        c.drawCentredString(center, page.y - 1.05 * cm, f"Fecha Firma: {signed_at}")
        c.drawCentredString(center, page.y - 1.55 * cm, f"Serial Cert: {signature.get('certificateSerial') or 'N/A'}")
        c.setFont("Courier", 8)
        c.setFillColor(colors.grey)
        c.drawCentredString(center, page.y - 2.05 * cm, f"HASH: {(consultation.get('id') or '')[:16].upper()}")
    else:
        c.setStrokeColor(TEXT_DARK)
        c.line(center - 3.5 * cm, page.y - 1.2 * cm, center + 3.5 * cm, page.y - 1.2 * cm)
        c.setFont("Helvetica-Bold", 11)
        c.setFillColor(TEXT_DARK)
        c.drawCentredString(center, page.y - 1.8 * cm, f"Dr. {doctor.get('name') or ''}")
        c.setFont("Helvetica", 10)
        c.setFillColor(TEXT_GRAY)
        c.drawCentredString(center, page.y - 2.3 * cm, doctor.get('specialty') or "Medicina General")
        c.drawCentredString(center, page.y - 2.8 * cm, "Firma y Sello")
    page.y -= 3 * cm


def _is_omitted(consultation: Dict[str, Any], section: str) -> bool:
    value = (consultation.get('omittedFields') or {}).get(section)
    return value is True or value == 'true'


def _quantity_label(item: Dict[str, Any]) -> str:
    quantity = item.get('quantity') or 0
    per_box = item.get('units_per_box') or 0
    if per_box > 1:
        boxes = quantity / per_box
        if boxes >= 1:
            label = 'Caja' if boxes == 1 else 'Cajas'
            return f"{int(boxes)} {label}" if boxes == int(boxes) else f"{boxes:.1f} {label}"
    return f"{quantity:g} Unid." if isinstance(quantity, float) else f"{quantity} Unid."


def _render(title: str, consultation, patient, doctor, body) -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=letter)
    c.setTitle(title)
    _draw_watermark(c)
    page = _Page(c, consultation)
    _draw_header(page, title)
    _draw_patient_box(page, patient)
    body(page)
    _draw_signature(page, doctor)
    _draw_footer(c, consultation)
    c.showPage()
    c.save()
    return buffer.getvalue()


def generate_prescription_pdf(consultation: Dict[str, Any], patient: Dict[str, Any], doctor: Dict[str, Any]) -> bytes:
    def body(page: _Page):
        page.heading("DIAGNÓSTICO")
        if _is_omitted(consultation, 'diagnosis'):
            page.omitted()
        else:
            page.lines(consultation.get('diagnosis') or "Sin diagnóstico registrado.")
            page.gap()

        page.heading("RECETA MÉDICA")
        items: List[Dict[str, Any]] = consultation.get('prescription') or []
        if _is_omitted(consultation, 'prescription'):
            page.omitted()
        elif not items:
            page.lines("Sin medicamentos.", color=colors.grey)
        for item in items:
            page.lines(f"• {item.get('name')}  [{_quantity_label(item)}]", font="Helvetica-Bold")
            page.lines(item.get('dosage') or '', indent=0.5 * cm, color=TEXT_GRAY)
            page.gap(0.2 * cm)

        notes = (consultation.get('prescriptionNotes') or '').strip()
        if notes:
            page.gap()
            page.heading("OBSERVACIONES / CUIDADOS GENERALES")
            page.lines(notes)

    return _render("RECETA MÉDICA", consultation, patient, doctor, body)


def generate_exams_pdf(consultation: Dict[str, Any], patient: Dict[str, Any], doctor: Dict[str, Any]) -> bytes:
    def body(page: _Page):
        if _is_omitted(consultation, 'exams'):
            page.omitted()
            return
        unique = set()
        for group in consultation.get('referralGroups') or []:
            unique.update(group.get('exams') or [])
        unique.update(consultation.get('exams') or [])
        page.heading("EXÁMENES SOLICITADOS")
        if unique:
            for exam in sorted(unique):
                page.lines(f"[  ]  {exam}")
        else:
            page.lines("Ninguno", color=colors.grey)

        other = (consultation.get('otherExams') or '').strip()
        if other:
            page.gap()
            page.heading("OTROS EXÁMENES")
            page.lines(other)

        groups = consultation.get('referralGroups') or []
        notes = [g for g in groups if (g.get('note') or '').strip()]
        referral_note = (consultation.get('referralNote') or '').strip()
        if notes or referral_note:
            page.gap()
            page.heading("NOTAS CLÍNICAS")
            for g in notes:
                page.lines(f"{g.get('pathology')}: {g.get('note')}")
            if referral_note:
                page.lines(referral_note)

    return _render("SOLICITUD DE LABORATORIOS Y ESTUDIOS", consultation, patient, doctor, body)


def generate_nursing_pdf(consultation: Dict[str, Any], patient: Dict[str, Any], doctor: Dict[str, Any]) -> bytes:
    def body(page: _Page):
        page.heading("DIAGNÓSTICO MÉDICO")
        if _is_omitted(consultation, 'diagnosis'):
            page.omitted()
        else:
            page.lines(consultation.get('diagnosis') or "Sin diagnóstico.")
            page.gap()

        page.heading("TRATAMIENTO / RECETA")
        items = consultation.get('prescription') or []
        if not _is_omitted(consultation, 'prescription') and items:
            for item in items:
                page.lines(f"• {item.get('name')} ({item.get('quantity')})")
                page.lines(item.get('dosage') or '', indent=0.5 * cm, color=TEXT_GRAY)
        else:
            page.lines("Ninguno", color=colors.grey)
        page.gap()

        page.heading("LABORATORIOS Y ESTUDIOS")
        groups = consultation.get('referralGroups') or []
        exams = consultation.get('exams') or []
        if not _is_omitted(consultation, 'exams') and (groups or exams):
            for g in groups:
                page.lines(f"Perfil: {g.get('pathology')}", font="Helvetica-Bold", color=PRIMARY)
                for e in g.get('exams') or []:
                    page.lines(f"• {e}", indent=0.3 * cm)
            if exams:
                page.lines("Seleccionados / Opcionales:", font="Helvetica-Bold", color=TEXT_GRAY)
                for e in exams:
                    page.lines(f"• {e}", indent=0.3 * cm)
        else:
            page.lines("Ninguno", color=colors.grey)
        page.gap()

        referrals = consultation.get('specialtyReferrals') or []
        if not _is_omitted(consultation, 'referrals') and referrals:
            page.heading("REFERENCIAS A ESPECIALISTAS")
            for ref in referrals:
                page.lines(f"• {ref.get('specialty')}")
                if ref.get('note'):
                    page.lines(f"Nota: {ref.get('note')}", indent=0.5 * cm, font="Helvetica-Oblique", color=TEXT_GRAY)
            page.gap()

        page.heading("ANOTACIONES PARA ENFERMERÍA / INDICACIONES FINALES")
        if _is_omitted(consultation, 'nursing'):
            page.lines("(Sin indicaciones adicionales)", font="Helvetica-Oblique", color=colors.grey)
        else:
            page.lines(consultation.get('followUpText') or "Sin anotaciones.")

    return _render("Reporte de Enfermería y Clínica", consultation, patient, doctor, body)


GENERATORS = {
    'prescription': generate_prescription_pdf,
    'labs': generate_exams_pdf,
    'report': generate_nursing_pdf,
}


def generate_document(doc_type: str, consultation, patient, doctor) -> bytes:
    generator = GENERATORS.get(doc_type)
    if generator is None:
        raise ValueError(f"Unknown document type: {doc_type}")
    logger.info("PDF: Generating %s for consultation %s", doc_type, consultation.get('id'))
    return generator(consultation, patient, doctor)
