# clinic/excel.py
#
# Spreadsheet import for the inventory and laboratory catalogs, and the
# multi-sheet master report export. Both use openpyxl.

import io
import logging
from typing import Any, Dict, Iterable, List, Optional

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from .timeutils import format_gt, parse_to_ms

logger = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 20

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# --- Import ---

def find_header_index(rows: List[tuple]) -> int:
    """First row (within the first 20) mentioning both CODIGO and DESCRIPCION, else 0."""
    for i, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        joined = " ".join(str(c) for c in row if c is not None).upper()
        if "CODIGO" in joined and "DESCRIPCION" in joined:
            return i
    return 0


def clean_currency(value: Any) -> float:
    """'Q 1,250.50' -> 1250.5; blanks and garbage -> 0."""
    if value is None or value == '':
        return 0.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    text = "".join(ch for ch in str(value) if ch not in "Q," and not ch.isspace())
    try:
        return float(text)
    except ValueError:
        return 0.0


def read_sheet_rows(content: bytes) -> List[Dict[str, Any]]:
    """Reads the first sheet into dicts keyed by the upper-cased header cells."""
    workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = [row for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()

    if not rows:
        return []
    header_index = find_header_index(rows)
    headers = [str(h).strip().upper() if h is not None else None for h in rows[header_index]]

    records = []
    for row in rows[header_index + 1:]:
        if all(c is None or str(c).strip() == '' for c in row):
            continue
        record = {h: v for h, v in zip(headers, row) if h}
        records.append(record)
    return records


def _first(row: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if value not in (None, ''):
            return value
    return ''


def map_import_row(row: Dict[str, Any], collection: str) -> Optional[Dict[str, Any]]:
    """Maps a spreadsheet row to a catalog document; rows without a name are skipped."""
    code = _first(row, 'CODIGO', 'CÓDIGO')
    name = _first(row, 'DESCRIPCION', 'DESCRIPCIÓN', 'NOMBRE', 'PRODUCTO')
    measure = _first(row, 'MEDIDA', 'PRESENTACION', 'PRESENTACIÓN', 'UNIDAD')
    if not name:
        return None

    document = {
        'code': str(code),
        'name': str(name).strip(),
        'presentation': str(measure),
        'measure': str(measure),
        'cost': clean_currency(row.get('COSTO')),
        'price': clean_currency(row.get('PRECIO')),
    }
    if collection == 'inventory':
        document['stock'] = 100
        document['units_per_box'] = 1
    return document


# --- Master report ---

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="7C3AED", end_color="7C3AED", fill_type="solid")
HEADER_ALIGNMENT = Alignment(horizontal="center", vertical="center")


def _fmt_date(value: Any) -> str:
    if not value:
        return ''
    try:
        return format_gt(parse_to_ms(value), "%d/%m/%Y %H:%M")
    except (ValueError, TypeError):
        return str(value)


def _write_sheet(workbook, title: str, rows: List[Dict[str, Any]], widths: Optional[Dict[int, int]] = None):
    sheet = workbook.create_sheet(title=title)
    if not rows:
        rows = [{"Info": "Sin registros."}]
    headers = list(rows[0].keys())
    for col, header in enumerate(headers, 1):
        cell = sheet.cell(row=1, column=col, value=header)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGNMENT
    for row_num, row in enumerate(rows, 2):
        for col, header in enumerate(headers, 1):
            value = row.get(header)
            if isinstance(value, (list, dict)):
                value = str(value)
            sheet.cell(row=row_num, column=col, value=value)
    for col in range(1, len(headers) + 1):
        sheet.column_dimensions[get_column_letter(col)].width = (widths or {}).get(col, 20)
    return sheet


def _status_label(status: str) -> str:
    if status == 'delivered':
        return 'ENTREGADO'
    if status == 'finished':
        return 'FINALIZADO'
    return (status or '').upper()


def build_master_report(data: Dict[str, List[Dict[str, Any]]]) -> bytes:
    """`data` maps collection name to its documents (audit logs newest first)."""
    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)

    patients = data.get('patients', [])
    _write_sheet(workbook, "Pacientes", [{
        "Nombre Completo": p.get('fullName'),
        "Código/DPI": p.get('billingCode') or p.get('id'),
        "Edad": p.get('age'),
        "Género": p.get('gender'),
        "Teléfono": p.get('phone'),
        "Ocupación": p.get('occupation'),
        "Responsable": p.get('responsibleName'),
        "Tel. Responsable": p.get('responsiblePhone'),
        "Historial Médico": p.get('medical_history'),
        "Tipo Consulta": p.get('consultationType'),
        "Tratamiento Previo": p.get('previousTreatment'),
        "Estado": 'ACTIVO' if p.get('isActive', True) is not False else 'INACTIVO',
        "Creado": _fmt_date(p.get('createdAt')),
    } for p in patients])

    consultations = sorted(data.get('consultations', []), key=lambda c: c.get('date') or 0, reverse=True)
    consultation_rows = []
    for c in consultations:
        prescription = "\n".join(
            f"• {m.get('name')} ({m.get('quantity')}): {m.get('dosage')}" for m in c.get('prescription') or []
        )
        labs = "\n".join(
            [f"[PERFIL {g.get('pathology')}]: {', '.join(g.get('exams') or [])}" for g in c.get('referralGroups') or []]
            + [f"• {e}" for e in c.get('exams') or []]
        )
        referrals = "\n".join(
            f"• A {r.get('specialty')}: {r.get('note') or ''}" for r in c.get('specialtyReferrals') or []
        )
        vitals = c.get('vitals') or {}
        consultation_rows.append({
            "Fecha": _fmt_date(c.get('date')),
            "Paciente": c.get('patientName'),
            "Médico": c.get('doctorName'),
            "Estado": _status_label(c.get('status')),
            "Diagnóstico": c.get('diagnosis'),
            "Receta Médica": prescription,
            "Notas Receta": c.get('prescriptionNotes'),
            "Laboratorios Solicitados": labs,
            "Referencias Externas": referrals,
            "Notas Enfermería": c.get('followUpText'),
            "Signos Vitales": (f"T:{vitals.get('temp')}, P:{vitals.get('pressure')}, W:{vitals.get('weight')}"
                               if vitals else ''),
            "Boleta Pago": c.get('paymentReceipt'),
            "Recepción": c.get('receptionistId'),
            "ID Consulta": c.get('id'),
        })
    _write_sheet(workbook, "Consultas", consultation_rows,
                 widths={1: 20, 2: 25, 3: 20, 4: 15, 5: 40, 6: 50, 7: 30, 8: 40})

    _write_sheet(workbook, "Inventario Interno", [{
        "Código": i.get('code'),
        "Medicamento": i.get('name'),
        "Presentación": i.get('presentation'),
        "Stock Actual": i.get('stock'),
        "Precio (Q)": i.get('price'),
        "Categoría": i.get('category'),
        "Unidades p/Caja": i.get('units_per_box'),
    } for i in data.get('inventory', [])])

    _write_sheet(workbook, "Meds. Externos", [{
        "Nombre Genérico": e.get('name'),
        "Nombre Comercial": e.get('commercialName'),
        "Ingrediente Activo": e.get('activeIngredient'),
        "Farmacia": e.get('pharmacy'),
        "Distribuidor GT": e.get('distributorGT'),
        "Registrado": _fmt_date(e.get('createdAt')),
    } for e in data.get('external_medicines', [])])

    _write_sheet(workbook, "Patologías", [{
        "Nombre Patología": p.get('name'),
        "Exámenes Asociados": ", ".join(p.get('exams') or []),
    } for p in data.get('pathologies', [])])

    _write_sheet(workbook, "Especialidades", [{"Especialidad": s.get('name')} for s in data.get('specialties', [])])

    users = data.get('users', [])
    _write_sheet(workbook, "Usuarios del Sistema", [{
        "Nombre": u.get('name'),
        "Email": u.get('email'),
        "Rol": u.get('role'),
        "Especialidad": u.get('specialty') or 'N/A',
        "Estado": 'ACTIVO' if u.get('isActive', True) is not False else 'INACTIVO',
        "Creado": _fmt_date(u.get('createdAt')),
    } for u in users])

    _write_sheet(workbook, "Auditoría", [{
        "Fecha": _fmt_date(entry.get('timestamp')),
        "Usuario": entry.get('user'),
        "Acción": entry.get('action'),
        "Detalle": entry.get('details'),
    } for entry in data.get('audit_logs', [])], widths={4: 60})

    files = list(_file_inventory(users, patients))
    if not files:
        files = [{"Info": "No hay archivos adjuntos en el sistema."}]
    _write_sheet(workbook, "Inventario Archivos", files)

    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


def _file_inventory(users: Iterable[Dict[str, Any]], patients: Iterable[Dict[str, Any]]):
    for u in users:
        cert = u.get('digitalCertData') or {}
        if cert.get('fileKey'):
            yield {
                "Contexto": "Firma Digital (.p12)",
                "Propietario": u.get('name'),
                "Detalle": f"Serial: {cert.get('serialNumber')}",
                "Fecha Registro": "N/A",
                "Ubicación": cert.get('fileKey'),
            }
    for p in patients:
        for f in p.get('historyFiles') or []:
            yield {
                "Contexto": "Expediente Paciente",
                "Propietario": p.get('fullName'),
                "Detalle": f.get('name'),
                "Fecha Registro": _fmt_date(f.get('uploadedAt')),
                "Ubicación": f.get('url'),
            }
