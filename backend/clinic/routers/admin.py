# clinic/routers/admin.py
#
# This router handles the admin panel: generic list/create/edit/delete over
# each catalog tab, spreadsheet import, whole-system backup and restore, the
# backup schedule and the master Excel report. Every endpoint is admin-only.

import logging
import math
from typing import Any, Dict, Literal

from fastapi import APIRouter, Body, Depends, File, HTTPException, Response, UploadFile

from ..audit import log_action
from ..backup import (
    backup_filename,
    generate_system_backup,
    get_backup_settings,
    restore_backup,
    save_backup_settings,
)
from ..crud import (
    db_create_patient,
    db_delete_document,
    db_get_document,
    db_list_audit_logs,
    db_list_collection,
    db_put_document,
    db_update_document,
)
from ..errors import DuplicatePatientError, InvalidBackupError, StaleStateError
from ..excel import XLSX_MEDIA_TYPE, build_master_report, map_import_row, read_sheet_rows
from ..models import BackupSettings, DeleteRequest, Paginated, PatientCreate
from ..security import ensure_role, get_current_user
from ..timeutils import now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

AdminTab = Literal['users', 'patients', 'inventory', 'laboratories', 'external', 'pathologies', 'specialties', 'logs']

TAB_COLLECTIONS = {
    'users': 'users',
    'patients': 'patients',
    'inventory': 'inventory',
    'laboratories': 'laboratory_catalog',
    'external': 'external_medicines',
    'pathologies': 'pathologies',
    'specialties': 'specialties',
    'logs': 'audit_logs',
}
SOFT_DELETE_TABS = ('users', 'patients')
IMPORT_TYPES = {'inventory': 'MEDICAMENTOS', 'laboratories': 'LABORATORIOS'}
REPORT_AUDIT_LIMIT = 2000


def require_admin(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    ensure_role(current_user, 'admin')
    return current_user


def _display_name(item: Dict[str, Any]) -> str:
    return item.get('name') or item.get('fullName') or item.get('commercialName') or ''


def _normalize_payload(tab: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    payload = {k: v for k, v in payload.items() if k not in ('id', 'uid')}
    if tab == 'pathologies' and isinstance(payload.get('exams'), str):
        payload['exams'] = [s.strip() for s in payload['exams'].split(',') if s.strip()]
    return payload


def _writable(tab: str) -> str:
    if tab == 'logs':
        raise HTTPException(status_code=400, detail="La bitácora es de solo lectura.")
    return TAB_COLLECTIONS[tab]


# --- Backup / restore ---

@router.get("/backup")
def download_backup(admin: Dict[str, Any] = Depends(require_admin)):
    """Full `.ah` snapshot of every tracked collection."""
    try:
        payload = generate_system_backup(admin['email'])
    except Exception as e:
        logger.error("ADMIN: Backup generation failed: %s", e)
        raise HTTPException(status_code=500, detail="Error al generar el respaldo.")
    return Response(
        content=payload,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{backup_filename()}"'},
    )


@router.post("/restore")
async def restore_system(
    file: UploadFile = File(...),
    confirm: bool = False,
    admin: Dict[str, Any] = Depends(require_admin)
):
    """Overwrites documents from a `.ah` file. Requires `confirm=true`."""
    if not confirm:
        raise HTTPException(
            status_code=400,
            detail="La restauración sobrescribe los datos actuales. Confirme con confirm=true.",
        )
    raw = await file.read()
    try:
        restored = restore_backup(raw, admin['email'])
    except InvalidBackupError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("ADMIN: Restore failed: %s", e)
        raise HTTPException(status_code=500, detail="Error durante la restauración. Parte de los datos pudo quedar restaurada.")
    return {"message": "Sistema restaurado.", "restored": restored}


@router.get("/backup/settings", response_model=BackupSettings)
def read_backup_settings(admin: Dict[str, Any] = Depends(require_admin)):
    return BackupSettings(**get_backup_settings())


@router.put("/backup/settings", response_model=BackupSettings)
def update_backup_settings(settings: BackupSettings, admin: Dict[str, Any] = Depends(require_admin)):
    try:
        saved = save_backup_settings({'enabled': settings.enabled, 'days': settings.days}, admin['email'])
    except Exception as e:
        logger.error("ADMIN: Could not save backup settings: %s", e)
        raise HTTPException(status_code=500, detail="Error al guardar la programación.")
    return BackupSettings(**saved)


@router.get("/report.xlsx")
def download_master_report(admin: Dict[str, Any] = Depends(require_admin)):
    try:
        data = {c: db_list_collection(c) for c in (
            'patients', 'consultations', 'inventory', 'external_medicines', 'pathologies', 'specialties', 'users',
        )}
        data['audit_logs'] = db_list_audit_logs(limit=REPORT_AUDIT_LIMIT)
        content = build_master_report(data)
    except Exception as e:
        logger.error("ADMIN: Master report failed: %s", e)
        raise HTTPException(status_code=500, detail="Error al generar el reporte.")
    log_action(admin['email'], 'EXPORTAR_EXCEL', 'Se descargó el reporte maestro en Excel con todas las tablas y archivos.')
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="Reporte_Maestro_AsociacionHumana.xlsx"'},
    )


# --- Catalog tabs ---

@router.get("/{tab}", response_model=Paginated)
def list_tab(
    tab: AdminTab,
    q: str = "",
    page: int = 1,
    perPage: int = 10,
    admin: Dict[str, Any] = Depends(require_admin)
):
    """Sorted by name (logs newest first), filtered by name or code substring."""
    try:
        if tab == 'logs':
            items = db_list_audit_logs()
        else:
            items = db_list_collection(TAB_COLLECTIONS[tab])
            items.sort(key=lambda i: _display_name(i).lower())
    except Exception as e:
        logger.error("ADMIN: Error loading %s: %s", tab, e)
        raise HTTPException(status_code=500, detail=f"Error cargando {tab}.")

    search = q.strip().lower()
    if search:
        items = [
            i for i in items
            if search in _display_name(i).lower()
            or search in str(i.get('billingCode') or i.get('id') or i.get('code') or '').lower()
        ]

    page = max(page, 1)
    per_page = max(perPage, 1)
    start = (page - 1) * per_page
    return Paginated(
        items=items[start:start + per_page],
        total=len(items),
        page=page,
        perPage=per_page,
        pages=math.ceil(len(items) / per_page),
    )


@router.post("/{tab}", status_code=201)
def create_tab_item(
    tab: AdminTab,
    payload: Dict[str, Any] = Body(...),
    admin: Dict[str, Any] = Depends(require_admin)
):
    collection = _writable(tab)
    if tab == 'users':
        raise HTTPException(status_code=400, detail="Las cuentas se crean desde /users.")

    payload = _normalize_payload(tab, payload)
    try:
        if tab == 'patients':
            created = db_create_patient(PatientCreate(**payload).model_dump(exclude_none=True))
        else:
            created = db_put_document(collection, dict(payload, createdAt=now_iso()))
    except DuplicatePatientError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error("ADMIN: Error creating %s item: %s", tab, e)
        raise HTTPException(status_code=500, detail="Error al procesar.")

    ref = created.get('billingCode') or created.get('id')
    log_action(admin['email'], f"CREACION_{tab.upper()}", f'Se creó: "{_display_name(created) or "Registro"}". ID/Ref: [{ref}]')
    return created


@router.put("/{tab}/{item_id}")
def update_tab_item(
    tab: AdminTab,
    item_id: str,
    payload: Dict[str, Any] = Body(...),
    admin: Dict[str, Any] = Depends(require_admin)
):
    collection = _writable(tab)
    payload = _normalize_payload(tab, payload)
    if not payload:
        raise HTTPException(status_code=400, detail="Sin cambios.")
    try:
        updated = db_update_document(collection, item_id, dict(payload, updatedAt=now_iso()))
    except StaleStateError:
        raise HTTPException(status_code=404, detail="Registro no encontrado.")
    except Exception as e:
        logger.error("ADMIN: Error updating %s/%s: %s", tab, item_id, e)
        raise HTTPException(status_code=500, detail="Error al procesar.")
    log_action(admin['email'], f"EDICION_{tab.upper()}", f'Se editó: "{_display_name(updated) or "Registro"}". ID/Ref: [{item_id}]')
    return updated


@router.delete("/{tab}/{item_id}")
def delete_tab_item(
    tab: AdminTab,
    item_id: str,
    request: DeleteRequest,
    admin: Dict[str, Any] = Depends(require_admin)
):
    """Users and patients are deactivated; catalog items are removed."""
    collection = _writable(tab)
    reason = request.reason.strip()
    if not reason:
        raise HTTPException(status_code=400, detail="Razón obligatoria")

    item = db_get_document(collection, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Registro no encontrado.")
    soft = tab in SOFT_DELETE_TABS
    try:
        if soft:
            db_update_document(collection, item_id, {'isActive': False, 'disableReason': reason})
        else:
            db_delete_document(collection, item_id)
    except Exception as e:
        logger.error("ADMIN: Error deleting %s/%s: %s", tab, item_id, e)
        raise HTTPException(status_code=500, detail="Error al borrar")

    action = 'INACTIVACION' if soft else 'ELIMINACION'
    log_action(
        admin['email'], f"{action}_{tab.upper()}",
        f'Se eliminó/desactivó: "{_display_name(item) or "Item"}". Motivo: {reason}',
    )
    return {"message": "Acción procesada", "softDelete": soft}


@router.post("/{tab}/import")
async def import_spreadsheet(
    tab: AdminTab,
    file: UploadFile = File(...),
    admin: Dict[str, Any] = Depends(require_admin)
):
    """One document per named row. Rows already written stay if a later one fails."""
    if tab not in IMPORT_TYPES:
        raise HTTPException(status_code=400, detail="Importación disponible solo para inventario y laboratorios.")
    content = await file.read()
    try:
        rows = read_sheet_rows(content)
    except Exception as e:
        logger.error("ADMIN: Could not read spreadsheet for %s: %s", tab, e)
        raise HTTPException(status_code=400, detail="Error al leer el archivo Excel. Verifique el formato.")

    collection = TAB_COLLECTIONS[tab]
    count = 0
    try:
        for row in rows:
            document = map_import_row(row, tab)
            if document is None:
                continue
            db_put_document(collection, dict(document, createdAt=now_iso()))
            count += 1
    except Exception as e:
        logger.error("ADMIN: Import into %s stopped after %d rows: %s", collection, count, e)
        raise HTTPException(status_code=500, detail=f"Importación interrumpida tras {count} registros.")

    log_action(admin['email'], f"IMPORTACION_{IMPORT_TYPES[tab]}", f"Se importaron {count} items desde Excel.")
    return {"imported": count}
