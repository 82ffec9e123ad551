# clinic/routers/medicines.py
#
# This router handles medicine lookup for prescriptions: a hybrid search over
# the internal inventory and the external medicine catalog, registration of
# external medicines, and the read-only clinical catalogs used by the wizard.

import logging
from typing import Any, Dict, List, Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from ..crud import db_find_by_name, db_list_collection, db_put_document
from ..dosage import analyze_external_medicine
from ..models import ExternalMedicineRequest
from ..security import get_current_user
from ..timeutils import now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/medicines", tags=["Medicines"])

SEARCH_LIMIT = 5
CATALOG_COLLECTIONS = {
    'pathologies': 'pathologies',
    'specialties': 'specialties',
    'laboratories': 'laboratory_catalog',
}


def _as_medicine(item: Dict[str, Any], external: bool) -> Dict[str, Any]:
    return {
        'id': item['id'],
        'name': item.get('name'),
        'stock': 0 if external else (item.get('stock') or 0),
        'price': 0 if external else (item.get('price') or 0),
        'presentation': item.get('presentation') or ('Externo' if external else ''),
        'units_per_box': item.get('units_per_box') or 1,
        'isExternal': external or bool(item.get('isExternal')),
    }


def _prefix_matches(items: List[Dict[str, Any]], prefix: str) -> List[Dict[str, Any]]:
    matches = sorted((i for i in items if (i.get('name') or '').startswith(prefix)), key=lambda i: i.get('name') or '')
    return matches[:SEARCH_LIMIT]


def search_medicines(term: str) -> List[Dict[str, Any]]:
    """
    Blank: the first five of each catalog by name. Otherwise a capitalized
    name prefix over both catalogs, plus a lowercase prefix over external
    medicines (typed by hand), de-duplicated by id.
    """
    inventory = db_list_collection('inventory')
    external = db_list_collection('external_medicines')

    clean = (term or '').strip()
    if not clean:
        first_inventory = sorted(inventory, key=lambda i: i.get('name') or '')[:SEARCH_LIMIT]
        first_external = sorted(external, key=lambda i: i.get('name') or '')[:SEARCH_LIMIT]
        return [_as_medicine(i, False) for i in first_inventory] + [_as_medicine(i, True) for i in first_external]

    lower = clean.lower()
    capitalized = lower[:1].upper() + lower[1:]
    results = [_as_medicine(i, False) for i in _prefix_matches(inventory, capitalized)]
    results += [_as_medicine(i, True) for i in _prefix_matches(external, capitalized)]
    if capitalized != lower:
        results += [_as_medicine(i, True) for i in _prefix_matches(external, lower)]

    unique: Dict[str, Dict[str, Any]] = {}
    for item in results:
        unique.setdefault(item['id'], item)
    return list(unique.values())


@router.get("/search")
def search(q: str = "", current_user: Dict[str, Any] = Depends(get_current_user)):
    try:
        return search_medicines(q)
    except Exception as e:
        logger.error("MEDICINES: Search failed for %r: %s", q, e)
        raise HTTPException(status_code=500, detail="Error al buscar medicamentos.")


@router.post("/external", status_code=201)
async def register_external(
    request: ExternalMedicineRequest,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Registers an external medicine once per name, enriched by AI analysis."""
    name = request.name.strip()
    existing = db_find_by_name('external_medicines', name)
    if existing:
        return existing

    analysis = await analyze_external_medicine(name)
    try:
        return db_put_document('external_medicines', {
            'name': name,
            'activeIngredient': analysis.get('activeIngredient') or '',
            'distributorGT': analysis.get('distributorGT') or '',
            'pharmacy': analysis.get('pharmacy') or '',
            'commercialName': analysis.get('commercialName') or name,
            'createdAt': now_iso(),
            'isExternal': True,
        })
    except Exception as e:
        logger.error("MEDICINES: Error saving external med %s: %s", name, e)
        raise HTTPException(status_code=500, detail="Error al registrar el medicamento externo.")


@router.get("/catalog/{kind}")
def read_catalog(
    kind: Literal['pathologies', 'specialties', 'laboratories'],
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    try:
        items = db_list_collection(CATALOG_COLLECTIONS[kind])
    except Exception as e:
        logger.error("MEDICINES: Error loading catalog %s: %s", kind, e)
        raise HTTPException(status_code=500, detail="Error al cargar el catálogo.")
    return sorted(items, key=lambda i: (i.get('name') or '').lower())
