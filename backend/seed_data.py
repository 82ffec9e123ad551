# seed_data.py
#
# Loads the starter catalogs into DynamoDB: specialties and pathologies
# (document id = name, so re-running overwrites instead of duplicating) and a
# small demo inventory written only when a medicine of that name is absent.
#
# Usage (from backend/):  python seed_data.py

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

from clinic.crud import db_find_by_name, db_put_document

SEED_TIMEOUT_SECONDS = 8

SPECIALTIES = [
    "Cardiología", "Neurología", "Pediatría", "Ginecología",
    "Nutrición", "Psiquiatría", "Traumatología", "Medicina Interna",
]

PATHOLOGIES = [
    {
        "name": "Diabetes Mellitus Tipo 2",
        "exams": ["Glucosa en Ayunas", "Hemoglobina Glicosilada (HbA1c)", "Orina Completa", "Creatinina Sérica", "Perfil Lipídico"],
    },
    {
        "name": "Hipertensión Arterial",
        "exams": ["Electrocardiograma (EKG)", "Perfil Lipídico", "Creatinina", "Potasio Sérico", "Ácido Úrico"],
    },
    {
        "name": "Síndrome Metabólico",
        "exams": ["Glucosa en Ayunas", "Triglicéridos", "Colesterol HDL/LDL", "Insulina Basal", "Ácido Úrico"],
    },
    {
        "name": "Infección Urinaria Recurrente",
        "exams": ["Urocultivo", "Hematología Completa", "Orina Completa", "Nitrógeno de Urea", "Creatinina"],
    },
    {
        "name": "Anemia Ferropénica",
        "exams": ["Hematología Completa", "Ferritina", "Hierro Sérico", "Capacidad de Fijación de Hierro", "Sangre Oculta en Heces"],
    },
    {
        "name": "Control Prenatal (Primer Trimestre)",
        "exams": ["Hematología Completa", "Grupo Sanguíneo y Rh", "VDRL/RPR", "VIH", "Glucosa en Ayunas", "Orina Completa"],
    },
]

DEMO_INVENTORY = [
    {"name": "Amoxicilina 500mg", "stock": 50, "units_per_box": 100, "price": 150,
     "presentation": "Caja x 100 tabletas", "category": "Antibiótico"},
    {"name": "Paracetamol 500mg", "stock": 200, "units_per_box": 100, "price": 85,
     "presentation": "Caja x 100 tabletas", "category": "Analgésico"},
]


def seed_specialties() -> int:
    for name in SPECIALTIES:
        db_put_document('specialties', {'id': name, 'name': name})
    return len(SPECIALTIES)


def seed_pathologies() -> int:
    for pathology in PATHOLOGIES:
        db_put_document('pathologies', dict(pathology, id=pathology['name']))
    return len(PATHOLOGIES)


def seed_inventory(timeout_seconds: float = SEED_TIMEOUT_SECONDS) -> int:
    """Writes missing demo medicines. All writes share one deadline."""
    deadline = time.monotonic() + timeout_seconds
    count = 0
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        for medicine in DEMO_INVENTORY:
            if db_find_by_name('inventory', medicine['name']):
                continue
            print(f"Escribiendo: {medicine['name']}")
            future = executor.submit(db_put_document, 'inventory', dict(medicine))
            try:
                future.result(timeout=max(deadline - time.monotonic(), 0))
            except FutureTimeout:
                # A hung write must not hold the caller past the deadline
                executor.shutdown(wait=False, cancel_futures=True)
                raise TimeoutError("TIEMPO AGOTADO")
            count += 1
    finally:
        executor.shutdown(wait=False)
    return count


def main() -> None:
    try:
        print("Insertando Especialidades...")
        seed_specialties()
        print("Insertando Patologías...")
        seed_pathologies()
        count = seed_inventory()
        print(f"¡Finalizado! {count} medicamentos nuevos en inventario.")
    except Exception as exc:
        print(f"Error crítico en la carga inicial: {exc}")
        raise


if __name__ == "__main__":
    main()
