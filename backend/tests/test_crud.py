# backend/tests/test_crud.py
#
# Data-layer behavior against the in-memory tables from conftest.

import pytest

from clinic import crud
from clinic.errors import DuplicatePatientError, StaleStateError


def _patient(code, name, created="2024-01-01T00:00:00+00:00"):
    return {'id': code, 'billingCode': code, 'fullName': name, 'createdAt': created}


def test_create_patient_uses_billing_code_as_id(tables):
    # Act
    created = crud.db_create_patient({'billingCode': "1001", 'fullName': "  maría   LÓPEZ "})

    # Assert
    assert created['id'] == "1001"
    assert created['fullName'] == "María López"
    assert created['historyFiles'] == []
    assert tables['patients'].items["1001"]['isActive'] is True


def test_duplicate_billing_code_writes_nothing(tables):
    """A second registration under the same code must not overwrite the first."""
    # Arrange
    crud.db_create_patient({'billingCode': "1001", 'fullName': "María López"})
    writes_before = tables['patients'].put_calls

    # Act & Assert
    with pytest.raises(DuplicatePatientError) as excinfo:
        crud.db_create_patient({'billingCode': "1001", 'fullName': "Otra Persona"})
    assert str(excinfo.value) == "Código ya registrado"
    assert tables['patients'].put_calls == writes_before
    assert tables['patients'].items["1001"]['fullName'] == "María López"


def test_search_blank_returns_ten_most_recent(tables):
    for i in range(12):
        tables['patients'].items[str(i)] = _patient(str(i), f"Paciente {i}", f"2024-01-{i + 1:02d}T00:00:00+00:00")

    results = crud.db_search_patients("  ")

    assert len(results) == 10
    assert results[0]['id'] == "11"


def test_search_digits_matches_code_then_id_prefix(tables):
    tables['patients'].items["5521"] = _patient("5521", "Ana Gómez")
    tables['patients'].items["5522"] = _patient("5522", "Luis Gómez")

    assert [p['id'] for p in crud.db_search_patients("5521")] == ["5521"]
    assert [p['id'] for p in crud.db_search_patients("552")] == ["5521", "5522"]


def test_search_name_prefix_is_title_cased(tables):
    tables['patients'].items["1"] = _patient("1", "Ana Gómez")
    tables['patients'].items["2"] = _patient("2", "Andrés Ruiz")
    tables['patients'].items["3"] = _patient("3", "Luis Ana")

    assert [p['id'] for p in crud.db_search_patients("an")] == ["1", "2"]


def test_search_falls_back_to_substring(tables):
    tables['patients'].items["1"] = _patient("1", "Luis Ana Pérez")

    assert [p['id'] for p in crud.db_search_patients("pére")] == ["1"]


def test_conditional_update_rejects_stale_status(tables):
    # Arrange
    tables['consultations'].items["c1"] = {'id': "c1", 'status': 'finished'}

    # Act & Assert
    with pytest.raises(StaleStateError):
        crud.db_update_consultation("c1", {'status': 'in_progress'}, expected_status='waiting')
    assert tables['consultations'].items["c1"]['status'] == 'finished'


def test_update_missing_document_is_stale(tables):
    with pytest.raises(StaleStateError):
        crud.db_update_user("ghost", {'name': "Nadie"})


def test_reconsultation_flag_only_with_prior_consultation(tables):
    tables['patients'].items["1"] = _patient("1", "Ana Gómez")
    assert crud.db_set_patient_reconsultation("1") is False

    tables['consultations'].items["c1"] = {'id': "c1", 'patientId': "1", 'status': 'finished'}
    assert crud.db_set_patient_reconsultation("1") is True
    assert tables['patients'].items["1"]['consultationType'] == 'Reconsulta'


def test_open_consultation_starts_empty(tables):
    patient = {'id': "1", 'fullName': "Ana Gómez", 'age': 40, 'gender': 'F'}
    doctor = {'id': "d1", 'name': "Dra. Ruiz"}

    consultation = crud.db_open_consultation(patient, doctor, 'waiting', paymentAmount=150.0)

    stored = tables['consultations'].items[consultation['id']]
    assert stored['status'] == 'waiting'
    assert stored['patientName'] == "Ana Gómez"
    assert stored['printedDocs'] == {'prescription': False, 'labs': False, 'report': False}
    assert consultation['paymentAmount'] == 150.0


def test_active_consultations_filtered_by_doctor(tables):
    items = tables['consultations'].items
    items["a"] = {'id': "a", 'status': 'waiting', 'doctorId': "d1", 'date': 2}
    items["b"] = {'id': "b", 'status': 'in_progress', 'doctorId': "d1", 'date': 1}
    items["c"] = {'id': "c", 'status': 'waiting', 'doctorId': "d2", 'date': 3}
    items["d"] = {'id': "d", 'status': 'finished', 'doctorId': "d1", 'date': 4}

    assert [c['id'] for c in crud.db_list_active_consultations("d1")] == ["b", "a"]
    assert len(crud.db_list_active_consultations()) == 3


def test_notifications_for_user_or_role(tables):
    items = tables['notifications'].items
    items["n1"] = {'id': "n1", 'targetUserId': "u1", 'timestamp': "2024-01-01"}
    items["n2"] = {'id': "n2", 'targetRole': 'nurse', 'timestamp': "2024-01-03"}
    items["n3"] = {'id': "n3", 'targetRole': 'admin', 'timestamp': "2024-01-02"}
    items["n4"] = {'id': "n4", 'targetRole': 'all', 'timestamp': "2024-01-04"}

    assert [n['id'] for n in crud.db_list_notifications("u1", 'nurse')] == ["n4", "n2", "n1"]


def test_merge_setting_upserts(tables):
    crud.db_merge_setting("backup_config", {'enabled': True})
    crud.db_merge_setting("backup_config", {'days': [1]})

    assert crud.db_get_setting("backup_config") == {'id': "backup_config", 'enabled': True, 'days': [1]}
