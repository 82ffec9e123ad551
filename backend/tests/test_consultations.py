# backend/tests/test_consultations.py
#
# The consultation lifecycle through the API: check-in, attention, the
# finish gate, delivery, cancellation, edits and document printing.

import pytest

from conftest import make_user

DOCTOR = make_user("doc-1", 'doctor', "Elena Ruiz", specialty="Medicina Interna")
OTHER_DOCTOR = make_user("doc-2", 'doctor', "Mario Paz")
RECEPTIONIST = make_user("rec-1", 'receptionist', "Lucía Cano")
NURSE = make_user("nur-1", 'nurse', "Rosa Díaz")

EMPTY_SECTIONS = ['prescription', 'exams', 'referrals', 'nursing', 'signature']


@pytest.fixture
def clinic_data(tables, drafts):
    tables['users'].items[DOCTOR['id']] = dict(DOCTOR)
    tables['users'].items[OTHER_DOCTOR['id']] = dict(OTHER_DOCTOR)
    tables['patients'].items["1001"] = {
        'id': "1001", 'billingCode': "1001", 'fullName': "Ana Gómez", 'age': 34, 'gender': 'F',
        'consultationType': 'Nueva',
    }
    return tables


def _paid_appointment(tables, appointment_id="apt-1", doctor=DOCTOR):
    tables['appointments'].items[appointment_id] = {
        'id': appointment_id, 'patientId': "1001", 'patientName': "Ana Gómez",
        'doctorId': doctor['id'], 'doctorName': doctor['name'], 'date': 1714500000000,
        'status': 'paid_checked_in', 'paymentReceipt': "B-77", 'paymentAmount': 150,
    }


def _consultation(tables, status, consultation_id="c1", doctor=DOCTOR, **extra):
    item = {
        'id': consultation_id, 'status': status, 'patientId': "1001", 'patientName': "Ana Gómez",
        'doctorId': doctor['id'], 'doctorName': doctor['name'], 'date': 1714500000000,
        'diagnosis': "", 'omittedFields': {},
        'printedDocs': {'prescription': False, 'labs': False, 'report': False},
    }
    item.update(extra)
    tables['consultations'].items[consultation_id] = item
    return item


def _actions(tables):
    return [e['action'] for e in tables['audit_logs'].items.values()]


def test_attend_then_finish_with_diagnosis_only(client, login_as, clinic_data):
    """Attending a paid appointment and finishing with five confirmed omissions."""
    # Arrange
    tables = clinic_data
    _paid_appointment(tables)
    login_as(DOCTOR)

    # Act
    attend = client.post("/appointments/apt-1/attend")
    consultation_id = attend.json()['id']
    finish = client.post(f"/consultations/{consultation_id}/finish", json={
        'form': {'diagnosis': "Resfriado común"},
        'confirmedKeys': EMPTY_SECTIONS,
    })

    # Assert
    assert attend.status_code == 201
    assert attend.json()['status'] == 'in_progress'
    assert finish.status_code == 200
    body = finish.json()
    assert body['closesEncounter'] is True
    assert body['consultation']['status'] == 'finished'
    assert body['consultation']['omittedFields'] == {s: True for s in EMPTY_SECTIONS}
    assert tables['appointments'].items["apt-1"]['status'] == 'completed'
    assert tables['appointments'].items["apt-1"]['consultationId'] == consultation_id
    assert 'FINALIZACION_CONSULTA' in _actions(tables)


def test_finish_with_one_unconfirmed_section_is_rejected(client, login_as, clinic_data):
    # Arrange
    _consultation(clinic_data, 'in_progress')
    login_as(DOCTOR)

    # Act
    response = client.post("/consultations/c1/finish", json={
        'form': {'diagnosis': "Resfriado común"},
        'confirmedKeys': EMPTY_SECTIONS[:4],
    })

    # Assert
    assert response.status_code == 422
    assert response.json()['detail']['missing'] == ["Firma"]
    assert clinic_data['consultations'].items["c1"]['status'] == 'in_progress'


def test_finish_ignores_client_supplied_omissions(client, login_as, clinic_data):
    _consultation(clinic_data, 'in_progress')
    login_as(DOCTOR)

    response = client.post("/consultations/c1/finish", json={
        'form': {
            'diagnosis': "Gastritis",
            'prescription': [{'name': "Omeprazol 20mg", 'quantity': 14, 'dosage': "1 cap en ayunas"}],
            'exams': ["Helicobacter Pylori"],
            'specialtyReferrals': [{'specialty': "Nutrición"}],
            'followUpText': "Dieta blanda",
        },
        'confirmedKeys': ['signature', 'diagnosis'],
    })

    assert response.status_code == 200
    assert response.json()['consultation']['omittedFields'] == {'signature': True}


def test_finish_twice_is_a_conflict(client, login_as, clinic_data):
    _consultation(clinic_data, 'finished')
    login_as(DOCTOR)

    response = client.post("/consultations/c1/finish", json={'form': {'diagnosis': "x"}, 'confirmedKeys': EMPTY_SECTIONS})

    assert response.status_code == 409


def test_doctor_cannot_finish_another_doctors_consultation(client, login_as, clinic_data):
    _consultation(clinic_data, 'in_progress', doctor=OTHER_DOCTOR)
    login_as(DOCTOR)

    response = client.post("/consultations/c1/finish", json={'form': {'diagnosis': "x"}, 'confirmedKeys': EMPTY_SECTIONS})

    assert response.status_code == 403


def test_unpaid_appointment_cannot_be_attended(client, login_as, clinic_data):
    _paid_appointment(clinic_data)
    clinic_data['appointments'].items["apt-1"]['status'] = 'confirmed_phone'
    login_as(DOCTOR)

    response = client.post("/appointments/apt-1/attend")

    assert response.status_code == 409
    assert clinic_data['consultations'].items == {}


def test_check_in_puts_patient_in_waiting_room(client, login_as, clinic_data):
    # Arrange
    login_as(RECEPTIONIST)

    # Act
    response = client.post("/consultations/check-in", json={
        'patientId': "1001", 'doctorId': DOCTOR['id'], 'paymentReceipt': "B-12", 'paymentAmount': 150,
    })

    # Assert
    assert response.status_code == 201
    assert response.json()['status'] == 'waiting'
    assert response.json()['doctorName'] == "Elena Ruiz"
    titles = [n['title'] for n in clinic_data['notifications'].items.values()]
    assert "Nueva Consulta Asignada" in titles
    assert 'CREACION_CONSULTA' in _actions(clinic_data)


def test_check_in_marks_returning_patient_as_reconsultation(client, login_as, clinic_data):
    _consultation(clinic_data, 'delivered', consultation_id="old")
    login_as(RECEPTIONIST)

    client.post("/consultations/check-in", json={
        'patientId': "1001", 'doctorId': DOCTOR['id'], 'paymentReceipt': "B-12", 'paymentAmount': 150,
    })

    assert clinic_data['patients'].items["1001"]['consultationType'] == 'Reconsulta'


def test_check_in_requires_front_desk_role(client, login_as, clinic_data):
    login_as(NURSE)

    response = client.post("/consultations/check-in", json={
        'patientId': "1001", 'doctorId': DOCTOR['id'], 'paymentReceipt': "B-12", 'paymentAmount': 150,
    })

    assert response.status_code == 403


def test_start_returns_autosaved_draft(client, login_as, clinic_data):
    # Arrange
    _consultation(clinic_data, 'waiting')
    login_as(DOCTOR)
    client.put("/consultations/c1/draft", json={'step': 'diagnosis', 'form': {'diagnosis': "Borrador"}})

    # Act
    response = client.post("/consultations/c1/start")

    # Assert
    assert response.status_code == 200
    assert response.json()['consultation']['status'] == 'in_progress'
    assert response.json()['draft']['form'] == {'diagnosis': "Borrador"}


def test_cancel_waiting_consultation(client, login_as, clinic_data):
    _consultation(clinic_data, 'waiting')
    login_as(RECEPTIONIST)

    response = client.post("/consultations/c1/cancel", json={'reason': "Paciente se retiró"})

    assert response.status_code == 200
    assert "c1" not in clinic_data['consultations'].items
    assert 'ANULACION_CONSULTA' in _actions(clinic_data)


def test_cancel_requires_reason(client, login_as, clinic_data):
    _consultation(clinic_data, 'waiting')
    login_as(RECEPTIONIST)

    response = client.post("/consultations/c1/cancel", json={'reason': "   "})

    assert response.status_code == 422
    assert "c1" in clinic_data['consultations'].items


def test_cancel_only_in_waiting_room(client, login_as, clinic_data):
    _consultation(clinic_data, 'in_progress')
    login_as(RECEPTIONIST)

    response = client.post("/consultations/c1/cancel", json={'reason': "Error"})

    assert response.status_code == 409


def test_doctor_cannot_deliver(client, login_as, clinic_data):
    _consultation(clinic_data, 'finished')
    login_as(DOCTOR)

    response = client.post("/consultations/c1/deliver", json={})

    assert response.status_code == 403


def test_deliver_with_unprinted_documents_needs_reason(client, login_as, clinic_data):
    # Arrange
    _consultation(clinic_data, 'finished', printedDocs={'prescription': True, 'labs': True, 'report': False})
    login_as(NURSE)

    # Act
    without_reason = client.post("/consultations/c1/deliver", json={})
    with_reason = client.post("/consultations/c1/deliver", json={'nonPrintReason': "Sin papel"})

    # Assert
    assert without_reason.status_code == 400
    assert with_reason.status_code == 200
    assert with_reason.json()['status'] == 'delivered'
    assert with_reason.json()['nonPrintReason'] == "Sin papel"


def test_deliver_after_printing_everything(client, login_as, clinic_data, mocker):
    # Arrange
    mocker.patch("clinic.routers.consultations.generate_document", return_value=b"%PDF-1.4 fake")
    _consultation(clinic_data, 'finished', diagnosis="Gripe")
    login_as(NURSE)

    # Act
    for doc_type in ('prescription', 'labs', 'report'):
        pdf = client.get(f"/consultations/c1/documents/{doc_type}")
        assert pdf.status_code == 200
        assert pdf.headers['content-type'] == "application/pdf"
    response = client.post("/consultations/c1/deliver", json={})

    # Assert
    assert response.status_code == 200
    assert response.json()['printedDocs'] == {'prescription': True, 'labs': True, 'report': True}
    assert _actions(clinic_data).count('IMPRESION_DOCUMENTO') == 3


def test_doctor_print_is_not_recorded(client, login_as, clinic_data, mocker):
    mocker.patch("clinic.routers.consultations.generate_document", return_value=b"%PDF-1.4 fake")
    _consultation(clinic_data, 'finished')
    login_as(DOCTOR)

    client.get("/consultations/c1/documents/labs")

    assert clinic_data['consultations'].items["c1"]['printedDocs']['labs'] is False


def test_document_failure_is_a_server_error(client, login_as, clinic_data, mocker):
    mocker.patch("clinic.routers.consultations.generate_document", side_effect=RuntimeError("boom"))
    _consultation(clinic_data, 'finished')
    login_as(NURSE)

    response = client.get("/consultations/c1/documents/report")

    assert response.status_code == 500
    assert response.json()['detail'] == "Error al generar el documento."


def test_edit_marks_filled_omissions_as_edited(client, login_as, clinic_data):
    # Arrange
    _consultation(
        clinic_data, 'finished', diagnosis="Gripe",
        omittedFields={'prescription': True, 'nursing': True}, signature={'type': 'manual'},
    )
    login_as(DOCTOR)

    # Act
    response = client.put("/consultations/c1", json={
        'diagnosis': "Gripe",
        'prescription': [{'name': "Paracetamol 500mg", 'quantity': 10, 'dosage': "1 tab cada 8 horas"}],
    })

    # Assert
    assert response.status_code == 200
    assert response.json()['omittedFields'] == {'prescription': 'edited', 'nursing': True}
    assert clinic_data['consultations'].items["c1"]['signature'] == {'type': 'manual'}
    assert 'EDICION_CONSULTA' in _actions(clinic_data)


def test_active_list_is_scoped_to_the_doctor(client, login_as, clinic_data):
    _consultation(clinic_data, 'waiting', consultation_id="mine")
    _consultation(clinic_data, 'waiting', consultation_id="theirs", doctor=OTHER_DOCTOR)
    login_as(DOCTOR)

    response = client.get("/consultations/active")

    assert [c['id'] for c in response.json()] == ["mine"]


def test_form_cannot_carry_a_digital_signature(client, login_as, clinic_data):
    """Digital signatures only come from the stored certificate, never from the form body."""
    # Arrange
    _consultation(clinic_data, 'in_progress')
    login_as(DOCTOR)
    forged = {'type': 'digital_p12', 'signerName': "Nadie", 'certificateSerial': "FAKE"}

    # Act
    response = client.post("/consultations/c1/finish", json={
        'form': {'diagnosis': "Gripe", 'signature': forged},
        'confirmedKeys': EMPTY_SECTIONS,
    })

    # Assert
    assert response.status_code == 422
    assert clinic_data['consultations'].items["c1"]['status'] == 'in_progress'
    assert 'signature' not in clinic_data['consultations'].items["c1"]


def test_digital_finish_without_certificate_is_refused(client, login_as, clinic_data):
    _consultation(clinic_data, 'in_progress')
    login_as(DOCTOR)

    response = client.post("/consultations/c1/finish", json={
        'form': {'diagnosis': "Gripe"},
        'confirmedKeys': EMPTY_SECTIONS,
        'signature': {'method': 'digital', 'password': "cualquiera"},
    })

    assert response.status_code == 400
    assert clinic_data['consultations'].items["c1"]['status'] == 'in_progress'


def test_manual_form_signature_is_stored_as_a_bare_marker(client, login_as, clinic_data):
    _consultation(clinic_data, 'in_progress')
    login_as(DOCTOR)

    response = client.post("/consultations/c1/finish", json={
        'form': {'diagnosis': "Gripe", 'signature': {'type': 'manual', 'signerName': "Otro Nombre"}},
        'confirmedKeys': ['prescription', 'exams', 'referrals', 'nursing'],
    })

    assert response.status_code == 200
    assert clinic_data['consultations'].items["c1"]['signature'] == {'type': 'manual'}


def test_edit_cannot_swap_in_a_digital_signature(client, login_as, clinic_data):
    _consultation(clinic_data, 'finished', diagnosis="Gripe", signature={'type': 'manual'})
    login_as(DOCTOR)

    response = client.put("/consultations/c1", json={
        'diagnosis': "Gripe", 'signature': {'type': 'digital_p12', 'certificateSerial': "FAKE"},
    })

    assert response.status_code == 422
    assert clinic_data['consultations'].items["c1"]['signature'] == {'type': 'manual'}


def test_draft_is_private_to_the_attending_doctor(client, login_as, clinic_data):
    # Arrange
    _consultation(clinic_data, 'in_progress')
    login_as(DOCTOR)
    client.put("/consultations/c1/draft", json={'form': {'diagnosis': "secreto"}})

    # Act
    login_as(OTHER_DOCTOR)
    read = client.get("/consultations/c1/draft")
    overwrite = client.put("/consultations/c1/draft", json={'form': {'diagnosis': "pisado"}})

    # Assert
    assert read.status_code == 403
    assert overwrite.status_code == 403
    login_as(DOCTOR)
    assert client.get("/consultations/c1/draft").json()['draft']['form'] == {'diagnosis': "secreto"}


def test_draft_written_by_someone_else_is_not_returned(client, login_as, clinic_data):
    _consultation(clinic_data, 'in_progress')
    login_as(make_user("adm-1", 'admin', "Admin General"))
    client.put("/consultations/c1/draft", json={'form': {'diagnosis': "del admin"}})

    login_as(DOCTOR)
    response = client.get("/consultations/c1/draft")

    assert response.status_code == 200
    assert response.json()['draft'] is None


def test_draft_for_unknown_consultation_is_not_found(client, login_as, clinic_data):
    login_as(DOCTOR)

    assert client.put("/consultations/ghost/draft", json={'form': {}}).status_code == 404
    assert client.get("/consultations/ghost/draft").status_code == 404


@pytest.mark.parametrize("user", [NURSE, DOCTOR])
def test_cancel_requires_front_desk_role(client, login_as, clinic_data, user):
    _consultation(clinic_data, 'waiting')
    login_as(user)

    response = client.post("/consultations/c1/cancel", json={'reason': "Paciente se retiró"})

    assert response.status_code == 403
    assert "c1" in clinic_data['consultations'].items
