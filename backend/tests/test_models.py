# backend/tests/test_models.py
#
# Validation rules carried by the request models.

import pytest
from pydantic import ValidationError

from clinic.models import (
    Address,
    BackupSettings,
    CancelRequest,
    EmailChange,
    PatientCreate,
    PatientUpdate,
    title_case,
)


def test_title_case_collapses_spaces():
    assert title_case("  maynor   BOTEO ") == "Maynor Boteo"


def test_patient_name_is_title_cased():
    patient = PatientCreate(fullName="ana lucía PÉREZ", billingCode=" 12345 ")
    assert patient.fullName == "Ana Lucía Pérez"
    assert patient.billingCode == "12345"


def test_patient_requires_billing_code():
    with pytest.raises(ValidationError):
        PatientCreate(fullName="Ana Pérez", billingCode="   ")


def test_igss_patient_requires_protocol_code():
    with pytest.raises(ValidationError):
        PatientCreate(fullName="Ana Pérez", billingCode="1", origin="IGSS")
    patient = PatientCreate(fullName="Ana Pérez", billingCode="1", origin="IGSS", protocol_code="P-77")
    assert patient.protocol_code == "P-77"


def test_no_responsible_fills_placeholders():
    patient = PatientCreate(fullName="Ana Pérez", billingCode="1", noResponsible=True, responsibleName="Juan")
    assert patient.responsibleName == "No hay"
    assert patient.responsiblePhone == "No hay"
    assert patient.responsibleEmail == "No hay"


def test_patient_age_bounds():
    with pytest.raises(ValidationError):
        PatientCreate(fullName="Ana Pérez", billingCode="1", age=121)


def test_address_cascade_clear():
    address = Address(country="Guatemala", department=None, municipality="Mixco", zone="4")
    assert address.department is None
    assert address.municipality is None
    assert address.zone is None


def test_partial_patient_update_keeps_unset_fields_out():
    changes = PatientUpdate(phone="5555-1234")
    assert changes.model_dump(exclude_unset=True) == {"phone": "5555-1234"}


def test_cancel_reason_cannot_be_blank():
    with pytest.raises(ValidationError):
        CancelRequest(reason="   ")
    assert CancelRequest(reason="  paciente no llegó ").reason == "paciente no llegó"


def test_email_change_validation():
    assert EmailChange(newEmail=" nuevo@clinica.gt ").newEmail == "nuevo@clinica.gt"
    with pytest.raises(ValidationError):
        EmailChange(newEmail="sin-arroba")


def test_backup_days_are_weekdays():
    assert BackupSettings(enabled=True, days=[5, 1, 1]).days == [1, 5]
    with pytest.raises(ValidationError):
        BackupSettings(enabled=True, days=[7])
