# backend/tests/test_accounting.py
#
# Income report, the scheduled backup Lambda and the seed script.

import time
from unittest.mock import MagicMock

import pytest

import seed_data
from backup_lambda import app as backup_lambda
from clinic.routers.accounting import income_summary
from conftest import make_user

ADMIN = make_user("adm-1", 'admin', "Admin General")


def test_income_summary(tables):
    # Arrange
    items = tables['consultations'].items
    items["a"] = {'id': "a", 'date': 1000, 'paymentAmount': 150}
    items["b"] = {'id': "b", 'date': 2000, 'paymentAmount': 250.5}
    items["c"] = {'id': "c", 'date': 9000, 'paymentAmount': 999}

    # Act
    summary = income_summary(0, 5000)

    # Assert
    assert summary.totalIncome == 400.5
    assert summary.consultationCount == 2
    assert summary.averageTicket == 200.25
    assert [t['id'] for t in summary.transactions] == ["b", "a"]


def test_income_summary_is_zero_on_read_failure(mocker):
    mocker.patch("clinic.routers.accounting.db_list_consultations_between", side_effect=RuntimeError("down"))

    summary = income_summary(0, 5000)

    assert summary.totalIncome == 0
    assert summary.transactions == []


def test_income_endpoint_is_admin_only(client, login_as, tables):
    login_as(make_user("rec-1", 'receptionist'))
    assert client.get("/accounting/income", params={'start': 0, 'end': 1}).status_code == 403

    login_as(ADMIN)
    assert client.get("/accounting/income", params={'start': 0, 'end': 1}).json()['consultationCount'] == 0


def test_backup_lambda_skips_when_not_due(tables, mocker):
    s3 = mocker.patch("backup_lambda.app.s3_client", MagicMock())

    assert backup_lambda.handler({}, None) == {"status": "skipped"}
    s3.put_object.assert_not_called()


def test_backup_lambda_writes_when_due(tables, mocker):
    # Arrange
    s3 = mocker.patch("backup_lambda.app.s3_client", MagicMock())
    tables['system_settings'].items["backup_config"] = {
        'id': "backup_config", 'enabled': True, 'days': [0, 1, 2, 3, 4, 5, 6],
    }

    # Act
    result = backup_lambda.handler({}, None)

    # Assert
    assert result['status'] == "ok"
    assert result['key'].startswith("backups/AsociacionHumana_Respaldo_")
    s3.put_object.assert_called_once()
    assert tables['system_settings'].items["backup_config"]['lastBackupDate'] is not None


def test_seed_catalogs_and_inventory(tables):
    assert seed_data.seed_specialties() == len(seed_data.SPECIALTIES)
    assert seed_data.seed_pathologies() == len(seed_data.PATHOLOGIES)
    assert "Cardiología" in tables['specialties'].items
    assert tables['pathologies'].items["Hipertensión Arterial"]['exams'][0] == "Electrocardiograma (EKG)"

    assert seed_data.seed_inventory() == 2
    assert seed_data.seed_inventory() == 0


def test_seed_inventory_times_out(tables, mocker):
    """The deadline bounds the call even while the write is still hanging."""
    mocker.patch("seed_data.db_put_document", side_effect=lambda *args: time.sleep(2))

    started = time.monotonic()
    with pytest.raises(TimeoutError, match="TIEMPO AGOTADO"):
        seed_data.seed_inventory(timeout_seconds=0.1)

    assert time.monotonic() - started < 1
