# backend/tests/conftest.py
#
# Shared fixtures. Environment variables must be set BEFORE any `clinic`
# module is imported, because settings and table resources are created at
# import time.

import os

os.environ.setdefault('AWS_REGION', "us-east-1")
os.environ.setdefault('AWS_ACCESS_KEY_ID', "testing")
os.environ.setdefault('AWS_SECRET_ACCESS_KEY', "testing")
os.environ['COGNITO_REGION'] = "us-east-1"
os.environ['COGNITO_USERPOOL_ID'] = "us-east-1_dummy"
os.environ['API_JWT_SECRET_NAME'] = "dummy_secret_name"
os.environ['API_JWT_SECRET'] = "a_super_secret_key_for_testing"
os.environ.pop('GEMINI_API_KEY', None)
os.environ.pop('SENDGRID_API_KEY', None)

from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient


# --- In-memory DynamoDB stand-in ---

def _condition_failed(operation: str) -> ClientError:
    return ClientError(
        {'Error': {'Code': 'ConditionalCheckFailedException', 'Message': 'The conditional request failed'}},
        operation,
    )


def _matches(condition, item: Dict[str, Any]) -> bool:
    """Evaluates the boto3 condition objects used by the data layer."""
    expression = condition.get_expression()
    operator = expression['operator']
    values = expression['values']
    if operator == 'AND':
        return all(_matches(v, item) for v in values)
    if operator == 'OR':
        return any(_matches(v, item) for v in values)
    current = item.get(values[0].name)
    if operator == '=':
        return current == values[1]
    if operator == 'IN':
        return current in values[1]
    if operator == 'BETWEEN':
        return current is not None and values[1] <= current <= values[2]
    raise NotImplementedError(operator)


class FakeBatchWriter:
    def __init__(self, table: "FakeTable"):
        self.table = table

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def put_item(self, Item):
        self.table.put_item(Item=Item)


class FakeTable:
    """Dict-backed table keyed by `id`, covering the calls the data layer makes."""

    def __init__(self, name: str):
        self.name = name
        self.items: Dict[str, Dict[str, Any]] = {}
        self.put_calls = 0

    def get_item(self, Key):
        item = self.items.get(Key['id'])
        return {'Item': dict(item)} if item else {}

    def put_item(self, Item, ConditionExpression: Optional[str] = None):
        if ConditionExpression == "attribute_not_exists(id)" and Item['id'] in self.items:
            raise _condition_failed('PutItem')
        self.put_calls += 1
        self.items[Item['id']] = dict(Item)
        return {}

    def delete_item(self, Key):
        self.items.pop(Key['id'], None)
        return {}

    def update_item(self, Key, UpdateExpression, ExpressionAttributeValues,
                    ExpressionAttributeNames=None, ConditionExpression=None, ReturnValues=None):
        names = ExpressionAttributeNames or {}
        values = ExpressionAttributeValues
        existing = self.items.get(Key['id'])
        if ConditionExpression:
            if 'attribute_exists(id)' in ConditionExpression and existing is None:
                raise _condition_failed('UpdateItem')
            if '#expected' in names and (existing or {}).get(names['#expected']) != values[':expected']:
                raise _condition_failed('UpdateItem')

        item = dict(existing or {'id': Key['id']})
        if 'list_append' in UpdateExpression:
            item['historyFiles'] = list(item.get('historyFiles') or []) + list(values[':f'])
            item['updatedAt'] = values[':ua']
        else:
            for clause in UpdateExpression[len("SET "):].split(", "):
                name_ref, value_ref = [p.strip() for p in clause.split("=")]
                item[names.get(name_ref, name_ref)] = values[value_ref]
        self.items[Key['id']] = item
        return {'Attributes': dict(item)}

    def scan(self, FilterExpression=None, ExclusiveStartKey=None):
        items = [dict(i) for i in self.items.values()]
        if FilterExpression is not None:
            items = [i for i in items if _matches(FilterExpression, i)]
        return {'Items': items}

    def batch_writer(self, overwrite_by_pkeys: Optional[List[str]] = None):
        return FakeBatchWriter(self)


TABLE_ATTRS = {
    'users': 'users_table',
    'patients': 'patients_table',
    'consultations': 'consultations_table',
    'appointments': 'appointments_table',
    'notifications': 'notifications_table',
    'audit_logs': 'audit_logs_table',
    'inventory': 'inventory_table',
    'laboratory_catalog': 'laboratory_table',
    'external_medicines': 'external_medicines_table',
    'pathologies': 'pathologies_table',
    'specialties': 'specialties_table',
    'system_settings': 'system_settings_table',
}


@pytest.fixture
def tables(monkeypatch) -> Dict[str, FakeTable]:
    """Replaces every table resource with an in-memory FakeTable."""
    from clinic import crud, database

    fakes = {}
    for collection, attr in TABLE_ATTRS.items():
        fake = FakeTable(collection)
        fakes[collection] = fake
        monkeypatch.setattr(database, attr, fake)
        if hasattr(crud, attr):
            monkeypatch.setattr(crud, attr, fake)
    return fakes


@pytest.fixture
def drafts(monkeypatch, tmp_path):
    """Points the draft store at a temporary directory."""
    from clinic import drafts as drafts_module
    from clinic.routers import consultations

    store = drafts_module.DraftStore(str(tmp_path / "drafts"))
    monkeypatch.setattr(drafts_module, "draft_store", store)
    monkeypatch.setattr(consultations, "draft_store", store)
    return store


# --- Users & API client ---

def make_user(user_id: str, role: str, name: str = "Usuario Prueba", **extra) -> Dict[str, Any]:
    user = {
        'id': user_id,
        'email': f"{user_id}@asociacionhumana.test",
        'name': name,
        'role': role,
        'isActive': True,
    }
    user.update(extra)
    return user


@pytest.fixture
def client():
    from clinic.main import app

    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login_as():
    """Returns a function that makes the given user the authenticated caller."""
    from clinic.main import app
    from clinic.security import get_current_user

    def _login(user: Dict[str, Any]):
        app.dependency_overrides[get_current_user] = lambda: user
        return user

    yield _login
    app.dependency_overrides.clear()
