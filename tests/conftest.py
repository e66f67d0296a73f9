"""
Shared test fixtures.

The Supabase double keeps table rows in memory and honours the query
filters the services use, so multi-step flows (upload, analyze, review,
finalize) can be tested end to end without a database.
"""

import os
import sys
from pathlib import Path

# Add project directory to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import copy
import pytest
from contextlib import ExitStack
from datetime import datetime, timedelta, timezone
from typing import Generator, Optional
from unittest.mock import patch
from uuid import uuid4

from tests.factories import build_workbook, sheet_line

# ===================
# MOCK SUPABASE CLIENT
# ===================

BASE_TIME = datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)


class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data=None, count: Optional[int] = None):
        self.data = data if data is not None else []
        self.count = count


class MockSupabaseQuery:
    """Chainable query over one in-memory table."""

    def __init__(self, client: "MockSupabaseClient", table: str, operation: str, payload=None):
        self._client = client
        self._table = table
        self._operation = operation
        self._payload = payload
        self._filters = []
        self._order = []
        self._range = None
        self._limit = None
        self._is_single = False
        self._count_mode = None

    # --- shaping ---

    def select(self, *args, count: Optional[str] = None, **kwargs):
        self._count_mode = count
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._order.append((column, desc))
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def single(self):
        self._is_single = True
        return self

    # --- filters ---

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def is_(self, column, value):
        expected = None if value in (None, "null") else value
        self._filters.append(lambda row: row.get(column) is expected)
        return self

    def lt(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row.get(column) < value)
        return self

    def gt(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row.get(column) > value)
        return self

    def contains(self, column, value: dict):
        def matches(row):
            data = row.get(column) or {}
            return all(data.get(k) == v for k, v in value.items())
        self._filters.append(matches)
        return self

    # --- execution ---

    def _matching(self) -> list:
        rows = self._client.tables.setdefault(self._table, [])
        return [row for row in rows if all(f(row) for f in self._filters)]

    def execute(self) -> MockSupabaseResponse:
        self._client.calls.append((self._table, self._operation))
        failure = self._client.failures.get((self._table, self._operation))
        if failure:
            raise Exception(failure)

        if self._operation == "insert":
            return MockSupabaseResponse(self._client._insert(self._table, self._payload))

        if self._operation == "update":
            updated = []
            for row in self._matching():
                row.update(copy.deepcopy(self._payload))
                updated.append(copy.deepcopy(row))
            return MockSupabaseResponse(updated)

        if self._operation == "delete":
            removed = self._matching()
            table = self._client.tables[self._table]
            self._client.tables[self._table] = [r for r in table if not any(r is x for x in removed)]
            return MockSupabaseResponse(copy.deepcopy(removed))

        rows = copy.deepcopy(self._matching())
        for column, desc in reversed(self._order):
            rows.sort(
                key=lambda r: (r.get(column) is None, r.get(column) if r.get(column) is not None else 0),
                reverse=desc
            )
        total = len(rows)
        if self._range:
            rows = rows[self._range[0]:self._range[1] + 1]
        if self._limit is not None:
            rows = rows[:self._limit]

        count = total if self._count_mode else None
        if self._is_single:
            return MockSupabaseResponse(rows[0] if rows else None, count)
        return MockSupabaseResponse(rows, count)


class MockSupabaseTable:
    """Entry point for queries on one table."""

    def __init__(self, client: "MockSupabaseClient", name: str):
        self._client = client
        self._name = name

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self._client, self._name, "select").select(*args, **kwargs)

    def insert(self, data):
        return MockSupabaseQuery(self._client, self._name, "insert", data)

    def update(self, data):
        return MockSupabaseQuery(self._client, self._name, "update", data)

    def delete(self):
        return MockSupabaseQuery(self._client, self._name, "delete")


class MockStorageBucket:
    """In-memory storage bucket."""

    def __init__(self, storage: "MockStorage", name: str):
        self._storage = storage
        self._objects = storage.objects.setdefault(name, {})
        self._name = name

    def upload(self, path, content, file_options=None):
        if self._storage.fail_upload:
            raise Exception("Storage unavailable")
        if path in self._objects:
            raise Exception("The resource already exists")
        self._objects[path] = bytes(content)
        return {"Key": f"{self._name}/{path}"}

    def download(self, path):
        if path not in self._objects:
            raise Exception("Object not found")
        return self._objects[path]

    def create_signed_url(self, path, expires_in):
        if path not in self._objects:
            raise Exception("Object not found")
        return {"signedURL": f"https://storage.test/{self._name}/{path}?token=signed&expires={expires_in}"}

    def remove(self, paths):
        for path in paths:
            self._objects.pop(path, None)
        return []


class MockStorage:
    """In-memory Supabase storage."""

    def __init__(self):
        self.objects: dict[str, dict[str, bytes]] = {}
        self.fail_upload = False

    def from_(self, bucket: str) -> MockStorageBucket:
        return MockStorageBucket(self, bucket)


class MockSupabaseClient:
    """
    Mock Supabase client backed by in-memory tables.

    Usage:
        mock_supabase.set_table_data("imports", [ImportFactory.create()])
        mock_supabase.add_unique("cases", "reference")
        mock_supabase.fail("cases", "insert", "connection reset")
    """

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.unique: dict[str, list[tuple]] = {}
        self.failures: dict[tuple, str] = {}
        self.calls: list[tuple] = []
        self.storage = MockStorage()
        self._clock = 0

    def set_table_data(self, table_name: str, data: list, count: int = None):
        """Configure rows for a table."""
        self.tables[table_name] = copy.deepcopy(data)

    def get_table(self, table_name: str) -> list[dict]:
        return self.tables.get(table_name, [])

    def add_unique(self, table_name: str, *columns: str):
        self.unique.setdefault(table_name, []).append(columns)

    def fail(self, table_name: str, operation: str, message: str = "database unavailable"):
        self.failures[(table_name, operation)] = message

    def calls_to(self, table_name: str, operation: Optional[str] = None) -> int:
        return sum(
            1 for table, op in self.calls
            if table == table_name and (operation is None or op == operation)
        )

    def table(self, name: str) -> MockSupabaseTable:
        return MockSupabaseTable(self, name)

    def _insert(self, table_name: str, payload) -> list[dict]:
        items = payload if isinstance(payload, list) else [payload]
        table = self.tables.setdefault(table_name, [])
        inserted = []
        for item in items:
            row = copy.deepcopy(item)
            row.setdefault("id", str(uuid4()))
            row.setdefault("created_at", self._now())
            for columns in self.unique.get(table_name, []):
                key = tuple(row.get(c) for c in columns)
                if any(tuple(r.get(c) for c in columns) == key for r in table):
                    raise Exception(f"duplicate key value violates unique constraint on {columns}")
            table.append(row)
            inserted.append(copy.deepcopy(row))
        return inserted

    def _now(self) -> str:
        self._clock += 1
        return (BASE_TIME + timedelta(seconds=self._clock)).isoformat()


# ===================
# FIXTURES
# ===================

CLIENT_MODULES = (
    "config.database.get_supabase_client",
    "services.blob_store.get_supabase_client",
    "services.import_service.get_supabase_client",
    "services.import_row_service.get_supabase_client",
    "services.provenance_service.get_supabase_client",
    "services.analysis_service.get_worker_client",
    "services.finalize_service.get_worker_client",
)

SINGLETONS = (
    ("services.blob_store", "_blob_store"),
    ("services.import_service", "_import_service"),
    ("services.import_row_service", "_import_row_service"),
    ("services.provenance_service", "_provenance_service"),
    ("services.analysis_service", "_analysis_service"),
    ("services.finalize_service", "_finalize_service"),
)


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client with a bank and an agent.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("imports", [...])
    """
    client = MockSupabaseClient()
    client.set_table_data("banks", [{"id": "bank-1", "name": "BNM"}])
    client.set_table_data("agents", [{"id": "agent-1", "email": "agent@recouvrement.mr"}])
    client.add_unique("import_rows", "import_id", "row_number")
    return client


@pytest.fixture
def mock_db(mock_supabase, monkeypatch) -> Generator:
    """
    Patch every database client lookup with the mock.

    Service singletons are reset so they pick up the mock.
    """
    import importlib

    for module_name, attribute in SINGLETONS:
        monkeypatch.setattr(importlib.import_module(module_name), attribute, None)

    with ExitStack() as stack:
        for target in CLIENT_MODULES:
            stack.enter_context(patch(target, return_value=mock_supabase))
        yield mock_supabase


@pytest.fixture
def test_client_with_mock_db(mock_db):
    """
    Create FastAPI test client with mocked database.

    Usage:
        def test_endpoint(test_client_with_mock_db, mock_supabase):
            response = test_client_with_mock_db.get("/api/imports")
    """
    from fastapi.testclient import TestClient
    from main import app

    yield TestClient(app)


# ===================
# SPREADSHEETS
# ===================

@pytest.fixture
def sample_workbook() -> bytes:
    """Three lines: valid PP, PM with warnings, and a line with errors."""
    return build_workbook([
        sheet_line(),
        sheet_line(**{
            "Type débiteur*": "PM",
            "Nom / Raison sociale*": "SNIM Services",
            "Prénom": None,
            "Numéro identification": None,
            "RC": "RC-2020-55",
            "Réf. contrat*": "CTR-002",
            "Devise": "EUR",
        }),
        sheet_line(**{
            "Nom / Raison sociale*": None,
            "Réf. contrat*": "CTR-003",
            "Montant principal*": "abc",
        }),
    ])
