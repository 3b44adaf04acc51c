"""
Shared test fixtures.

The Supabase client is replaced by an in-memory fake that keeps table
state between calls, so services can be exercised end to end.
"""

import os
import sys
from pathlib import Path

# Add project directory to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import pytest
from unittest.mock import patch
from datetime import datetime, timezone
from typing import Any, Generator, Optional
from uuid import uuid4


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """
    Chainable query against one in-memory table.

    Filters, ordering and paging are applied on execute(), like the real
    PostgREST builder.
    """

    def __init__(self, client: "MockSupabaseClient", table: str, op: str, payload: Any = None):
        self._client = client
        self._table = table
        self._op = op
        self._payload = payload
        self._filters: list = []
        self._order: Optional[tuple[str, bool]] = None
        self._range: Optional[tuple[int, int]] = None
        self._limit: Optional[int] = None

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def lt(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row[column] < value)
        return self

    def gte(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row[column] >= value)
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._order = (column, desc)
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self) -> MockSupabaseResponse:
        self._client._before_execute(self._table, self._op)
        rows = self._client.tables.setdefault(self._table, [])

        if self._op == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            now = datetime.now(timezone.utc).isoformat()
            inserted = []
            for item in items:
                row = {"id": str(uuid4()), "created_at": now, "updated_at": now, **item}
                rows.append(row)
                inserted.append(dict(row))
            return MockSupabaseResponse(data=inserted)

        matched = [row for row in rows if self._matches(row)]

        if self._op == "update":
            for row in matched:
                row.update(self._payload)
            return MockSupabaseResponse(data=[dict(row) for row in matched])

        if self._op == "delete":
            self._client.tables[self._table] = [row for row in rows if not self._matches(row)]
            return MockSupabaseResponse(data=[dict(row) for row in matched])

        total = len(matched)
        if self._order:
            column, desc = self._order
            matched = sorted(matched, key=lambda row: (row.get(column) is None, row.get(column)), reverse=desc)
        if self._range:
            start, end = self._range
            matched = matched[start:end + 1]
        if self._limit is not None:
            matched = matched[:self._limit]
        return MockSupabaseResponse(data=[dict(row) for row in matched], count=total)


class MockSupabaseTable:
    """Entry point of a table: picks the operation."""

    def __init__(self, client: "MockSupabaseClient", name: str):
        self._client = client
        self._name = name

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self._client, self._name, "select")

    def insert(self, data):
        return MockSupabaseQuery(self._client, self._name, "insert", data)

    def update(self, data):
        return MockSupabaseQuery(self._client, self._name, "update", data)

    def delete(self, *args, **kwargs):
        return MockSupabaseQuery(self._client, self._name, "delete")


class MockSupabaseClient:
    """In-memory Supabase client with per-operation failure injection."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[tuple[str, str], dict] = {}

    def set_table_data(self, table_name: str, data: list):
        """Replace a table's rows."""
        self.tables[table_name] = [dict(row) for row in data]

    def rows(self, table_name: str) -> list[dict]:
        return self.tables.get(table_name, [])

    def fail_on(
        self,
        table_name: str,
        op: str,
        after: int = 0,
        times: Optional[int] = None,
        message: str = "connection reset"
    ):
        """
        Make `op` calls on a table raise once `after` calls have succeeded.

        times limits how many calls fail (None: every later call).
        """
        self._failures[(table_name, op)] = {
            "after": after, "times": times, "seen": 0, "message": message
        }

    def _before_execute(self, table_name: str, op: str) -> None:
        self.calls.append((table_name, op))
        failure = self._failures.get((table_name, op))
        if failure is None:
            return
        failure["seen"] += 1
        failed_so_far = failure["seen"] - failure["after"]
        if failed_so_far > 0 and (failure["times"] is None or failed_so_far <= failure["times"]):
            raise RuntimeError(failure["message"])

    def table(self, name: str) -> MockSupabaseTable:
        return MockSupabaseTable(self, name)


# ===================
# FIXTURES
# ===================

SERVICE_MODULES = (
    "services.product_service",
    "services.supplier_service",
    "services.field_mapping_service",
    "services.import_run_service",
)

SINGLETONS = (
    ("services.product_service", "_product_service"),
    ("services.supplier_service", "_supplier_service"),
    ("services.field_mapping_service", "_field_mapping_service"),
    ("services.import_run_service", "_import_run_service"),
    ("services.batch_import_service", "_batch_import_service"),
    ("services.ingestion_service", "_ingestion_service"),
    ("services.import_locks", "_registry"),
)


def _reset_singletons():
    import importlib
    for module_name, attr in SINGLETONS:
        setattr(importlib.import_module(module_name), attr, None)


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create an in-memory Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("suppliers", [SupplierFactory.create()])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with the fake and start from fresh services.

    Usage:
        def test_something(mock_db):
            mock_db.set_table_data("products", [...])
            # Any service created now talks to the fake
    """
    _reset_singletons()
    patches = [patch("config.database.get_supabase_client", return_value=mock_supabase)]
    patches += [
        patch(f"{module}.get_supabase_client", return_value=mock_supabase)
        for module in SERVICE_MODULES
    ]
    patches.append(patch("services.import_run_service.get_admin_client", return_value=None))

    for p in patches:
        p.start()
    try:
        yield mock_supabase
    finally:
        for p in reversed(patches):
            p.stop()
        _reset_singletons()


@pytest.fixture
def supplier_with_mapping(mock_db) -> dict:
    """A supplier row with a complete mapping stored."""
    from tests.factories import SupplierFactory, MappingFactory

    supplier = SupplierFactory.create()
    mock_db.set_table_data("suppliers", [supplier])
    mock_db.set_table_data("field_mappings", MappingFactory.rows(supplier["id"]))
    return supplier


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client_with_mock_db(mock_db):
    """
    Create FastAPI test client with the in-memory database.

    Usage:
        def test_endpoint(test_client_with_mock_db, mock_db):
            mock_db.set_table_data("suppliers", [...])
            response = test_client_with_mock_db.get("/api/suppliers")
    """
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
