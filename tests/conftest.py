"""
Shared test fixtures.

FakeSupabaseClient keeps rows in memory and applies the filters the
services use, so a whole import can run without a database.
"""

import os
import sys
from pathlib import Path

# Settings are loaded on import; required values must exist first
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("ANTHROPIC_API_KEY", "")

# Add project root to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

import copy
import pytest
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from unittest.mock import patch
from uuid import uuid4


# ===================
# FAKE SUPABASE CLIENT
# ===================

class FakeSupabaseResponse:
    """Query response with data and optional exact count."""

    def __init__(self, data: Any = None, count: Optional[int] = None):
        self.data = data if data is not None else []
        self.count = count


class FakeSupabaseQuery:
    """Chainable query builder working on a FakeSupabaseClient table."""

    def __init__(self, client: "FakeSupabaseClient", table: str):
        self._client = client
        self._table = table
        self._operation = "select"
        self._payload: Any = None
        self._columns = "*"
        self._count = False
        self._filters: list[Callable[[dict], bool]] = []
        self._order: list[tuple[str, bool]] = []
        self._range: Optional[tuple[int, int]] = None
        self._limit: Optional[int] = None
        self._single = False

    # Operations

    def select(self, columns: str = "*", count: Optional[str] = None):
        self._operation = "select"
        self._columns = columns
        self._count = count is not None
        return self

    def insert(self, data):
        self._operation = "insert"
        self._payload = data
        return self

    def upsert(self, data, on_conflict: str = "id"):
        self._operation = "upsert"
        self._payload = data
        return self

    def update(self, data):
        self._operation = "update"
        self._payload = data
        return self

    def delete(self):
        self._operation = "delete"
        return self

    # Filters

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        allowed = list(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def is_(self, column, value):
        if value == "null":
            self._filters.append(lambda row: row.get(column) is None)
        else:
            self._filters.append(lambda row: row.get(column) is not None)
        return self

    def gt(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row.get(column) > value)
        return self

    # Modifiers

    def order(self, column, desc: bool = False):
        self._order.append((column, desc))
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def single(self):
        self._single = True
        return self

    def execute(self) -> FakeSupabaseResponse:
        self._client.check_failure(self._table, self._operation)
        rows = self._client.rows(self._table)

        if self._operation == "insert":
            return FakeSupabaseResponse(self._client.insert_rows(self._table, self._payload))

        if self._operation == "upsert":
            return FakeSupabaseResponse(self._client.upsert_rows(self._table, self._payload))

        matching = [row for row in rows if all(f(row) for f in self._filters)]

        if self._operation == "update":
            for row in matching:
                row.update(copy.deepcopy(self._payload))
            return FakeSupabaseResponse(copy.deepcopy(matching))

        if self._operation == "delete":
            self._client.tables[self._table] = [row for row in rows if row not in matching]
            return FakeSupabaseResponse(copy.deepcopy(matching))

        for column, desc in reversed(self._order):
            matching.sort(key=lambda row: (row.get(column) is None, row.get(column)), reverse=desc)

        total = len(matching)
        if self._range is not None:
            matching = matching[self._range[0]:self._range[1] + 1]
        if self._limit is not None:
            matching = matching[:self._limit]
        if self._client.max_rows is not None:
            matching = matching[:self._client.max_rows]

        if self._columns != "*":
            wanted = [c.strip() for c in self._columns.split(",")]
            matching = [{c: row.get(c) for c in wanted} for row in matching]

        data = copy.deepcopy(matching)
        if self._single:
            return FakeSupabaseResponse(data[0] if data else None, 1 if data else 0)
        return FakeSupabaseResponse(data, total if self._count else None)


class FakeSupabaseClient:
    """In-memory Supabase client."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self._failures: dict[tuple[str, str], str] = {}
        # Server-side cap on rows returned by one select, like PostgREST
        self.max_rows: Optional[int] = None

    def table(self, name: str) -> FakeSupabaseQuery:
        return FakeSupabaseQuery(self, name)

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    def set_table_data(self, table: str, data: list[dict]):
        """Replace the contents of a table."""
        self.tables[table] = copy.deepcopy(data)

    def fail_on(self, table: str, operation: str, message: str = "connection reset"):
        """Make every `operation` on `table` raise until cleared."""
        self._failures[(table, operation)] = message

    def clear_failures(self):
        self._failures.clear()

    def check_failure(self, table: str, operation: str):
        message = self._failures.get((table, operation))
        if message:
            raise Exception(message)

    def insert_rows(self, table: str, data) -> list[dict]:
        rows = data if isinstance(data, list) else [data]
        now = datetime.now(timezone.utc).isoformat()
        created = []
        for row in rows:
            stored = {"id": str(uuid4()), "created_at": now, "updated_at": now, **copy.deepcopy(row)}
            self.rows(table).append(stored)
            created.append(copy.deepcopy(stored))
        return created

    def upsert_rows(self, table: str, data) -> list[dict]:
        rows = data if isinstance(data, list) else [data]
        existing = {row["id"]: row for row in self.rows(table)}
        saved = []
        for row in rows:
            if row.get("id") in existing:
                existing[row["id"]].update(copy.deepcopy(row))
                saved.append(copy.deepcopy(existing[row["id"]]))
            else:
                saved.extend(self.insert_rows(table, row))
        return saved


# ===================
# FIXTURES
# ===================

@pytest.fixture
def fake_supabase() -> FakeSupabaseClient:
    """
    Create an empty in-memory Supabase client.

    Usage:
        def test_something(fake_supabase):
            fake_supabase.set_table_data("products", [...])
    """
    return FakeSupabaseClient()


@pytest.fixture
def mock_db(fake_supabase):
    """
    Patch the database client used by the services.

    Usage:
        def test_something(mock_db):
            store = ImportStore()  # reads and writes mock_db
    """
    with patch("config.database.get_supabase_client", return_value=fake_supabase):
        with patch("services.import_store.get_supabase_client", return_value=fake_supabase):
            with patch("services.catalog_service.get_supabase_client", return_value=fake_supabase):
                yield fake_supabase


@pytest.fixture
def import_service(mock_db):
    """ImportService on the fake database with the pattern column mapper."""
    from services.import_service import ImportService
    from services.import_store import ImportStore
    from services.catalog_service import CatalogService
    from services.column_mapper_service import PatternColumnMapper
    from services.product_matcher_service import ProductMatcherService, ConflictPolicy
    from parsers import FileParserRegistry

    return ImportService(
        store=ImportStore(),
        catalog=CatalogService(),
        parsers=FileParserRegistry(),
        column_mapper=PatternColumnMapper(),
        matcher=ProductMatcherService(ConflictPolicy()),
    )


@pytest.fixture
def merchant_id() -> str:
    return "merchant-1"


@pytest.fixture
def user_id() -> str:
    return "user-1"


@pytest.fixture
def sample_csv() -> bytes:
    """Two products and a row with neither name nor SKU."""
    return (
        "sku,name,price\n"
        "A1,Widget,9.99\n"
        "A2,Gadget,19.99\n"
        ",,5.00\n"
    ).encode("utf-8")


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client_with_mock_db(import_service):
    """
    FastAPI test client whose routes use the fake-backed ImportService.

    Usage:
        def test_endpoint(test_client_with_mock_db):
            response = test_client_with_mock_db.get("/api/imports", headers=...)
    """
    from fastapi.testclient import TestClient
    from main import app

    with patch("routes.imports.get_import_service", return_value=import_service):
        yield TestClient(app)
