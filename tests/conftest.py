"""
Shared test fixtures.

The Supabase client is replaced by an in-memory fake that applies filters,
ordering and limits, and exposes a storage bucket with failure injection.
"""

import os
import sys
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import copy
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

import pytest
from unittest.mock import patch


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data=None, count: int = None):
        self.data = data if data is not None else []
        self.count = count


class MockSupabaseQuery:
    """Chainable query builder evaluated against the in-memory tables."""

    def __init__(self, client: "MockSupabaseClient", table: str):
        self._client = client
        self._table = table
        self._op = "select"
        self._payload = None
        self._filters: list[Callable[[dict], bool]] = []
        self._order: list[tuple[str, bool]] = []
        self._limit: Optional[int] = None
        self._count: Optional[str] = None
        self._is_single = False

    def select(self, *columns, count: str = None):
        self._op = "select"
        self._count = count
        return self

    def insert(self, data):
        self._op = "insert"
        self._payload = data
        return self

    def update(self, data):
        self._op = "update"
        self._payload = data
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def gt(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row[column] > value)
        return self

    def in_(self, column, values):
        values = list(values)
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._order.append((column, desc))
        return self

    def limit(self, count):
        self._limit = count
        return self

    def single(self):
        self._is_single = True
        return self

    def _matches(self, rows: list[dict]) -> list[dict]:
        return [row for row in rows if all(f(row) for f in self._filters)]

    def execute(self) -> MockSupabaseResponse:
        self._client._maybe_delay(self._table, self._op, self._payload)
        with self._client._lock:
            self._client._maybe_fail(self._table, self._op, self._payload)
            rows = self._client._tables.setdefault(self._table, [])

            if self._op == "insert":
                items = self._payload if isinstance(self._payload, list) else [self._payload]
                inserted = []
                for item in items:
                    row = {
                        "id": str(uuid.uuid4()),
                        "created_at": self._client._now(),
                        **copy.deepcopy(item),
                    }
                    rows.append(row)
                    inserted.append(copy.deepcopy(row))
                return MockSupabaseResponse(inserted)

            matched = self._matches(rows)

            if self._op == "update":
                for row in matched:
                    row.update(copy.deepcopy(self._payload))
                    row["updated_at"] = self._client._now()
                return MockSupabaseResponse([copy.deepcopy(r) for r in matched])

            if self._op == "delete":
                ids = {id(r) for r in matched}
                self._client._tables[self._table] = [r for r in rows if id(r) not in ids]
                return MockSupabaseResponse([copy.deepcopy(r) for r in matched])

            for column, desc in reversed(self._order):
                matched.sort(
                    key=lambda r: (r.get(column) is None, r.get(column) if r.get(column) is not None else 0),
                    reverse=desc
                )
            total = len(matched)
            if self._limit is not None:
                matched = matched[:self._limit]

            data = [copy.deepcopy(r) for r in matched]
            if self._is_single:
                return MockSupabaseResponse(data[0] if data else None, count=total)
            return MockSupabaseResponse(data, count=total if self._count else None)


class MockStorageBucket:
    """One storage bucket; objects are kept by path."""

    def __init__(self, storage: "MockStorage", name: str):
        self._storage = storage
        self.name = name

    @property
    def objects(self) -> dict[str, bytes]:
        return self._storage.objects.setdefault(self.name, {})

    def upload(self, path, file, file_options=None):
        self._storage._maybe_fail("upload", path)
        if path in self.objects:
            raise Exception("The resource already exists")
        self.objects[path] = bytes(file)
        return {"Key": f"{self.name}/{path}"}

    def copy(self, from_path, to_path):
        self._storage._maybe_fail("copy", from_path)
        if from_path not in self.objects:
            raise Exception("Object not found")
        if to_path in self.objects:
            raise Exception("The resource already exists")
        self.objects[to_path] = self.objects[from_path]
        return {"message": "Successfully copied"}

    def get_public_url(self, path):
        return f"https://storage.test/{self.name}/{path}"

    def list(self, path=None, options=None):
        self._storage._maybe_fail("list", path or "")
        options = options or {}
        prefix = f"{path}/" if path else ""
        names = sorted(
            p[len(prefix):] for p in self.objects
            if p.startswith(prefix) and "/" not in p[len(prefix):]
        )
        offset = options.get("offset", 0)
        limit = options.get("limit", 100)
        return [{"name": name} for name in names[offset:offset + limit]]

    def remove(self, paths):
        for path in paths:
            self._storage._maybe_fail("remove", path)
        return [{"name": p} for p in paths if self.objects.pop(p, None) is not None]


class MockStorage:
    """Supabase storage namespace with failure injection."""

    def __init__(self):
        self.objects: dict[str, dict[str, bytes]] = {}
        self._failures: list[tuple[str, Callable[[str], bool]]] = []

    def from_(self, bucket: str) -> MockStorageBucket:
        return MockStorageBucket(self, bucket)

    def fail(self, operation: str, when: Callable[[str], bool] = lambda path: True):
        """Make `operation` (upload/copy/list/remove) raise for matching paths."""
        self._failures.append((operation, when))

    def _maybe_fail(self, operation: str, path: str):
        for op, when in self._failures:
            if op == operation and when(path):
                raise Exception(f"simulated {operation} failure for {path}")


class MockSupabaseClient:
    """In-memory Supabase client."""

    def __init__(self):
        self._tables: dict[str, list[dict]] = {}
        self._failures: list[tuple[str, str, Callable]] = []
        self._delays: list[tuple[str, str, float, Callable]] = []
        self._lock = threading.RLock()
        self._tick = 0
        self.storage = MockStorage()

    def _now(self) -> str:
        self._tick += 1
        return datetime(2025, 1, 1, tzinfo=timezone.utc).replace(microsecond=self._tick).isoformat()

    def set_table_data(self, table_name: str, data: list):
        """Seed rows for a table."""
        self._tables[table_name] = copy.deepcopy(data)

    def rows(self, table_name: str) -> list[dict]:
        """Current rows of a table (copies)."""
        return copy.deepcopy(self._tables.get(table_name, []))

    def fail(self, table: str, operation: str, when: Callable = lambda payload: True):
        """Make `operation` on `table` raise when `when(payload)` is true."""
        self._failures.append((table, operation, when))

    def _maybe_fail(self, table: str, operation: str, payload):
        for t, op, when in self._failures:
            if t == table and op == operation and when(payload):
                raise Exception(f"simulated {operation} failure on {table}")

    def delay(self, table: str, operation: str, seconds: float, when: Callable = lambda payload: True):
        """Sleep before `operation` on `table` when `when(payload)` is true."""
        self._delays.append((table, operation, seconds, when))

    def _maybe_delay(self, table: str, operation: str, payload):
        for t, op, seconds, when in self._delays:
            if t == table and op == operation and when(payload):
                time.sleep(seconds)

    def table(self, name: str) -> MockSupabaseQuery:
        return MockSupabaseQuery(self, name)


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create an in-memory Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("draft_products", [...])
    """
    return MockSupabaseClient()


@pytest.fixture
def storage_service(mock_supabase):
    from services.storage_service import StorageService
    return StorageService(mock_supabase, bucket="products")


@pytest.fixture
def bulk_import_service(mock_supabase, storage_service):
    from services.bulk_import_service import BulkImportService
    return BulkImportService(mock_supabase, storage_service)


@pytest.fixture
def draft_editor(mock_supabase, bulk_import_service):
    from services.draft_editor_service import DraftEditorService
    return DraftEditorService(mock_supabase, bulk_import_service)


@pytest.fixture
def validation_service(mock_supabase, bulk_import_service):
    from services.draft_validation_service import DraftValidationService
    return DraftValidationService(mock_supabase, bulk_import_service)


@pytest.fixture
def promotion_service(mock_supabase, storage_service, bulk_import_service):
    from services.promotion_service import PromotionService
    return PromotionService(
        mock_supabase,
        storage_service,
        bulk_import_service,
        max_workers=2,
        timeout_seconds=5,
    )


@pytest.fixture
def cleanup_service(mock_supabase, storage_service, bulk_import_service):
    from services.cleanup_service import CleanupService
    return CleanupService(mock_supabase, storage_service, bulk_import_service)


@pytest.fixture
def store_id() -> str:
    return "store-uuid-1"


@pytest.fixture
def import_id(bulk_import_service, store_id) -> str:
    """A fresh import session."""
    return bulk_import_service.create_import(store_id, "user-uuid-1")


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client(
    bulk_import_service,
    draft_editor,
    validation_service,
    promotion_service,
    cleanup_service,
):
    """
    FastAPI test client whose routes use the in-memory services.

    Usage:
        def test_endpoint(test_client):
            response = test_client.post("/api/bulk-import", json={...})
    """
    from fastapi.testclient import TestClient
    from main import app

    with patch("routes.bulk_import.get_bulk_import_service", return_value=bulk_import_service), \
            patch("routes.bulk_import.get_draft_editor_service", return_value=draft_editor), \
            patch("routes.bulk_import.get_draft_validation_service", return_value=validation_service), \
            patch("routes.bulk_import.get_promotion_service", return_value=promotion_service), \
            patch("routes.bulk_import.get_cleanup_service", return_value=cleanup_service):
        yield TestClient(app)
