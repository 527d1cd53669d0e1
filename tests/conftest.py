"""Shared pytest fixtures for Archifigure tests."""

from __future__ import annotations

import json
import re
import shutil
import tempfile
import uuid
from collections import defaultdict
from collections.abc import Generator
from itertools import count
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient

from archifigure.core.config import ArchifigureConfig
from archifigure.core.database import ProjectStore
from archifigure.core.providers import ImgbbClient, ReplicateClient

# ---------------------------------------------------------------------------
# In-memory Supabase double.
#
# Implements just the query-builder surface used by archifigure.core.database:
# select / insert / update / upsert with eq / ilike / in_ / order / limit.
# ---------------------------------------------------------------------------


def _like_to_regex(pattern: str) -> re.Pattern:
    parts = []
    chars = iter(pattern)
    for ch in chars:
        if ch == "\\":
            parts.append(re.escape(next(chars, "")))
        elif ch in "%*":
            # PostgREST accepts * as an alias for %.
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


class FakeResponse:
    def __init__(self, data: list[dict]):
        self.data = data


class FakeQuery:
    def __init__(self, db: FakeSupabase, table: str):
        self.db = db
        self.table_name = table
        self.operation = "select"
        self.columns = "*"
        self.payload: Any = None
        self.filters: list = []
        self.order_by: tuple[str, bool] | None = None
        self.limit_count: int | None = None
        self.on_conflict = ""
        self.ignore_duplicates = False

    def select(self, columns: str = "*"):
        self.operation = "select"
        self.columns = columns
        return self

    def insert(self, data):
        self.operation = "insert"
        self.payload = data
        return self

    def update(self, data):
        self.operation = "update"
        self.payload = data
        return self

    def upsert(self, data, on_conflict: str = "", ignore_duplicates: bool = False):
        self.operation = "upsert"
        self.payload = data
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def eq(self, column: str, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def ilike(self, column: str, pattern: str):
        regex = _like_to_regex(pattern)
        self.filters.append(lambda row: bool(regex.fullmatch(str(row.get(column, "")))))
        return self

    def in_(self, column: str, values):
        allowed = set(values)
        self.filters.append(lambda row: row.get(column) in allowed)
        return self

    def order(self, column: str, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def limit(self, size: int):
        self.limit_count = size
        return self

    def _matching(self) -> list[dict]:
        return [row for row in self.db.tables[self.table_name] if all(f(row) for f in self.filters)]

    def _new_row(self, data: dict) -> dict:
        stamp = self.db.next_timestamp()
        row = {"id": str(uuid.uuid4()), "created_at": stamp}
        if self.table_name == "projects":
            row["updated_at"] = stamp
        row.update(data)
        return row

    def execute(self) -> FakeResponse:
        self.db.executed.append((self.table_name, self.operation))
        rows = self.db.tables[self.table_name]

        if self.operation == "insert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [self._new_row(item) for item in payload]
            rows.extend(created)
            return FakeResponse([dict(r) for r in created])

        if self.operation == "upsert":
            created = []
            for item in self.payload:
                existing = next(
                    (r for r in rows if r.get(self.on_conflict) == item.get(self.on_conflict)),
                    None,
                )
                if existing is None:
                    row = self._new_row(item)
                    rows.append(row)
                    created.append(dict(row))
                elif not self.ignore_duplicates:
                    existing.update(item)
                    created.append(dict(existing))
            return FakeResponse(created)

        if self.operation == "update":
            matched = self._matching()
            for row in matched:
                row.update(self.payload)
            return FakeResponse([dict(r) for r in matched])

        matched = self._matching()
        if self.order_by:
            column, desc = self.order_by
            matched = sorted(matched, key=lambda r: r.get(column) or "", reverse=desc)
        if self.limit_count is not None:
            matched = matched[: self.limit_count]
        if self.columns != "*":
            wanted = [c.strip() for c in self.columns.split(",")]
            matched = [{c: r.get(c) for c in wanted} for r in matched]
        return FakeResponse([dict(r) for r in matched])


class FakeSupabase:
    """Minimal stand-in for ``supabase.Client`` backed by dictionaries."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = defaultdict(list)
        self.executed: list[tuple[str, str]] = []
        self.fail = False
        self._clock = count(1)

    def next_timestamp(self) -> str:
        # Monotonic timestamps keep ordering deterministic within a test.
        tick = next(self._clock)
        return f"2024-01-01T00:{tick // 60:02d}:{tick % 60:02d}+00:00"

    def table(self, name: str) -> FakeQuery:
        if self.fail:
            raise RuntimeError("database unavailable")
        return FakeQuery(self, name)


# ---------------------------------------------------------------------------
# Provider doubles served through httpx.MockTransport.
# ---------------------------------------------------------------------------


class MockReplicate:
    """Canned Replicate API answering list, get and create calls."""

    def __init__(self):
        self.predictions: list[Any] = []
        self.by_id: dict[str, dict] = {}
        self.created: dict = {
            "id": "img-1",
            "model": "google/imagen-3",
            "version": "hidden",
            "status": "succeeded",
            "output": "https://x/y.png",
        }
        self.status_code = 200
        self.raise_error: Exception | None = None
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        if self.status_code >= 400:
            return httpx.Response(self.status_code, json={"detail": "provider error"})

        path = request.url.path
        if request.method == "GET" and path == "/v1/predictions":
            return httpx.Response(200, json={"results": self.predictions})
        if request.method == "GET" and path.startswith("/v1/predictions/"):
            prediction_id = path.rsplit("/", 1)[-1]
            if prediction_id in self.by_id:
                return httpx.Response(200, json=self.by_id[prediction_id])
            return httpx.Response(404, json={"detail": "Not found"})
        if request.method == "POST" and path.endswith("/predictions"):
            body = json.loads(request.content)
            return httpx.Response(201, json={**self.created, "input": body["input"]})
        return httpx.Response(404, json={"detail": "Not found"})


class MockImgbb:
    """Canned imgbb upload endpoint."""

    def __init__(self):
        self.success = True
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.success:
            return httpx.Response(400, json={"success": False, "status_code": 400})
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "url": "https://i.ibb.co/abc/image.png",
                    "delete_url": "https://ibb.co/abc/delete",
                },
            },
        )

    def form(self, index: int = -1) -> dict[str, list[str]]:
        return parse_qs(self.requests[index].content.decode())


# ---------------------------------------------------------------------------
# Fixtures.
# ---------------------------------------------------------------------------


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config() -> ArchifigureConfig:
    """Configuration isolated from the environment and any .env file."""
    return ArchifigureConfig(
        _env_file=None,
        replicate_api_token="test-token",
        imgbb_api_key="test-imgbb-key",
        supabase_url="https://test.supabase.co",
        supabase_anon_key="test-anon-key",
    )


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def store(fake_supabase: FakeSupabase) -> ProjectStore:
    return ProjectStore(lambda: fake_supabase)


@pytest.fixture
def mock_replicate() -> MockReplicate:
    return MockReplicate()


@pytest.fixture
def mock_imgbb() -> MockImgbb:
    return MockImgbb()


@pytest.fixture
def replicate_client(mock_replicate: MockReplicate) -> ReplicateClient:
    return ReplicateClient("test-token", transport=httpx.MockTransport(mock_replicate.handler))


@pytest.fixture
def imgbb_client(mock_imgbb: MockImgbb) -> ImgbbClient:
    return ImgbbClient("test-imgbb-key", transport=httpx.MockTransport(mock_imgbb.handler))


@pytest.fixture
def test_client(
    store: ProjectStore,
    replicate_client: ReplicateClient,
    imgbb_client: ImgbbClient,
) -> Generator[TestClient, None, None]:
    """TestClient whose providers and database are all in-process doubles."""
    from archifigure.api.main import app

    with TestClient(app) as client:
        app.state.store = store
        app.state.replicate = replicate_client
        app.state.imgbb = imgbb_client
        yield client
