import itertools
import os
import uuid
from types import SimpleNamespace

import pytest

os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "aaa.bbb.ccc")
os.environ.setdefault("CORS_ORIGINS", "http://localhost:3000")

from fastapi.testclient import TestClient  # noqa: E402

from docuchat import auth, main, memory, projects, storage  # noqa: E402

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
TOKEN = "token-user-1"
OTHER_TOKEN = "token-user-2"

_clock = itertools.count(1)


def _timestamp() -> str:
    return f"2026-01-01T00:00:{next(_clock):06d}"


class FakeQuery:
    """Enough of the postgrest query builder for the storage modules."""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.filters = []
        self.ordering = None
        self.payload = None

    def select(self, columns="*", count=None):
        self.op = "select"
        self.columns = columns
        return self

    def insert(self, payload):
        self.op = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.op = "update"
        self.payload = payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def order(self, column, desc=False):
        self.ordering = (column, desc)
        return self

    def _matches(self, row):
        return all(check(row) for check in self.filters)

    def _project(self, row):
        if self.columns == "*":
            return dict(row)
        return {c.strip(): row.get(c.strip()) for c in self.columns.split(",")}

    def execute(self):
        rows = self.db.tables.setdefault(self.table, [])
        if self.op == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            created = []
            for item in items:
                now = _timestamp()
                row = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now}
                row.update(item)
                rows.append(row)
                created.append(dict(row))
            return SimpleNamespace(data=created, count=len(created))

        matched = [row for row in rows if self._matches(row)]
        if self.op == "update":
            for row in matched:
                row.update(self.payload)
            return SimpleNamespace(data=[dict(r) for r in matched], count=len(matched))
        if self.op == "delete":
            self.db.tables[self.table] = [row for row in rows if not self._matches(row)]
            return SimpleNamespace(data=[dict(r) for r in matched], count=len(matched))

        if self.ordering:
            column, desc = self.ordering
            matched = sorted(matched, key=lambda r: r.get(column) or "", reverse=desc)
        data = [self._project(r) for r in matched]
        return SimpleNamespace(data=data, count=len(data))


class FakeAuth:
    def __init__(self, users):
        self.users = users

    def get_user(self, token):
        if token not in self.users:
            raise Exception("invalid JWT")
        user_id = self.users[token]
        return SimpleNamespace(user=SimpleNamespace(id=user_id, email=f"{user_id}@example.com"))


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.auth = FakeAuth({TOKEN: USER_ID, OTHER_TOKEN: OTHER_USER_ID})

    def table(self, name):
        return FakeQuery(self, name)

    def seed(self, table, **row):
        now = _timestamp()
        record = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now}
        record.update(row)
        self.tables.setdefault(table, []).append(record)
        return record


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeSupabase()
    for module in (auth, projects, storage, memory):
        monkeypatch.setattr(module, "supabase", db)
    return db


@pytest.fixture
def client(fake_db):
    main.limiter.reset()
    return TestClient(main.app)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def other_headers():
    return {"Authorization": f"Bearer {OTHER_TOKEN}"}


@pytest.fixture
def project(fake_db):
    return fake_db.seed(
        "projects",
        user_id=USER_ID,
        name="Quarterly Reports",
        description="Finance documents",
        status="active",
        document_count=1,
        extracted_text="--- Document: q1.pdf ---\nRevenue grew 12% in Q1.",
    )
