"""Shared test fixtures for the BusinessOS test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- isolated_storage: per-test local store dir, Supabase env cleared (autouse)
- fake_supabase: in-memory stand-in for the Supabase REST tables
- owner: a registered tenant account
- blueprint: a generated business blueprint
"""

import copy

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from app.extensions import db as _db
from app.models.user import User
from app.services import supabase_client
from app.services.supabase_client import KEY_ALIASES, URL_ALIASES, SupabaseError


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture(autouse=True)
def isolated_storage(app, tmp_path, monkeypatch):
    """Point the local store at a temp dir and start without Supabase."""
    for name in URL_ALIASES + KEY_ALIASES:
        monkeypatch.delenv(name, raising=False)
    storage_dir = tmp_path / "local_storage"
    app.config["LOCAL_STORAGE_DIR"] = str(storage_dir)
    app.extensions.pop("app_states", None)
    yield storage_dir
    registry = app.extensions.pop("app_states", None)
    if registry is not None:
        for tenant_id in list(registry._states):
            registry.close(tenant_id)


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


class FakeSupabase:
    """In-memory tables mimicking the supabase_client functions.

    `fail` holds operation names ("select", "insert", "upsert", "update")
    that should raise SupabaseError, to simulate remote outages.
    """

    def __init__(self):
        self.tables = {"projects": [], "inbound_leads": []}
        self.fail = set()
        self.calls = []

    def _check(self, op, table):
        self.calls.append((op, table))
        if op in self.fail:
            raise SupabaseError(f"simulated {op} failure on {table}", status_code=503)

    @staticmethod
    def _matches(row, filters):
        for column, value in (filters or {}).items():
            if isinstance(value, tuple):
                operator, operand = value
            else:
                operator, operand = "eq", value
            actual = row.get(column)
            if operand is None:
                if actual is not None:
                    return False
            elif operator == "ilike":
                if actual is None or str(actual).lower() != str(operand).lower():
                    return False
            elif actual != operand:
                return False
        return True

    def select(self, table, columns="*", filters=None, order=None, limit=None):
        self._check("select", table)
        rows = [r for r in self.tables[table] if self._matches(r, filters)]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda r: r.get(column) or "", reverse=direction == "desc")
        if limit is not None:
            rows = rows[:limit]
        rows = copy.deepcopy(rows)
        if columns != "*":
            wanted = columns.split(",")
            rows = [{c: r.get(c) for c in wanted} for r in rows]
        return rows

    def insert(self, table, row):
        self._check("insert", table)
        self.tables[table].append(copy.deepcopy(row))
        return [copy.deepcopy(row)]

    def upsert(self, table, row, on_conflict):
        self._check("upsert", table)
        rows = self.tables[table]
        for index, existing in enumerate(rows):
            if existing.get(on_conflict) == row.get(on_conflict):
                rows[index] = copy.deepcopy(row)
                break
        else:
            rows.append(copy.deepcopy(row))
        return [copy.deepcopy(row)]

    def update(self, table, values, filters):
        self._check("update", table)
        updated = []
        for row in self.tables[table]:
            if self._matches(row, filters):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        return updated

    def delete(self, table, filters):
        self._check("delete", table)
        self.tables[table] = [
            r for r in self.tables[table] if not self._matches(r, filters)
        ]
        return []


@pytest.fixture
def fake_supabase(monkeypatch):
    """Configure Supabase credentials and route every call to FakeSupabase."""
    fake = FakeSupabase()
    monkeypatch.setenv("SUPABASE_URL", "https://demo.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-test-key")
    for name in ("select", "insert", "upsert", "update", "delete"):
        monkeypatch.setattr(supabase_client, name, getattr(fake, name))
    return fake


@pytest.fixture
def owner(app, db_session):
    """A tenant account (password: ownerpass123)."""
    user = User(
        email="owner@studio.test",
        password_hash=generate_password_hash("ownerpass123"),
        full_name="Studio Owner",
    )
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture
def blueprint():
    return {
        "businessName": "Peak Performance Coaching",
        "niche": "Fitness coaching",
        "targetAudience": "Busy professionals over 30",
        "mission": "Help people train consistently.",
        "websiteData": {
            "heroHeadline": "Get strong in 30 minutes a day",
            "heroSubhead": "Coaching that fits your calendar.",
            "ctaText": "Join the waitlist",
            "features": ["Custom plans", "Weekly check-ins"],
            "pricing": [{"name": "Core", "price": "$99", "features": ["Plan"]}],
            "testimonials": [],
            "publishedUrl": "https://peak.example.com",
        },
        "contentPlan": [
            {"id": "p1", "day": 1, "hook": "Start small", "body": "...",
             "cta": "DM me", "type": "Text"},
        ],
        "suggestedPrograms": ["12-Week Reset"],
    }
