"""Shared fixtures for the visit tracking test suite.

Provides a Flask test client wired to a temporary SQLite database and
small factories for families, users and visits.
"""

import atexit
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Point the DB at a temp file BEFORE importing app/models (they read DB_PATH at import time)
_test_db_fd, _test_db_path = tempfile.mkstemp(suffix=".db")
os.close(_test_db_fd)  # close the fd immediately; sqlite3 opens its own handle
os.environ["OMNIA_DB_PATH"] = _test_db_path
atexit.register(lambda: os.unlink(_test_db_path) if os.path.exists(_test_db_path) else None)

# Rate limits are exercised in production, not in unit tests
os.environ.setdefault("RATE_LIMIT_DEFAULT", "10000/minute")
os.environ.setdefault("RATE_LIMIT_CHECKIN", "10000/minute")

from app import app  # noqa: E402
from assignment import Actor  # noqa: E402
from models import init_db, _get_db, create_family, create_user, insert_visit, generate_id  # noqa: E402
from records import FamilyStatus, Role, Visit, VisitStatus  # noqa: E402

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

# Tunis city centre and a point ~65 m away
HOME = (36.8070, 10.1820)
NEARBY = (36.8065, 10.1815)


@pytest.fixture(autouse=True)
def _fresh_db():
    """Reset the database before every test, keeping the schema."""
    init_db()
    conn = _get_db()
    for table in ("visits", "families", "items", "users"):
        conn.execute(f"DELETE FROM {table}")
    conn.commit()
    conn.close()
    yield


@pytest.fixture()
def client():
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


@pytest.fixture()
def volunteer():
    uid = create_user("Amina", role=Role.VOLUNTEER)
    return Actor(id=uid, role=Role.VOLUNTEER)


@pytest.fixture()
def other_volunteer():
    uid = create_user("Youssef", role=Role.VOLUNTEER)
    return Actor(id=uid, role=Role.VOLUNTEER)


@pytest.fixture()
def coordinator():
    uid = create_user("Salma", role=Role.COORDINATOR)
    return Actor(id=uid, role=Role.COORDINATOR)


def headers_for(actor):
    return {"X-User-Id": actor.id, "X-User-Role": actor.role.value}


def make_family(name="Ben Ali", status=FamilyStatus.ACTIVE, coords=HOME, created_at=None):
    lat, lng = coords if coords else (None, None)
    return create_family(name, status=status, lat=lat, lng=lng, created_at=created_at)


def make_visit(family_id, reported_by, status=VisitStatus.PLANNED, date=None,
               assigned_to=(), completed_by=None, notes=""):
    visit = Visit(
        id=generate_id(),
        family_id=family_id,
        reported_by=reported_by,
        status=status,
        date=date or NOW + timedelta(days=1),
        assigned_to=list(assigned_to),
        completed_by=completed_by,
        notes=notes,
    )
    insert_visit(visit)
    return visit.id


def make_legacy_visit(family_id, reported_by, date):
    """A row from before visits had a status column value."""
    vid = make_visit(family_id, reported_by, status=VisitStatus.COMPLETED, date=date)
    conn = _get_db()
    conn.execute("UPDATE visits SET status = NULL WHERE id = ?", (vid,))
    conn.commit()
    conn.close()
    return vid
