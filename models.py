"""
SQLite persistence for families, items, users and visits.

No ORM, just raw sqlite3, one short-lived connection per call.
Families, items and users are written by other parts of the product; the
helpers here cover the lookups and updates the visit core needs.

Legacy visit rows may have a NULL status.  They are read as COMPLETED by
_row_to_visit and matched by _SETTLED in SQL; nothing else should test
for a missing status.
"""

import json
import logging
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from geo import GeoPoint
from records import (
    CheckInLocation, Family, FamilyStatus, Item, Role, User, Visit,
    VisitStatus, iso, parse_iso,
)

logger = logging.getLogger(__name__)

DB_PATH = os.environ.get("OMNIA_DB_PATH", "omnia.db")

# A visit "counts" once it is COMPLETED; legacy rows carry no status at all.
_SETTLED = "(status = 'COMPLETED' OR status IS NULL)"


def _get_db():
    """Get a sqlite3 connection with WAL mode for concurrent reads."""
    conn = sqlite3.connect(DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db():
    """Create tables if they don't exist. Safe to call on every startup."""
    conn = _get_db()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS users (
            id          TEXT PRIMARY KEY,
            name        TEXT NOT NULL,
            email       TEXT NOT NULL DEFAULT '',
            role        TEXT NOT NULL DEFAULT 'VOLUNTEER',
            created_at  TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);

        CREATE TABLE IF NOT EXISTS families (
            id          TEXT PRIMARY KEY,
            name        TEXT NOT NULL,
            address     TEXT NOT NULL DEFAULT '',
            phone       TEXT NOT NULL DEFAULT '',
            status      TEXT NOT NULL DEFAULT 'ACTIVE',
            lat         REAL,
            lng         REAL,
            created_by  TEXT,
            created_at  TEXT NOT NULL,
            updated_at  TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_families_status ON families(status);
        CREATE INDEX IF NOT EXISTS idx_families_created ON families(created_at);

        CREATE TABLE IF NOT EXISTS items (
            id              TEXT PRIMARY KEY,
            name            TEXT NOT NULL,
            category        TEXT NOT NULL,
            quantity        INTEGER NOT NULL DEFAULT 0,
            unit            TEXT NOT NULL DEFAULT 'pieces',
            min_threshold   INTEGER NOT NULL DEFAULT 10,
            created_at      TEXT NOT NULL
        );

        -- status is nullable on purpose: rows imported from the first
        -- version of the product have none and count as COMPLETED.
        CREATE TABLE IF NOT EXISTS visits (
            id              TEXT PRIMARY KEY,
            family_id       TEXT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            reported_by     TEXT NOT NULL,
            assigned_to     TEXT NOT NULL DEFAULT '[]',
            completed_by    TEXT,
            status          TEXT,
            date            TEXT NOT NULL,
            aid_types       TEXT NOT NULL DEFAULT '[]',
            notes           TEXT NOT NULL DEFAULT '',
            proof_photo     TEXT NOT NULL DEFAULT '',
            check_in_json   TEXT,
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_visits_family_date ON visits(family_id, date);
        CREATE INDEX IF NOT EXISTS idx_visits_status ON visits(status);
    """)
    conn.commit()
    conn.close()


def generate_id():
    """Short, URL-safe record ID (12 hex chars)."""
    return uuid.uuid4().hex[:12]


def _now_iso():
    return iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def _row_to_user(row) -> User:
    return User(id=row["id"], name=row["name"], email=row["email"], role=Role(row["role"]))


def _row_to_family(row) -> Family:
    coords = None
    if row["lat"] is not None and row["lng"] is not None:
        coords = GeoPoint(lat=row["lat"], lng=row["lng"])
    return Family(
        id=row["id"],
        name=row["name"],
        address=row["address"],
        phone=row["phone"],
        status=FamilyStatus(row["status"]),
        coordinates=coords,
        created_at=parse_iso(row["created_at"]),
    )


def _row_to_item(row) -> Item:
    return Item(
        id=row["id"],
        name=row["name"],
        category=row["category"],
        quantity=row["quantity"],
        unit=row["unit"],
        min_threshold=row["min_threshold"],
    )


def _row_to_visit(row) -> Visit:
    check_in = None
    if row["check_in_json"]:
        try:
            check_in = CheckInLocation.from_dict(json.loads(row["check_in_json"]))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error("Corrupted check_in_json for visit %s: %s", row["id"], e)
    return Visit(
        id=row["id"],
        family_id=row["family_id"],
        reported_by=row["reported_by"],
        assigned_to=json.loads(row["assigned_to"] or "[]"),
        completed_by=row["completed_by"],
        status=VisitStatus(row["status"] or VisitStatus.COMPLETED.value),
        date=parse_iso(row["date"]),
        aid_types=json.loads(row["aid_types"] or "[]"),
        notes=row["notes"],
        proof_photo=row["proof_photo"],
        check_in_location=check_in,
        created_at=parse_iso(row["created_at"]),
        updated_at=parse_iso(row["updated_at"]),
    )


def _placeholders(values) -> str:
    return ",".join("?" for _ in values)


# =========================================================================
# Users
# =========================================================================

def create_user(name, role=Role.VOLUNTEER, email="", user_id=None):
    """Insert a user and return its ID."""
    user_id = user_id or generate_id()
    conn = _get_db()
    conn.execute(
        "INSERT INTO users (id, name, email, role, created_at) VALUES (?, ?, ?, ?, ?)",
        (user_id, name, email, Role(role).value, _now_iso()),
    )
    conn.commit()
    conn.close()
    return user_id


def get_user(user_id) -> Optional[User]:
    conn = _get_db()
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    conn.close()
    return _row_to_user(row) if row else None


def get_users_by_ids(user_ids: Iterable[str]) -> Dict[str, User]:
    """Batch lookup. Unknown IDs are simply absent from the result."""
    ids = sorted({u for u in user_ids if u})
    if not ids:
        return {}
    conn = _get_db()
    rows = conn.execute(
        f"SELECT * FROM users WHERE id IN ({_placeholders(ids)})", ids
    ).fetchall()
    conn.close()
    return {row["id"]: _row_to_user(row) for row in rows}


def list_users(role=None) -> List[User]:
    conn = _get_db()
    if role is None:
        rows = conn.execute("SELECT * FROM users ORDER BY name ASC").fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM users WHERE role = ? ORDER BY name ASC", (Role(role).value,)
        ).fetchall()
    conn.close()
    return [_row_to_user(r) for r in rows]


# =========================================================================
# Families
# =========================================================================

def create_family(name, status=FamilyStatus.ACTIVE, address="", phone="",
                  lat=None, lng=None, created_by=None, created_at=None,
                  family_id=None):
    """Insert a family and return its ID. created_at may be backdated."""
    family_id = family_id or generate_id()
    created = iso(created_at) if created_at else _now_iso()
    conn = _get_db()
    conn.execute(
        """INSERT INTO families
           (id, name, address, phone, status, lat, lng, created_by, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (family_id, name, address, phone, FamilyStatus(status).value,
         lat, lng, created_by, created, created),
    )
    conn.commit()
    conn.close()
    return family_id


def get_family(family_id) -> Optional[Family]:
    conn = _get_db()
    row = conn.execute("SELECT * FROM families WHERE id = ?", (family_id,)).fetchone()
    conn.close()
    return _row_to_family(row) if row else None


def get_families_by_ids(family_ids: Iterable[str]) -> Dict[str, Family]:
    ids = sorted({f for f in family_ids if f})
    if not ids:
        return {}
    conn = _get_db()
    rows = conn.execute(
        f"SELECT * FROM families WHERE id IN ({_placeholders(ids)})", ids
    ).fetchall()
    conn.close()
    return {row["id"]: _row_to_family(row) for row in rows}


def list_families(status=None, exclude_status=None) -> List[Family]:
    """Families newest-registered first, optionally filtered by status."""
    sql = "SELECT * FROM families"
    params = []
    if status is not None:
        sql += " WHERE status = ?"
        params.append(FamilyStatus(status).value)
    elif exclude_status is not None:
        sql += " WHERE status != ?"
        params.append(FamilyStatus(exclude_status).value)
    sql += " ORDER BY created_at DESC, rowid DESC"
    conn = _get_db()
    rows = conn.execute(sql, params).fetchall()
    conn.close()
    return [_row_to_family(r) for r in rows]


def update_family_status(family_id, status, expected_status=None) -> bool:
    """Set a family's status. Returns True if a row was updated.

    With expected_status, the update only applies if the current status
    matches, so two racing writers cannot both report a change.
    """
    sql = "UPDATE families SET status = ?, updated_at = ? WHERE id = ?"
    params = [FamilyStatus(status).value, _now_iso(), family_id]
    if expected_status is not None:
        sql += " AND status = ?"
        params.append(FamilyStatus(expected_status).value)
    conn = _get_db()
    cur = conn.execute(sql, params)
    changed = cur.rowcount
    conn.commit()
    conn.close()
    return changed > 0


def delete_family(family_id) -> bool:
    """Delete a family. Its visits go with it (ON DELETE CASCADE)."""
    conn = _get_db()
    cur = conn.execute("DELETE FROM families WHERE id = ?", (family_id,))
    changed = cur.rowcount
    conn.commit()
    conn.close()
    return changed > 0


def count_families(status=None) -> int:
    conn = _get_db()
    if status is None:
        row = conn.execute("SELECT COUNT(*) AS n FROM families").fetchone()
    else:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM families WHERE status = ?",
            (FamilyStatus(status).value,),
        ).fetchone()
    conn.close()
    return row["n"]


# =========================================================================
# Items
# =========================================================================

def create_item(name, category, quantity=0, min_threshold=10, unit="pieces", item_id=None):
    item_id = item_id or generate_id()
    conn = _get_db()
    conn.execute(
        """INSERT INTO items (id, name, category, quantity, unit, min_threshold, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (item_id, name, category, quantity, unit, min_threshold, _now_iso()),
    )
    conn.commit()
    conn.close()
    return item_id


def list_low_stock_items() -> List[Item]:
    """Items strictly below their minimum threshold, most critical first."""
    conn = _get_db()
    rows = conn.execute(
        """SELECT * FROM items
           WHERE quantity < min_threshold
           ORDER BY quantity ASC, name ASC"""
    ).fetchall()
    conn.close()
    return [_row_to_item(r) for r in rows]


# =========================================================================
# Visits
# =========================================================================

def insert_visit(visit: Visit) -> str:
    """Persist a new visit. Sets created_at/updated_at if missing."""
    now = _now_iso()
    conn = _get_db()
    conn.execute(
        """INSERT INTO visits
           (id, family_id, reported_by, assigned_to, completed_by, status, date,
            aid_types, notes, proof_photo, check_in_json, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            visit.id,
            visit.family_id,
            visit.reported_by,
            json.dumps(list(visit.assigned_to)),
            visit.completed_by,
            visit.status.value,
            iso(visit.date),
            json.dumps(list(visit.aid_types)),
            visit.notes,
            visit.proof_photo,
            json.dumps(visit.check_in_location.to_dict()) if visit.check_in_location else None,
            iso(visit.created_at) or now,
            iso(visit.updated_at) or now,
        ),
    )
    conn.commit()
    conn.close()
    return visit.id


def get_visit(visit_id) -> Optional[Visit]:
    conn = _get_db()
    row = conn.execute("SELECT * FROM visits WHERE id = ?", (visit_id,)).fetchone()
    conn.close()
    return _row_to_visit(row) if row else None


def list_visits(newest_first=True) -> List[Visit]:
    order = "DESC" if newest_first else "ASC"
    conn = _get_db()
    rows = conn.execute(f"SELECT * FROM visits ORDER BY date {order}").fetchall()
    conn.close()
    return [_row_to_visit(r) for r in rows]


def list_visits_for_family(family_id) -> List[Visit]:
    """Visit history for one family, newest first."""
    conn = _get_db()
    rows = conn.execute(
        "SELECT * FROM visits WHERE family_id = ? ORDER BY date DESC",
        (family_id,),
    ).fetchall()
    conn.close()
    return [_row_to_visit(r) for r in rows]


def list_planned_visits() -> List[Visit]:
    conn = _get_db()
    rows = conn.execute(
        "SELECT * FROM visits WHERE status = 'PLANNED' ORDER BY date ASC"
    ).fetchall()
    conn.close()
    return [_row_to_visit(r) for r in rows]


def list_settled_visits_by(user_id) -> List[Visit]:
    """Settled visits credited to user_id: completed_by, or reported_by on legacy rows."""
    conn = _get_db()
    rows = conn.execute(
        f"""SELECT * FROM visits
            WHERE {_SETTLED}
              AND (completed_by = ? OR (completed_by IS NULL AND reported_by = ?))
            ORDER BY date DESC""",
        (user_id, user_id),
    ).fetchall()
    conn.close()
    return [_row_to_visit(r) for r in rows]


def list_recent_settled_visits(limit) -> List[Visit]:
    conn = _get_db()
    rows = conn.execute(
        f"SELECT * FROM visits WHERE {_SETTLED} ORDER BY date DESC LIMIT ?",
        (limit,),
    ).fetchall()
    conn.close()
    return [_row_to_visit(r) for r in rows]


def family_ids_with_planned_visit() -> set:
    conn = _get_db()
    rows = conn.execute(
        "SELECT DISTINCT family_id FROM visits WHERE status = 'PLANNED'"
    ).fetchall()
    conn.close()
    return {r["family_id"] for r in rows}


def latest_settled_visit_dates() -> Dict[str, datetime]:
    """Map family_id -> date of its most recent settled visit."""
    conn = _get_db()
    rows = conn.execute(
        f"""SELECT family_id, MAX(date) AS last_date
            FROM visits WHERE {_SETTLED}
            GROUP BY family_id"""
    ).fetchall()
    conn.close()
    return {r["family_id"]: parse_iso(r["last_date"]) for r in rows}


def count_settled_visits() -> int:
    """Settled visits whose family still exists."""
    conn = _get_db()
    row = conn.execute(
        f"""SELECT COUNT(*) AS n FROM visits
            WHERE {_SETTLED}
              AND family_id IN (SELECT id FROM families)"""
    ).fetchone()
    conn.close()
    return row["n"]


def mark_visit_completed(visit_id, completed_by, completed_at, check_in,
                         proof_photo=None) -> bool:
    """Atomically move a PLANNED visit to COMPLETED.

    Clears assigned_to, stamps completed_by and the actual completion
    date, and stores the check-in location.  proof_photo replaces the
    stored one only when given.  Returns True if the UPDATE affected
    exactly one row; False means the visit was not PLANNED any more
    (already completed by a concurrent request) or does not exist.
    """
    now = _now_iso()
    sets = [
        "status = 'COMPLETED'",
        "completed_by = ?",
        "date = ?",
        "check_in_json = ?",
        "assigned_to = '[]'",
        "updated_at = ?",
    ]
    params = [
        completed_by,
        iso(completed_at),
        json.dumps(check_in.to_dict()) if check_in else None,
        now,
    ]
    if proof_photo:
        sets.append("proof_photo = ?")
        params.append(proof_photo)
    params.append(visit_id)
    conn = _get_db()
    cur = conn.execute(
        f"UPDATE visits SET {', '.join(sets)} WHERE id = ? AND status = 'PLANNED'",
        params,
    )
    changed = cur.rowcount
    conn.commit()
    conn.close()
    return changed == 1
