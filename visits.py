"""
Visit lifecycle: creation, live completion, and the read use cases.

A visit is PLANNED or COMPLETED and only ever moves forward.  Two paths
produce a COMPLETED visit:

  - create_visit with status COMPLETED: a retrospective log entry.  GPS is
    optional; when a position is supplied it is geofenced like a live
    check-in.
  - complete_existing_visit: a volunteer on site validates a PLANNED
    visit.  GPS is mandatory and geofenced.

Urgency resolution touches the family record as well as the visit, with
no transaction spanning both.  The write order is fixed per path and the
failure behaviour is documented on each function.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import models
from assignment import Actor, can_complete_visit, can_view_visit, select_my_visits
from checkin import build_check_in, parse_location, validate_proximity
from errors import AlreadyCompleted, Forbidden, NotFound, ValidationError
from records import Family, FamilyStatus, User, Visit, VisitStatus, parse_iso
from visit_config import GEOFENCE, GeofenceConfig

logger = logging.getLogger(__name__)

DEFAULT_VOLUNTEER_LABEL = "Volunteer"
DEFAULT_FAMILY_LABEL = "Family"


# =============================================================================
# Input parsing
# =============================================================================

def _parse_string_list(value: Any, field: str) -> List[str]:
    """Accept a list of strings; drop blanks and duplicates, keep order."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(field, "must be a list")
    result = []
    for entry in value:
        if entry is None or entry == "":
            continue
        if not isinstance(entry, str):
            raise ValidationError(field, "must contain only strings")
        entry = entry.strip()
        if entry and entry not in result:
            result.append(entry)
    return result


def _parse_text(value: Any, field: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string")
    return value.strip()


def _parse_date(value: Any, field: str, default: datetime) -> datetime:
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise ValidationError(field, "must be an ISO-8601 date string")
    try:
        return parse_iso(value)
    except ValueError:
        raise ValidationError(field, f"invalid date {value!r}") from None


def _parse_status(value: Any) -> Optional[VisitStatus]:
    if value is None or value == "":
        return None
    try:
        return VisitStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in VisitStatus)
        raise ValidationError("status", f"invalid value {value!r} (allowed: {allowed})") from None


# =============================================================================
# Presentation
# =============================================================================

def _user_ref(user_id: Optional[str], users: Dict[str, User]) -> Optional[Dict[str, Any]]:
    if not user_id:
        return None
    user = users.get(user_id)
    return {"id": user_id, "name": user.name if user else None}


def present_visits(visits: Iterable[Visit],
                   families: Optional[Dict[str, Family]] = None) -> List[Dict[str, Any]]:
    """Serialize visits with family, reporter, assignee and completer names resolved.

    Lookups are batched: one query for families, one for users.
    """
    visits = list(visits)
    if families is None:
        families = models.get_families_by_ids(v.family_id for v in visits)
    user_ids = set()
    for v in visits:
        user_ids.add(v.reported_by)
        user_ids.update(v.assigned_to)
        if v.completed_by:
            user_ids.add(v.completed_by)
    users = models.get_users_by_ids(user_ids)

    out = []
    for v in visits:
        data = v.to_dict()
        family = families.get(v.family_id)
        data["family"] = family.to_dict() if family else None
        data["reporter"] = _user_ref(v.reported_by, users)
        data["completer"] = _user_ref(v.completed_by, users)
        data["assignees"] = [_user_ref(uid, users) for uid in v.assigned_to]
        out.append(data)
    return out


def present_visit(visit: Visit) -> Dict[str, Any]:
    return present_visits([visit])[0]


# =============================================================================
# Urgency side effect
# =============================================================================

def _resolve_urgency(family: Family) -> bool:
    """URGENT -> ACTIVE. Returns True if this call changed the status."""
    changed = models.update_family_status(
        family.id, FamilyStatus.ACTIVE, expected_status=FamilyStatus.URGENT
    )
    if changed:
        logger.info("Family %s urgency resolved (URGENT -> ACTIVE)", family.id)
    return changed


# =============================================================================
# Creation
# =============================================================================

@dataclass
class VisitOutcome:
    visit: Visit
    urgency_resolved: bool = False
    caveat: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = present_visit(self.visit)
        data["urgencyResolved"] = self.urgency_resolved
        if self.caveat:
            data["caveat"] = self.caveat
        return data


def create_visit(family_id: Any, actor: Actor, fields: Dict[str, Any],
                 now: Optional[datetime] = None,
                 geofence: GeofenceConfig = GEOFENCE) -> VisitOutcome:
    """Record a visit, planned or already done.

    Status defaults to PLANNED for a future date and COMPLETED otherwise.
    A proof photo and a check-in location are kept only on a COMPLETED
    visit; on a PLANNED one they are dropped without error.

    Every input is validated, and a supplied position geofenced, before
    anything is written.  Then, if resolveUrgency is true and the family
    is URGENT, the family is set ACTIVE first and the visit inserted
    second.  If the insert fails after that, the family stays ACTIVE.
    """
    now = now or datetime.now(timezone.utc)
    if not family_id or not isinstance(family_id, str):
        raise ValidationError("familyId", "is required")
    family = models.get_family(family_id)
    if family is None:
        raise NotFound("Family not found.")

    aid_types = _parse_string_list(fields.get("types"), "types")
    notes = _parse_text(fields.get("notes"), "notes")
    proof_photo = _parse_text(fields.get("proofPhoto"), "proofPhoto")
    assigned_to = _parse_string_list(fields.get("assignedTo"), "assignedTo")
    date = _parse_date(fields.get("date"), "date", default=now)
    status = _parse_status(fields.get("status"))
    if status is None:
        status = VisitStatus.PLANNED if date > now else VisitStatus.COMPLETED
    resolve_urgency = fields.get("resolveUrgency") is True

    check_in = None
    caveat = None
    completed_by = None
    if status == VisitStatus.COMPLETED:
        completed_by = actor.id
        assigned_to = []
        raw_location = fields.get("checkInLocation")
        location = parse_location(raw_location, field="checkInLocation",
                                  required=False)
        if location is None and raw_location is not None:
            raise ValidationError("checkInLocation", "lat and lng must be numbers")
        if location is not None:
            check = validate_proximity(location, family.coordinates,
                                       geofence.radius_for("create"))
            caveat = check.caveat
            recorded_at = _parse_date(
                (fields.get("checkInLocation") or {}).get("recordedAt"),
                "checkInLocation.recordedAt", default=now,
            )
            check_in = build_check_in(location, check, recorded_at)
    else:
        proof_photo = ""

    urgency_resolved = False
    if resolve_urgency and family.is_urgent:
        urgency_resolved = _resolve_urgency(family)

    visit = Visit(
        id=models.generate_id(),
        family_id=family.id,
        reported_by=actor.id,
        assigned_to=assigned_to,
        completed_by=completed_by,
        status=status,
        date=date,
        aid_types=aid_types,
        notes=notes,
        proof_photo=proof_photo,
        check_in_location=check_in,
        created_at=now,
        updated_at=now,
    )
    models.insert_visit(visit)
    logger.info(
        "Visit %s created for family %s by %s (status=%s, assigned=%d)",
        visit.id, family.id, actor.id, status.value, len(assigned_to),
    )
    return VisitOutcome(visit=models.get_visit(visit.id),
                        urgency_resolved=urgency_resolved, caveat=caveat)


# =============================================================================
# Completion
# =============================================================================

def complete_existing_visit(visit_id: str, actor: Actor, evidence: Dict[str, Any],
                            entry_point: str = "validate",
                            now: Optional[datetime] = None,
                            geofence: GeofenceConfig = GEOFENCE) -> VisitOutcome:
    """Validate presence on a PLANNED visit and mark it COMPLETED.

    evidence: ``{location: {lat, lng, accuracy?}, resolveUrgency?, proofPhoto?}``.
    entry_point picks the geofence radius ("validate" or "checkin").

    The visit write is guarded on status = PLANNED, so of two concurrent
    completions exactly one wins and the other gets AlreadyCompleted.
    Urgency is resolved only after the visit write has won.  If that
    family update then fails, the completion stands, the error is logged,
    and the outcome reports urgency_resolved=False.
    """
    now = now or datetime.now(timezone.utc)
    evidence = evidence or {}

    visit = models.get_visit(visit_id)
    if visit is None:
        raise NotFound("Visit not found.")
    if visit.status == VisitStatus.COMPLETED:
        if can_view_visit(visit, actor):
            raise AlreadyCompleted()
        raise Forbidden("You cannot validate this visit.")
    if not can_complete_visit(visit, actor):
        raise Forbidden("You cannot validate this visit.")

    location = parse_location(evidence.get("location"), field="location", required=True)
    proof_photo = _parse_text(evidence.get("proofPhoto"), "proofPhoto")
    resolve_urgency = evidence.get("resolveUrgency") is True

    family = models.get_family(visit.family_id)
    if family is None:
        raise NotFound("Family not found.")

    radius_m = geofence.radius_for(entry_point)
    check = validate_proximity(location, family.coordinates, radius_m)
    check_in = build_check_in(location, check, recorded_at=now)

    if not models.mark_visit_completed(visit.id, actor.id, now, check_in,
                                       proof_photo=proof_photo or None):
        raise AlreadyCompleted()
    logger.info(
        "Visit %s completed by %s via %s (distance=%s m, radius=%d m)",
        visit.id, actor.id, entry_point, check.distance_m, radius_m,
    )

    urgency_resolved = False
    if resolve_urgency and family.is_urgent:
        try:
            urgency_resolved = _resolve_urgency(family)
        except sqlite3.Error:
            logger.exception(
                "Visit %s completed but urgency resolution for family %s failed",
                visit.id, family.id,
            )

    return VisitOutcome(visit=models.get_visit(visit.id),
                        urgency_resolved=urgency_resolved, caveat=check.caveat)


# =============================================================================
# Reads
# =============================================================================

def get_visit_for_actor(visit_id: str, actor: Actor) -> Dict[str, Any]:
    visit = models.get_visit(visit_id)
    if visit is None:
        raise NotFound("Visit not found.")
    if not can_view_visit(visit, actor):
        raise Forbidden("Access to this visit is not allowed.")
    return present_visit(visit)


def list_my_visits(actor: Actor) -> List[Dict[str, Any]]:
    candidates = models.list_planned_visits() + models.list_settled_visits_by(actor.id)
    return present_visits(select_my_visits(candidates, actor))


def list_all_visits() -> Dict[str, Any]:
    """All visits newest first, skipping any whose family no longer exists.

    count is the number of settled visits, which is what the dashboard
    counter shows.
    """
    visits = models.list_visits(newest_first=True)
    families = models.get_families_by_ids(v.family_id for v in visits)
    valid = [v for v in visits if v.family_id in families]
    return {
        "visits": present_visits(valid, families=families),
        "count": sum(1 for v in valid if v.is_settled),
    }


def list_family_visits(family_id: str) -> List[Dict[str, Any]]:
    family = models.get_family(family_id)
    if family is None:
        raise NotFound("Family not found.")
    return present_visits(models.list_visits_for_family(family_id),
                          families={family.id: family})
