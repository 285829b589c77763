"""
Record types shared by the store, the visit use cases and the alerts view.

Families, items and users belong to other parts of the product; only the
fields this core reads are modelled here.  Visits are owned here.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from geo import GeoPoint


# =============================================================================
# Enums
# =============================================================================

class FamilyStatus(str, Enum):
    ACTIVE = "ACTIVE"
    URGENT = "URGENT"


class VisitStatus(str, Enum):
    PLANNED = "PLANNED"
    COMPLETED = "COMPLETED"


class Role(str, Enum):
    VOLUNTEER = "VOLUNTEER"
    COORDINATOR = "COORDINATOR"
    ADMIN = "ADMIN"


def iso(dt: Optional[datetime]) -> Optional[str]:
    """UTC ISO-8601 with fixed microsecond precision so strings sort like datetimes."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if value.endswith(("Z", "z")):
        # JS toISOString(); fromisoformat only accepts "Z" from 3.11
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# =============================================================================
# Collaborator-owned records
# =============================================================================

@dataclass
class User:
    id: str
    name: str
    role: Role
    email: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email, "role": self.role.value}


@dataclass
class Family:
    id: str
    name: str
    status: FamilyStatus
    created_at: datetime
    address: str = ""
    phone: str = ""
    coordinates: Optional[GeoPoint] = None

    @property
    def is_urgent(self) -> bool:
        return self.status == FamilyStatus.URGENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "status": self.status.value,
            "coordinates": (
                {"lat": self.coordinates.lat, "lng": self.coordinates.lng}
                if self.coordinates else None
            ),
            "createdAt": iso(self.created_at),
        }


@dataclass
class Item:
    id: str
    name: str
    category: str
    quantity: int
    min_threshold: int = 10
    unit: str = "pieces"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "quantity": self.quantity,
            "unit": self.unit,
            "minThreshold": self.min_threshold,
        }


# =============================================================================
# Visits
# =============================================================================

@dataclass
class CheckInLocation:
    """Where the volunteer stood when presence was verified.

    distance_m is None and geofence_skipped is True when the family had no
    stored coordinates and the check-in was accepted on trust.
    """
    lat: float
    lng: float
    recorded_at: datetime
    accuracy: Optional[float] = None
    distance_m: Optional[int] = None
    geofence_skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "accuracy": self.accuracy,
            "recordedAt": iso(self.recorded_at),
            "distanceMeters": self.distance_m,
            "geofenceSkipped": self.geofence_skipped,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckInLocation":
        return cls(
            lat=data["lat"],
            lng=data["lng"],
            accuracy=data.get("accuracy"),
            recorded_at=parse_iso(data.get("recordedAt")),
            distance_m=data.get("distanceMeters"),
            geofence_skipped=bool(data.get("geofenceSkipped", False)),
        )


@dataclass
class Visit:
    id: str
    family_id: str
    reported_by: str
    status: VisitStatus
    date: datetime
    assigned_to: List[str] = field(default_factory=list)
    completed_by: Optional[str] = None
    aid_types: List[str] = field(default_factory=list)
    notes: str = ""
    proof_photo: str = ""
    check_in_location: Optional[CheckInLocation] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_settled(self) -> bool:
        """Counts as done for aggregation purposes."""
        return self.status == VisitStatus.COMPLETED

    @property
    def credited_to(self) -> str:
        """Who gets credit for a completed visit (legacy rows lack completed_by)."""
        return self.completed_by or self.reported_by

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "familyId": self.family_id,
            "reportedBy": self.reported_by,
            "assignedTo": list(self.assigned_to),
            "completedBy": self.completed_by,
            "status": self.status.value,
            "date": iso(self.date),
            "types": list(self.aid_types),
            "notes": self.notes,
            "proofPhoto": self.proof_photo,
            "checkInLocation": (
                self.check_in_location.to_dict() if self.check_in_location else None
            ),
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }


# =============================================================================
# Alerts view
# =============================================================================

@dataclass
class ForgottenFamily:
    family: Family
    last_visit_date: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        data = self.family.to_dict()
        data["lastVisitDate"] = iso(self.last_visit_date)
        return data


@dataclass
class RecentReport:
    visit_id: str
    family_name: str
    volunteer_name: str
    notes: str
    date: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.visit_id,
            "familyName": self.family_name,
            "volunteerName": self.volunteer_name,
            "notes": self.notes,
            "date": iso(self.date),
        }


@dataclass
class AlertsSnapshot:
    urgent_families: List[Family]
    forgotten_families: List[ForgottenFamily]
    low_stock_items: List[Item]
    recent_reports: List[RecentReport]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "urgentFamilies": [f.to_dict() for f in self.urgent_families],
            "forgottenFamilies": [f.to_dict() for f in self.forgotten_families],
            "lowStockItems": [i.to_dict() for i in self.low_stock_items],
            "recentReports": [r.to_dict() for r in self.recent_reports],
        }
