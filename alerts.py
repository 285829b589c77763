"""
Operations-centre alerts: which families need attention right now.

  - urgent families:    URGENT and no PLANNED visit on the books
  - forgotten families: not URGENT, and last settled visit before the
                        cutoff (or never visited)
  - low stock items:    quantity below the item's minimum threshold
  - recent reports:     latest settled visits, with who did them

The two family lists are disjoint by construction: forgotten families
are drawn only from non-URGENT families.  Everything is recomputed from
the store on every call; there is no cache.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import models
from records import (
    AlertsSnapshot, Family, FamilyStatus, ForgottenFamily, RecentReport,
)
from visit_config import NEGLECT, NeglectConfig
from visits import DEFAULT_FAMILY_LABEL, DEFAULT_VOLUNTEER_LABEL

logger = logging.getLogger(__name__)


def forgotten_cutoff(now: datetime, days: int) -> datetime:
    """Start of the day (UTC) that lies ``days`` days before ``now``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    then = now.astimezone(timezone.utc) - timedelta(days=days)
    return then.replace(hour=0, minute=0, second=0, microsecond=0)


def find_urgent_unvisited() -> List[Family]:
    planned = models.family_ids_with_planned_visit()
    return [f for f in models.list_families(status=FamilyStatus.URGENT)
            if f.id not in planned]


def find_forgotten(cutoff: datetime) -> List[ForgottenFamily]:
    """Join non-urgent families to their latest settled visit, then filter.

    list_families already returns newest-registered first and the filter
    keeps that order.
    """
    last_visits = models.latest_settled_visit_dates()
    joined = [
        ForgottenFamily(family=f, last_visit_date=last_visits.get(f.id))
        for f in models.list_families(exclude_status=FamilyStatus.URGENT)
    ]
    return [
        entry for entry in joined
        if entry.last_visit_date is None or entry.last_visit_date < cutoff
    ]


def recent_reports(limit: int) -> List[RecentReport]:
    visits = models.list_recent_settled_visits(limit)
    families = models.get_families_by_ids(v.family_id for v in visits)
    users = models.get_users_by_ids(
        uid for v in visits for uid in (v.completed_by, v.reported_by)
    )

    reports = []
    for v in visits:
        family = families.get(v.family_id)
        volunteer = users.get(v.completed_by) or users.get(v.reported_by)
        reports.append(RecentReport(
            visit_id=v.id,
            family_name=family.name if family and family.name else DEFAULT_FAMILY_LABEL,
            volunteer_name=volunteer.name if volunteer and volunteer.name else DEFAULT_VOLUNTEER_LABEL,
            notes=v.notes or "",
            date=v.date,
        ))
    return reports


def compute_alerts(now: Optional[datetime] = None,
                   config: NeglectConfig = NEGLECT) -> AlertsSnapshot:
    """Point-in-time alerts snapshot. Read-only."""
    now = now or datetime.now(timezone.utc)
    cutoff = forgotten_cutoff(now, config.forgotten_after_days)

    snapshot = AlertsSnapshot(
        urgent_families=find_urgent_unvisited(),
        forgotten_families=find_forgotten(cutoff),
        low_stock_items=models.list_low_stock_items(),
        recent_reports=recent_reports(config.recent_reports_limit),
    )
    logger.info(
        "Alerts computed: %d urgent, %d forgotten (cutoff %s), %d low stock",
        len(snapshot.urgent_families), len(snapshot.forgotten_families),
        cutoff.date().isoformat(), len(snapshot.low_stock_items),
    )
    return snapshot


def compute_dashboard_stats() -> Dict[str, Any]:
    """Headline counters for the coordinator dashboard."""
    return {
        "totalFamilies": models.count_families(),
        "urgentFamilies": models.count_families(status=FamilyStatus.URGENT),
        "visitsCount": models.count_settled_visits(),
    }
