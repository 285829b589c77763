"""
Who may see and act on a visit.

The acting user arrives as an Actor injected by the authentication layer.
Everything here is a pure predicate over (visit, actor); the HTTP layer
and the lifecycle use cases call these instead of comparing role strings.

  - open mission:    PLANNED, nobody assigned -> any volunteer
  - claimed mission: PLANNED, assigned_to non-empty -> only the assignees
  - completed visit: only whoever completed it (reported_by on legacy rows)
Coordinators and admins may do everything.
"""

from dataclasses import dataclass
from typing import Iterable, List

from records import Role, Visit, VisitStatus

PRIVILEGED_ROLES = frozenset({Role.ADMIN, Role.COORDINATOR})


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


def is_open_mission(visit: Visit) -> bool:
    return not visit.assigned_to


def is_assigned_to(visit: Visit, actor: Actor) -> bool:
    return actor.id in visit.assigned_to


def _may_take_planned(visit: Visit, actor: Actor) -> bool:
    return is_open_mission(visit) or is_assigned_to(visit, actor)


def can_view_visit(visit: Visit, actor: Actor) -> bool:
    if actor.is_privileged:
        return True
    if visit.status == VisitStatus.PLANNED:
        return _may_take_planned(visit, actor)
    return visit.credited_to == actor.id


def can_complete_visit(visit: Visit, actor: Actor) -> bool:
    """May the actor move this visit to COMPLETED (status permitting)?"""
    if actor.is_privileged:
        return True
    return visit.status == VisitStatus.PLANNED and _may_take_planned(visit, actor)


def select_my_visits(visits: Iterable[Visit], actor: Actor) -> List[Visit]:
    """The visits a volunteer's mission list shows.

    Open and own planned visits come first, soonest first; then the
    visits the actor completed, most recent first.  Duplicates are
    dropped by ID.
    """
    planned, completed = [], []
    seen = set()
    for visit in visits:
        if visit.id in seen:
            continue
        if visit.status == VisitStatus.PLANNED:
            if _may_take_planned(visit, actor):
                planned.append(visit)
                seen.add(visit.id)
        elif visit.credited_to == actor.id:
            completed.append(visit)
            seen.add(visit.id)

    planned.sort(key=lambda v: v.date)
    completed.sort(key=lambda v: v.date, reverse=True)
    return planned + completed
