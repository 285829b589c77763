"""Unit tests for assignment.py: open/claimed missions and access rules."""

from datetime import datetime, timedelta, timezone

from assignment import (
    Actor, can_complete_visit, can_view_visit, is_open_mission, select_my_visits,
)
from records import Role, Visit, VisitStatus

T0 = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

ME = Actor(id="u-me", role=Role.VOLUNTEER)
OTHER = Actor(id="u-other", role=Role.VOLUNTEER)
COORD = Actor(id="u-coord", role=Role.COORDINATOR)
ADMIN = Actor(id="u-admin", role=Role.ADMIN)


def _visit(vid="v1", status=VisitStatus.PLANNED, assigned_to=(), completed_by=None,
           reported_by="u-coord", date=T0):
    return Visit(id=vid, family_id="f1", reported_by=reported_by, status=status,
                 date=date, assigned_to=list(assigned_to), completed_by=completed_by)


class TestOpenMission:
    def test_empty_assignment_is_open(self):
        assert is_open_mission(_visit()) is True

    def test_assigned_is_claimed(self):
        assert is_open_mission(_visit(assigned_to=["u-me"])) is False


class TestCanView:
    def test_open_planned_visible_to_any_volunteer(self):
        assert can_view_visit(_visit(), OTHER) is True

    def test_claimed_visible_to_assignee(self):
        assert can_view_visit(_visit(assigned_to=["u-me", "u-x"]), ME) is True

    def test_claimed_hidden_from_others(self):
        assert can_view_visit(_visit(assigned_to=["u-me"]), OTHER) is False

    def test_coordinator_and_admin_see_everything(self):
        v = _visit(status=VisitStatus.COMPLETED, completed_by="u-me")
        assert can_view_visit(v, COORD) is True
        assert can_view_visit(v, ADMIN) is True

    def test_completed_visible_to_completer_only(self):
        v = _visit(status=VisitStatus.COMPLETED, completed_by="u-me")
        assert can_view_visit(v, ME) is True
        assert can_view_visit(v, OTHER) is False

    def test_legacy_completed_falls_back_to_reporter(self):
        v = _visit(status=VisitStatus.COMPLETED, completed_by=None, reported_by="u-me")
        assert can_view_visit(v, ME) is True
        assert can_view_visit(v, OTHER) is False


class TestCanComplete:
    def test_open_mission(self):
        assert can_complete_visit(_visit(), OTHER) is True

    def test_claimed_by_me(self):
        assert can_complete_visit(_visit(assigned_to=["u-me"]), ME) is True

    def test_claimed_by_someone_else(self):
        assert can_complete_visit(_visit(assigned_to=["u-me"]), OTHER) is False

    def test_coordinator_overrides_claim(self):
        assert can_complete_visit(_visit(assigned_to=["u-me"]), COORD) is True

    def test_volunteer_cannot_complete_completed(self):
        v = _visit(status=VisitStatus.COMPLETED, completed_by="u-me")
        assert can_complete_visit(v, ME) is False


class TestSelectMyVisits:
    def test_union_and_ordering(self):
        later = _visit("open-later", date=T0 + timedelta(days=3))
        sooner = _visit("mine-sooner", assigned_to=["u-me"], date=T0 + timedelta(days=1))
        theirs = _visit("theirs", assigned_to=["u-other"])
        done_old = _visit("done-old", status=VisitStatus.COMPLETED, completed_by="u-me",
                          date=T0 - timedelta(days=10))
        done_new = _visit("done-new", status=VisitStatus.COMPLETED, completed_by="u-me",
                          date=T0 - timedelta(days=1))
        done_legacy = _visit("legacy", status=VisitStatus.COMPLETED, reported_by="u-me",
                             date=T0 - timedelta(days=5))
        done_by_other = _visit("other-done", status=VisitStatus.COMPLETED,
                               completed_by="u-other", reported_by="u-me")

        result = select_my_visits(
            [later, theirs, done_old, sooner, done_new, done_legacy, done_by_other], ME
        )
        assert [v.id for v in result] == [
            "mine-sooner", "open-later", "done-new", "legacy", "done-old",
        ]

    def test_duplicates_dropped(self):
        v = _visit("dup")
        assert [x.id for x in select_my_visits([v, v], ME)] == ["dup"]
