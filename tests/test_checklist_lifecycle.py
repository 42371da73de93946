"""
Checklist response lifecycle tests.

Covers:
  - attachment validation from the item template
  - one row per (inspection, item); resubmission before review updates it
  - project lead review is one-shot (AlreadyFinalized afterwards)
  - reviewer notification and project derivation on first response
"""

import pytest

from certflow.core.exceptions import AlreadyFinalized, InvalidTransition, NotFound, PermissionDenied, ValidationFailed
from certflow.models import db
from certflow.models.checklist import ChecklistItem, ChecklistResponse, ChecklistStatus
from certflow.models.notification import Notification
from certflow.models.project import Project, ProjectStatus
from certflow.services.checklist_lifecycle import (
    DEFAULT_CHECKLIST_ITEMS,
    approve_response,
    list_responses,
    reject_response,
    review_response,
    schedule_inspection,
    seed_default_items,
    submit_response,
)


@pytest.fixture()
def inspection(people, project):
    return schedule_inspection(project.id, people["project_lead"],
                               inspector_id=people["inspector"].id)


def _item(code="pondasi", *, photo=False, geotag=False):
    item = ChecklistItem(code=code, title=code.title(), category="struktur",
                         requires_photo=photo, requires_geotag=geotag)
    db.session.add(item)
    db.session.commit()
    return item


class TestSubmit:

    def test_missing_photo_is_rejected(self, people, inspection):
        item = _item(photo=True)
        with pytest.raises(ValidationFailed) as exc:
            submit_response(inspection.id, item.id, people["inspector"], response={"ok": True})
        assert exc.value.details == {"photo_url": "required"}
        assert ChecklistResponse.query.count() == 0

    def test_missing_geotag_is_rejected(self, people, inspection):
        item = _item(geotag=True)
        with pytest.raises(ValidationFailed) as exc:
            submit_response(inspection.id, item.id, people["inspector"], latitude=-6.2)
        assert exc.value.details == {"longitude": "required"}

    def test_complete_attachments_are_accepted(self, people, inspection):
        item = _item(photo=True, geotag=True)
        row, created = submit_response(
            inspection.id, item.id, people["inspector"],
            response={"kesesuaian": "Sesuai"}, photo_url="https://cdn.test/p.jpg",
            latitude=-6.2, longitude=106.8,
        )
        assert created is True
        assert row.status == ChecklistStatus.SUBMITTED
        assert row.response == {"kesesuaian": "Sesuai"}

    def test_resubmission_updates_same_row(self, people, inspection):
        item = _item()
        first, _ = submit_response(inspection.id, item.id, people["inspector"], notes="awal")
        second, created = submit_response(inspection.id, item.id, people["inspector"], notes="revisi")
        assert created is False
        assert second.id == first.id
        assert ChecklistResponse.query.count() == 1
        assert second.notes == "revisi"

    def test_resubmission_after_review_is_final(self, people, inspection):
        item = _item()
        row, _ = submit_response(inspection.id, item.id, people["inspector"])
        approve_response(row.id, people["project_lead"])
        with pytest.raises(AlreadyFinalized):
            submit_response(inspection.id, item.id, people["inspector"], notes="lagi")

    def test_drafter_cannot_answer(self, people, inspection):
        item = _item()
        with pytest.raises(PermissionDenied):
            submit_response(inspection.id, item.id, people["drafter"])

    def test_outsider_gets_not_found(self, people, inspection):
        item = _item()
        with pytest.raises(NotFound):
            submit_response(inspection.id, item.id, people["outsider"])

    def test_first_response_starts_inspection_phase_of_project(self, people, project, inspection):
        project.status = ProjectStatus.INSPECTION_SCHEDULED
        db.session.commit()
        submit_response(inspection.id, _item().id, people["inspector"])
        assert db.session.get(Project, project.id, populate_existing=True).status == (
            ProjectStatus.INSPECTION_IN_PROGRESS
        )


class TestReview:

    def test_approve(self, people, inspection):
        row, _ = submit_response(inspection.id, _item().id, people["inspector"])
        row = approve_response(row.id, people["project_lead"])
        assert row.status == ChecklistStatus.PROJECT_LEAD_APPROVED
        assert row.reviewed_by == people["project_lead"].id

    def test_reject_stores_notes_and_notifies_inspector(self, people, inspection):
        row, _ = submit_response(inspection.id, _item().id, people["inspector"])
        row = reject_response(row.id, people["project_lead"], notes="foto buram")
        assert row.status == ChecklistStatus.REJECTED
        assert row.notes == "foto buram"
        notes = Notification.query.filter_by(type="checklist_reviewed").all()
        assert [n.recipient_id for n in notes] == [people["inspector"].id]

    @pytest.mark.parametrize("first", ["approve", "reject"])
    def test_second_review_is_already_finalized(self, people, inspection, first):
        row, _ = submit_response(inspection.id, _item().id, people["inspector"])
        if first == "approve":
            approve_response(row.id, people["project_lead"])
        else:
            reject_response(row.id, people["project_lead"], notes="x")
        final = db.session.get(ChecklistResponse, row.id, populate_existing=True).status
        with pytest.raises(AlreadyFinalized):
            reject_response(row.id, people["project_lead"], notes="y")
        assert db.session.get(ChecklistResponse, row.id, populate_existing=True).status == final

    def test_only_project_lead_reviews(self, people, inspection):
        row, _ = submit_response(inspection.id, _item().id, people["inspector"])
        with pytest.raises(PermissionDenied):
            approve_response(row.id, people["admin_lead"])

    def test_back_to_submitted_is_invalid(self, people, inspection):
        row, _ = submit_response(inspection.id, _item().id, people["inspector"])
        with pytest.raises(InvalidTransition):
            review_response(row.id, people["project_lead"], "submitted")


class TestHelpers:

    def test_list_responses(self, people, inspection):
        submit_response(inspection.id, _item("a").id, people["inspector"])
        submit_response(inspection.id, _item("b").id, people["inspector"])
        assert len(list_responses(inspection.id, people["client_user"])) == 2

    def test_seed_is_idempotent(self):
        assert seed_default_items() == len(DEFAULT_CHECKLIST_ITEMS)
        assert seed_default_items() == 0

    def test_inspector_cannot_schedule(self, people, project):
        with pytest.raises(PermissionDenied):
            schedule_inspection(project.id, people["inspector"])
