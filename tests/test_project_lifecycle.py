"""
Project status machine tests.

Covers:
  - submit by the creating admin lead / refusal for a client user
  - every valid edge of PROJECT_TRANSITIONS, driven by an allowed role
  - structurally invalid edges → InvalidTransition, status unchanged
  - cancel / reject side exits and terminal states
  - derived forward steps from checklist and report progress
  - creation defaults and team assignment
"""

import pytest

from certflow.core.exceptions import Conflict, InvalidTransition, NotFound, PermissionDenied, ValidationFailed
from certflow.models import db
from certflow.models.auth import Role
from certflow.models.checklist import ChecklistItem, ChecklistResponse, Inspection
from certflow.models.document import Document, DocumentStatus, DocumentType
from certflow.models.notification import Notification
from certflow.models.project import (
    PROJECT_TARGET_ROLES,
    PROJECT_TRANSITIONS,
    PhaseStatus,
    Project,
    ProjectPhase,
    ProjectStatus,
    ProjectTeam,
)
from certflow.services.helpers.state_guard import compare_and_set
from certflow.services.project_lifecycle import (
    cancel_project,
    get_available_targets,
    reevaluate_project_status,
    reject_project,
    submit_project,
    transition_project,
)
from certflow.services.project_service import assign_team_member, create_project


def _set_status(project, status):
    project.status = status
    db.session.commit()


def _status(project_id):
    return db.session.get(Project, project_id, populate_existing=True).status


def _actor_for(people, target):
    roles = PROJECT_TARGET_ROLES[target]
    for role, key in (
        (Role.ADMIN_LEAD, "admin_lead"),
        (Role.PROJECT_LEAD, "project_lead"),
        (Role.HEAD_CONSULTANT, "head_consultant"),
    ):
        if role in roles:
            return people[key]
    return people["superadmin"]


_VALID = [(src, tgt) for src, targets in PROJECT_TRANSITIONS.items() for tgt in targets]
_INVALID = [
    (src, tgt)
    for src, targets in PROJECT_TRANSITIONS.items()
    for tgt in ProjectStatus
    if tgt not in targets
]


class TestSubmit:

    def test_admin_lead_creator_submits_draft(self, people, project):
        result = submit_project(project.id, people["admin_lead"])
        assert result == {"project_id": project.id, "previous_status": "draft",
                          "new_status": "submitted"}
        assert _status(project.id) == ProjectStatus.SUBMITTED

    def test_client_cannot_submit(self, people, project):
        with pytest.raises(PermissionDenied):
            submit_project(project.id, people["client_user"])
        assert _status(project.id) == ProjectStatus.DRAFT

    def test_outsider_gets_not_found(self, people, project):
        with pytest.raises(NotFound):
            submit_project(project.id, people["outsider"])
        assert _status(project.id) == ProjectStatus.DRAFT

    def test_submit_notifies_team_and_client(self, people, project):
        submit_project(project.id, people["admin_lead"])
        recipients = {
            n.recipient_id
            for n in Notification.query.filter_by(type="project_status_change").all()
        }
        assert people["client_user"].id in recipients
        assert people["project_lead"].id in recipients
        assert people["inspector"].id in recipients
        assert people["outsider"].id not in recipients


class TestEdges:

    @pytest.mark.parametrize("from_status,to_status", _VALID)
    def test_valid_edge(self, people, project, from_status, to_status):
        _set_status(project, from_status)
        transition_project(project.id, to_status.value, _actor_for(people, to_status))
        assert _status(project.id) == to_status

    @pytest.mark.parametrize("from_status,to_status", _INVALID)
    def test_invalid_edge(self, people, project, from_status, to_status):
        _set_status(project, from_status)
        with pytest.raises(InvalidTransition):
            transition_project(project.id, to_status, people["superadmin"])
        assert _status(project.id) == from_status

    @pytest.mark.parametrize("from_status,to_status", [
        (ProjectStatus.SUBMITTED, ProjectStatus.DRAFT),
        (ProjectStatus.DRAFT, ProjectStatus.INSPECTION_SCHEDULED),
        (ProjectStatus.DRAFT, ProjectStatus.COMPLETED),
        (ProjectStatus.COMPLETED, ProjectStatus.CANCELLED),
    ])
    def test_invalid_edge_is_invalid_for_any_role(self, people, project, from_status, to_status):
        _set_status(project, from_status)
        for who in ("admin_lead", "client_user", "drafter"):
            with pytest.raises(InvalidTransition):
                transition_project(project.id, to_status, people[who])
        assert _status(project.id) == from_status

    def test_unknown_status_is_invalid(self, people, project):
        with pytest.raises(InvalidTransition):
            transition_project(project.id, "issued", people["admin_lead"])

    def test_inspector_may_start_inspection(self, people, project):
        _set_status(project, ProjectStatus.INSPECTION_SCHEDULED)
        transition_project(project.id, "inspection_in_progress", people["inspector"])
        assert _status(project.id) == ProjectStatus.INSPECTION_IN_PROGRESS

    def test_drafter_cannot_schedule_inspection(self, people, project):
        _set_status(project, ProjectStatus.PROJECT_LEAD_REVIEW)
        with pytest.raises(PermissionDenied):
            transition_project(project.id, "inspection_scheduled", people["drafter"])


class TestSideExits:

    def test_cancel_from_mid_chain(self, people, project):
        _set_status(project, ProjectStatus.REPORT_DRAFT)
        cancel_project(project.id, people["admin_lead"])
        assert _status(project.id) == ProjectStatus.CANCELLED

    def test_head_consultant_may_reject(self, people, project):
        _set_status(project, ProjectStatus.HEAD_CONSULTANT_REVIEW)
        reject_project(project.id, people["head_consultant"])
        assert _status(project.id) == ProjectStatus.REJECTED

    def test_project_lead_cannot_cancel(self, people, project):
        with pytest.raises(PermissionDenied):
            cancel_project(project.id, people["project_lead"])

    @pytest.mark.parametrize("terminal", [
        ProjectStatus.COMPLETED, ProjectStatus.CANCELLED, ProjectStatus.REJECTED,
    ])
    def test_terminal_states_have_no_exit(self, people, project, terminal):
        _set_status(project, terminal)
        with pytest.raises(InvalidTransition):
            cancel_project(project.id, people["superadmin"])

    def test_available_targets(self, people, project):
        assert get_available_targets(project, people["admin_lead"]) == [
            "submitted", "cancelled", "rejected",
        ]
        assert get_available_targets(project, people["head_consultant"]) == ["rejected"]


class TestGuardedWrite:

    def test_stale_expected_status_is_conflict(self, project):
        with pytest.raises(Conflict):
            compare_and_set(Project, project.id, ProjectStatus.SUBMITTED,
                            {"status": ProjectStatus.PROJECT_LEAD_REVIEW})
        db.session.rollback()
        assert _status(project.id) == ProjectStatus.DRAFT

    def test_second_identical_move_fails(self, people, project):
        submit_project(project.id, people["admin_lead"])
        with pytest.raises(InvalidTransition):
            submit_project(project.id, people["admin_lead"])


class TestDerivedAdvancement:

    def _report(self, project, status):
        doc = Document(project_id=project.id, name="Laporan", status=status,
                       document_type=DocumentType.REPORT)
        db.session.add(doc)
        db.session.commit()
        return doc

    def test_first_checklist_response_starts_inspection(self, people, project):
        _set_status(project, ProjectStatus.INSPECTION_SCHEDULED)
        inspection = Inspection(project_id=project.id, inspector_id=people["inspector"].id)
        item = ChecklistItem(code="pondasi", title="Pondasi")
        db.session.add_all([inspection, item])
        db.session.flush()
        db.session.add(ChecklistResponse(inspection_id=inspection.id, item_id=item.id))
        db.session.commit()

        assert reevaluate_project_status(project.id) == ProjectStatus.INSPECTION_IN_PROGRESS

    def test_report_progress_walks_forward(self, project):
        _set_status(project, ProjectStatus.INSPECTION_IN_PROGRESS)
        self._report(project, DocumentStatus.CLIENT_REVIEW)
        assert reevaluate_project_status(project.id) == ProjectStatus.CLIENT_REVIEW

    def test_never_leaves_draft_on_its_own(self, project):
        self._report(project, DocumentStatus.COMPLETED)
        assert reevaluate_project_status(project.id) == ProjectStatus.DRAFT

    def test_supporting_documents_do_not_count(self, project):
        _set_status(project, ProjectStatus.INSPECTION_IN_PROGRESS)
        doc = self._report(project, DocumentStatus.PROJECT_LEAD_REVIEW)
        doc.document_type = DocumentType.SUPPORTING
        db.session.commit()
        assert reevaluate_project_status(project.id) == ProjectStatus.INSPECTION_IN_PROGRESS

    def test_cancelled_project_stays_cancelled(self, project):
        _set_status(project, ProjectStatus.CANCELLED)
        self._report(project, DocumentStatus.COMPLETED)
        assert reevaluate_project_status(project.id) == ProjectStatus.CANCELLED


class TestCreateProject:

    def test_defaults(self, people, project):
        assert project.status == ProjectStatus.DRAFT
        assert project.created_by == people["admin_lead"].id
        assert project.admin_lead_id == people["admin_lead"].id
        lead_rows = ProjectTeam.query.filter_by(project_id=project.id, role=Role.PROJECT_LEAD).all()
        assert [r.user_id for r in lead_rows] == [people["project_lead"].id]

    def test_slf_phase_template(self, project):
        phases = ProjectPhase.query.filter_by(project_id=project.id).order_by(ProjectPhase.phase).all()
        assert [p.phase_name for p in phases] == [
            "Persiapan Dokumen", "Inspeksi Lapangan", "Penyusunan Laporan",
            "Review & Approval", "Pengajuan Pemerintah",
        ]
        assert [p.status for p in phases] == [PhaseStatus.IN_PROGRESS] + [PhaseStatus.PENDING] * 4
        assert phases[0].start_date is not None

    def test_pbg_phase_template(self, people):
        p = create_project(people["admin_lead"], name="Gudang", client_id=people["org"].id,
                           application_type="PBG_BARU")
        names = [ph.phase_name for ph in sorted(p.phases, key=lambda ph: ph.phase)]
        assert names[-1] == "Penerbitan PBG"

    def test_only_admin_lead_or_superadmin_creates(self, people):
        with pytest.raises(PermissionDenied):
            create_project(people["project_lead"], name="X", client_id=people["org"].id)

    def test_unknown_client(self, people):
        with pytest.raises(NotFound):
            create_project(people["admin_lead"], name="X", client_id=4242)

    def test_name_required(self, people):
        with pytest.raises(ValidationFailed) as exc:
            create_project(people["admin_lead"], name="  ", client_id=people["org"].id)
        assert exc.value.details == {"name": "required"}


class TestTeamAssignment:

    def test_assign_and_notify(self, people, project):
        newcomer = people["outsider_admin_team"]
        row = assign_team_member(project.id, people["project_lead"],
                                 user_id=newcomer.id, role="admin_team")
        assert row.role == Role.ADMIN_TEAM
        notes = Notification.query.filter_by(recipient_id=newcomer.id, type="team_assignment").all()
        assert len(notes) == 1

    def test_duplicate_assignment_conflicts(self, people, project):
        with pytest.raises(Conflict):
            assign_team_member(project.id, people["admin_lead"],
                               user_id=people["inspector"].id, role="inspector")

    def test_client_role_cannot_join_team(self, people, project):
        with pytest.raises(ValidationFailed):
            assign_team_member(project.id, people["admin_lead"],
                               user_id=people["client_user"].id, role="client")

    def test_inspector_cannot_assign(self, people, project):
        with pytest.raises(PermissionDenied):
            assign_team_member(project.id, people["inspector"],
                               user_id=people["outsider"].id, role="drafter")
