"""
Tenancy resolver tests.

Covers:
  - each of the five visibility clauses on its own
  - superadmin sees everything
  - users matching no clause never see the project (NotFound, not 403)
  - effective roles from team rows and ownership columns
  - notification audience per role
"""

import pytest

from certflow.core.exceptions import NotFound, PermissionDenied
from certflow.models import db
from certflow.models.auth import Role
from certflow.models.project import Project, ProjectStatus
from certflow.services.tenancy import (
    effective_roles,
    get_visible_project,
    list_visible_projects,
    members_with_role,
    require_project_role,
    require_team_role,
    visible_project_ids,
)
from tests.conftest import add_member, make_user


def _bare_project(org, **owners):
    p = Project(name="Ruko Kemang", client_id=org.id, status=ProjectStatus.DRAFT, **owners)
    db.session.add(p)
    db.session.commit()
    return p


class TestVisibilityClauses:

    def test_creator_sees_project(self, people):
        p = _bare_project(people["org"], created_by=people["outsider"].id)
        assert p.id in visible_project_ids(people["outsider"])

    def test_admin_lead_column_grants_visibility(self, people):
        p = _bare_project(people["org"], admin_lead_id=people["admin_lead"].id)
        assert p.id in visible_project_ids(people["admin_lead"])

    def test_project_lead_column_grants_visibility(self, people):
        p = _bare_project(people["org"], project_lead_id=people["project_lead"].id)
        assert p.id in visible_project_ids(people["project_lead"])

    def test_client_user_sees_own_org_projects(self, people):
        p = _bare_project(people["other_org"])
        assert p.id in visible_project_ids(people["other_client_user"])
        assert p.id not in visible_project_ids(people["client_user"])

    def test_client_id_only_counts_for_client_role(self, people):
        staff = make_user("drafter", "drafter.with.org@slf.test", client_id=people["org"].id)
        p = _bare_project(people["org"])
        assert p.id not in visible_project_ids(staff)

    def test_team_membership_grants_visibility(self, people):
        p = _bare_project(people["org"])
        add_member(p, people["inspector"], "inspector")
        assert p.id in visible_project_ids(people["inspector"])

    def test_no_clause_means_invisible(self, people):
        p = _bare_project(people["org"], created_by=people["admin_lead"].id)
        for key in ("outsider", "outsider_admin_team", "inspector", "other_client_user"):
            assert p.id not in visible_project_ids(people[key])

    def test_superadmin_sees_every_project(self, people):
        ids = {_bare_project(people["org"]).id, _bare_project(people["other_org"]).id}
        assert ids <= visible_project_ids(people["superadmin"])

    def test_list_visible_projects_filters_by_status(self, people, project):
        assert [p.id for p in list_visible_projects(people["admin_lead"])] == [project.id]
        assert list_visible_projects(people["admin_lead"], status=ProjectStatus.COMPLETED) == []


class TestGetVisibleProject:

    def test_missing_and_invisible_look_the_same(self, people, project):
        with pytest.raises(NotFound) as invisible:
            get_visible_project(project.id, people["outsider"])
        with pytest.raises(NotFound) as missing:
            get_visible_project(99999, people["outsider"])
        assert invisible.value.resource == missing.value.resource == "Project"

    def test_visible_project_is_returned(self, people, project):
        assert get_visible_project(project.id, people["client_user"]).id == project.id


class TestRoles:

    def test_creator_acts_with_account_role(self, people, project):
        assert Role.ADMIN_LEAD in effective_roles(people["admin_lead"], project)

    def test_project_lead_column_and_team_row(self, people, project):
        assert effective_roles(people["project_lead"], project) == {Role.PROJECT_LEAD}

    def test_client_role_from_org(self, people, project):
        assert effective_roles(people["client_user"], project) == {Role.CLIENT}

    def test_superadmin_passes_every_check(self, people, project):
        assert require_project_role(people["superadmin"], project, {Role.DRAFTER}, "x") == {Role.SUPERADMIN}

    def test_wrong_role_is_denied(self, people, project):
        with pytest.raises(PermissionDenied) as exc:
            require_project_role(people["client_user"], project, {Role.ADMIN_LEAD}, "project:submitted")
        assert exc.value.required_roles == ["admin_lead"]

    def test_team_check_ignores_ownership_columns(self, people, project):
        with pytest.raises(PermissionDenied):
            require_team_role(people["admin_lead"], project, {Role.ADMIN_TEAM}, "document:verify")
        assert require_team_role(people["admin_team"], project, {Role.ADMIN_TEAM}, "document:verify") == {
            Role.ADMIN_TEAM
        }


class TestMembersWithRole:

    def test_project_lead_recipients(self, people, project):
        assert members_with_role(project, Role.PROJECT_LEAD) == [people["project_lead"].id]

    def test_admin_lead_recipients_include_owner_column(self, people, project):
        assert members_with_role(project, Role.ADMIN_LEAD) == [people["admin_lead"].id]

    def test_client_recipients_are_org_users(self, people, project):
        assert members_with_role(project, Role.CLIENT) == [people["client_user"].id]

    def test_deduplicated_across_sources(self, people, project):
        add_member(project, people["admin_lead"], "admin_lead")
        assert members_with_role(project, "admin_lead") == [people["admin_lead"].id]
