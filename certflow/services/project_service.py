"""
SLF Certification Workflow Engine
Project Service: creation and team membership.

Status changes live in project_lifecycle.py; this module only creates
projects and manages ProjectTeam rows.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from certflow.core.exceptions import Conflict, NotFound, PermissionDenied, ValidationFailed
from certflow.models import db
from certflow.models.auth import TEAM_ROLES, Client, Role, User
from certflow.models.project import Project, ProjectStatus, ProjectTeam
from certflow.services.helpers.state_guard import atomic
from certflow.services.notification import NotificationService
from certflow.services.phase_tracker import initialize_phases
from certflow.services.tenancy import get_visible_project, require_project_role

logger = logging.getLogger(__name__)

PROJECT_CREATOR_ROLES = {Role.ADMIN_LEAD, Role.SUPERADMIN}
TEAM_MANAGER_ROLES = {Role.ADMIN_LEAD, Role.PROJECT_LEAD}


def _get_user(user_id, field):
    user = db.session.get(User, user_id)
    if user is None:
        raise ValidationFailed("Project", None, f"{field} does not exist", {field: "unknown user"})
    return user


def create_project(actor, *, name, client_id, application_type="SLF", admin_lead_id=None,
                   project_lead_id=None, location="", city="", description=""):
    """
    Create a draft project with its phase schedule.

    The project lead (if given) also gets a ProjectTeam row so that team
    based notifications reach them.
    """
    if actor.role not in PROJECT_CREATOR_ROLES:
        raise PermissionDenied(actor.id, "project:create", [r.value for r in PROJECT_CREATOR_ROLES])

    errors = {}
    if not name or not str(name).strip():
        errors["name"] = "required"
    if client_id is None:
        errors["client_id"] = "required"
    if errors:
        raise ValidationFailed("Project", None, "missing required fields", errors)

    if db.session.get(Client, client_id) is None:
        raise NotFound(resource="Client", resource_id=client_id)
    if admin_lead_id is None and actor.role == Role.ADMIN_LEAD:
        admin_lead_id = actor.id
    if admin_lead_id is not None:
        _get_user(admin_lead_id, "admin_lead_id")
    if project_lead_id is not None:
        _get_user(project_lead_id, "project_lead_id")

    with atomic():
        project = Project(
            name=str(name).strip(),
            application_type=application_type or "SLF",
            client_id=client_id,
            created_by=actor.id,
            admin_lead_id=admin_lead_id,
            project_lead_id=project_lead_id,
            status=ProjectStatus.DRAFT,
            location=location or "",
            city=city or "",
            description=description or "",
        )
        db.session.add(project)
        db.session.flush()
        initialize_phases(project)
        if project_lead_id is not None:
            db.session.add(ProjectTeam(
                project_id=project.id, user_id=project_lead_id, role=Role.PROJECT_LEAD,
            ))

    logger.info(
        "Project created id=%s name=%s", project.id, project.name,
        extra={"user_id": actor.id, "project_id": project.id, "entity_type": "project"},
    )
    return project


def list_team(project_id, actor):
    project = get_visible_project(project_id, actor)
    stmt = select(ProjectTeam).where(ProjectTeam.project_id == project.id).order_by(ProjectTeam.id)
    return db.session.execute(stmt).scalars().all()


def assign_team_member(project_id, actor, *, user_id, role):
    """Add ``user_id`` to the project team with ``role``."""
    project = get_visible_project(project_id, actor)
    require_project_role(actor, project, TEAM_MANAGER_ROLES, "team:assign")

    try:
        role = Role(role)
    except ValueError:
        raise ValidationFailed("ProjectTeam", None, "unknown role", {"role": str(role)}) from None
    if role not in TEAM_ROLES:
        raise ValidationFailed("ProjectTeam", None, "role cannot be held on a team",
                               {"role": role.value})
    member = _get_user(user_id, "user_id")

    existing = db.session.execute(
        select(ProjectTeam.id).where(
            ProjectTeam.project_id == project.id,
            ProjectTeam.user_id == member.id,
            ProjectTeam.role == role,
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise Conflict("ProjectTeam", existing, "user already holds this role on the project")

    try:
        with atomic():
            row = ProjectTeam(project_id=project.id, user_id=member.id, role=role)
            db.session.add(row)
    except IntegrityError:
        raise Conflict("ProjectTeam", None, "user already holds this role on the project") from None

    logger.info(
        "User %s assigned to project %s as %s", member.id, project.id, role.value,
        extra={"user_id": actor.id, "project_id": project.id, "entity_type": "project_team",
               "entity_id": row.id},
    )
    NotificationService.dispatch(
        recipients=[member.id],
        project_id=project.id,
        type="team_assignment",
        message=f"You were assigned to project '{project.name}' as {role.value}",
        sender_id=actor.id,
        entity_type="project",
        entity_id=project.id,
    )
    return row
