"""
Tenancy resolver: which projects a user may see, and which roles they hold there.

A user sees a project when ANY of these holds:
    1. they created it
    2. they are its admin_lead_id
    3. they are its project_lead_id
    4. they have a ProjectTeam row for it
    5. they are a client user whose client_id matches the project's client_id
Superadmins see every project.

Invisible and missing projects both raise ``NotFound`` so callers cannot
probe for ids they have no access to. ``PermissionDenied`` is reserved for
projects the caller can see but may not act on.

Usage:
    from certflow.services.tenancy import get_visible_project, require_project_role

    project = get_visible_project(project_id, user)
    require_project_role(user, project, {Role.ADMIN_LEAD}, "project:submit")
"""

import logging

from sqlalchemy import or_, select

from certflow.core.exceptions import NotFound, PermissionDenied, ValidationFailed
from certflow.models import db
from certflow.models.auth import Role, User
from certflow.models.project import Project, ProjectStatus, ProjectTeam

logger = logging.getLogger(__name__)


def _visibility_clauses(user):
    team_projects = select(ProjectTeam.project_id).where(ProjectTeam.user_id == user.id)
    clauses = [
        Project.created_by == user.id,
        Project.admin_lead_id == user.id,
        Project.project_lead_id == user.id,
        Project.id.in_(team_projects),
    ]
    if user.role == Role.CLIENT and user.client_id is not None:
        clauses.append(Project.client_id == user.client_id)
    return clauses


def visible_projects_query(user):
    """SELECT over Project restricted to what ``user`` may see."""
    stmt = select(Project)
    if user.is_superadmin:
        return stmt
    return stmt.where(or_(*_visibility_clauses(user)))


def visible_project_ids(user) -> set[int]:
    stmt = select(Project.id)
    if not user.is_superadmin:
        stmt = stmt.where(or_(*_visibility_clauses(user)))
    return set(db.session.execute(stmt).scalars().all())


def list_visible_projects(user, *, status=None):
    stmt = visible_projects_query(user)
    if status is not None:
        try:
            status = ProjectStatus(status)
        except ValueError:
            raise ValidationFailed("Project", None, "unknown status filter",
                                   {"status": "invalid"}) from None
        stmt = stmt.where(Project.status == status)
    return db.session.execute(stmt.order_by(Project.id)).scalars().all()


def get_visible_project(project_id, user) -> Project:
    """Return the project if ``user`` may see it, else raise NotFound."""
    stmt = visible_projects_query(user).where(Project.id == project_id)
    project = db.session.execute(stmt).scalar_one_or_none()
    if project is None:
        logger.info(
            "Project %s not visible to user %s", project_id, user.id,
            extra={"user_id": user.id, "project_id": project_id},
        )
        raise NotFound(resource="Project", resource_id=project_id)
    return project


def team_roles(user, project) -> set[Role]:
    """Roles held through explicit ProjectTeam rows only."""
    stmt = select(ProjectTeam.role).where(
        ProjectTeam.project_id == project.id,
        ProjectTeam.user_id == user.id,
    )
    return set(db.session.execute(stmt).scalars().all())


def effective_roles(user, project) -> set[Role]:
    """
    Roles ``user`` may act with on ``project``.

    ProjectTeam rows, plus the implicit roles carried by the ownership
    columns, plus the client role for a matching client user. The creator
    acts with their account role.
    """
    if user.is_superadmin:
        return {Role.SUPERADMIN}
    roles = team_roles(user, project)
    if project.created_by == user.id:
        roles.add(user.role)
    if project.admin_lead_id == user.id:
        roles.add(Role.ADMIN_LEAD)
    if project.project_lead_id == user.id:
        roles.add(Role.PROJECT_LEAD)
    if user.role == Role.CLIENT and user.client_id is not None and user.client_id == project.client_id:
        roles.add(Role.CLIENT)
    return roles


def _deny(user, action, required):
    logger.warning(
        "Permission denied: user=%s action=%s", user.id, action,
        extra={"user_id": user.id, "action": action},
    )
    raise PermissionDenied(user.id, action, [r.value for r in required])


def require_project_role(user, project, roles, action) -> set[Role]:
    """Raise PermissionDenied unless ``user`` holds one of ``roles`` on ``project``.

    Superadmins pass every check. Returns the matching roles.
    """
    held = effective_roles(user, project)
    if Role.SUPERADMIN in held:
        return {Role.SUPERADMIN}
    matched = held & set(roles)
    if not matched:
        _deny(user, action, roles)
    return matched


def require_team_role(user, project, roles, action) -> set[Role]:
    """Like ``require_project_role`` but only explicit ProjectTeam rows count.

    Superadmin gets no bypass here: the gate records a named team member.
    """
    matched = team_roles(user, project) & set(roles)
    if not matched:
        _deny(user, action, roles)
    return matched


def members_with_role(project, role) -> list[int]:
    """User ids holding ``role`` on ``project``; used for notification fan-out."""
    role = Role(role)
    if role == Role.CLIENT:
        stmt = select(User.id).where(
            User.role == Role.CLIENT,
            User.client_id == project.client_id,
        )
        return sorted(db.session.execute(stmt).scalars().all())

    stmt = select(ProjectTeam.user_id).where(
        ProjectTeam.project_id == project.id,
        ProjectTeam.role == role,
    )
    ids = set(db.session.execute(stmt).scalars().all())
    if role == Role.ADMIN_LEAD and project.admin_lead_id:
        ids.add(project.admin_lead_id)
    if role == Role.PROJECT_LEAD and project.project_lead_id:
        ids.add(project.project_lead_id)
    return sorted(ids)
