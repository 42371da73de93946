"""
SLF Certification Workflow Engine
Project Status Machine.

Manages Project.status transitions with:
  - Transition validation (PROJECT_TRANSITIONS)
  - Role checks per target status (PROJECT_TARGET_ROLES)
  - Guarded writes (a concurrent winner turns the loser into Conflict)
  - project_status_change notifications after commit

Besides explicit moves, a project takes derived steps when its report
documents or inspection checklist reach certain states; see
``reevaluate_project_status``. Derived steps only ever move forward along
the main chain, one edge at a time.

Usage:
    from certflow.services.project_lifecycle import transition_project

    result = transition_project(project_id=1, target="submitted", actor=user)
"""

import logging

from sqlalchemy import func, select

from certflow.core.exceptions import Conflict, InvalidTransition
from certflow.models import db
from certflow.models.auth import Role
from certflow.models.checklist import ChecklistResponse, Inspection
from certflow.models.document import Document, DocumentStatus, DocumentType
from certflow.models.project import (
    PROJECT_TARGET_ROLES,
    Project,
    ProjectStatus,
    ProjectTeam,
    validate_project_transition,
)
from certflow.services.helpers.state_guard import atomic, compare_and_set
from certflow.services.notification import NotificationService
from certflow.services.tenancy import (
    effective_roles,
    get_visible_project,
    members_with_role,
    require_project_role,
)

logger = logging.getLogger(__name__)


# How far a report document has travelled, on the project's scale
_REPORT_PROGRESS = {
    DocumentStatus.VERIFIED_BY_ADMIN_TEAM:   1,
    DocumentStatus.GENERATED:                1,
    DocumentStatus.PROJECT_LEAD_REVIEW:      1,
    DocumentStatus.PROJECT_LEAD_APPROVED:    1,
    DocumentStatus.HEAD_CONSULTANT_REVIEW:   2,
    DocumentStatus.HEAD_CONSULTANT_APPROVED: 2,
    DocumentStatus.CLIENT_REVIEW:            3,
    DocumentStatus.CLIENT_APPROVED:          3,
    DocumentStatus.CLIENT_REJECTED:          3,
    DocumentStatus.SENT_TO_GOVERNMENT:       4,
    DocumentStatus.SLF_ISSUED:               5,
    DocumentStatus.COMPLETED:                6,
}

# project status → (next status, report progress needed)
_DOCUMENT_DRIVEN_STEPS = {
    ProjectStatus.INSPECTION_IN_PROGRESS: (ProjectStatus.REPORT_DRAFT, 1),
    ProjectStatus.REPORT_DRAFT:           (ProjectStatus.HEAD_CONSULTANT_REVIEW, 2),
    ProjectStatus.HEAD_CONSULTANT_REVIEW: (ProjectStatus.CLIENT_REVIEW, 3),
    ProjectStatus.CLIENT_REVIEW:          (ProjectStatus.GOVERNMENT_SUBMITTED, 4),
    ProjectStatus.GOVERNMENT_SUBMITTED:   (ProjectStatus.SLF_ISSUED, 5),
    ProjectStatus.SLF_ISSUED:             (ProjectStatus.COMPLETED, 6),
}


def _coerce_status(project, target):
    try:
        return ProjectStatus(target)
    except ValueError:
        raise InvalidTransition("Project", project.id, project.status.value, str(target),
                                "unknown status") from None


def project_audience(project) -> list[int]:
    """Everyone who follows a project: team, owners and the client's users."""
    ids = set(
        db.session.execute(
            select(ProjectTeam.user_id).where(ProjectTeam.project_id == project.id)
        ).scalars().all()
    )
    ids.update(i for i in (project.admin_lead_id, project.project_lead_id) if i)
    ids.update(members_with_role(project, Role.CLIENT))
    return sorted(ids)


def _notify_status_change(project, previous, sender_id):
    NotificationService.dispatch(
        recipients=project_audience(project),
        project_id=project.id,
        type="project_status_change",
        message=(
            f"Project '{project.name}' moved from {previous.value} "
            f"to {project.status.value}"
        ),
        sender_id=sender_id,
        entity_type="project",
        entity_id=project.id,
    )


def transition_project(project_id, target, actor) -> dict:
    """
    Move a project to ``target``.

    Returns:
        {"project_id", "previous_status", "new_status"}

    Raises:
        NotFound, PermissionDenied, InvalidTransition, Conflict
    """
    project = get_visible_project(project_id, actor)
    target = _coerce_status(project, target)

    # 1. Validate transition
    previous = project.status
    if not validate_project_transition(previous, target):
        raise InvalidTransition("Project", project.id, previous.value, target.value)

    # 2. Permission check
    require_project_role(actor, project, PROJECT_TARGET_ROLES[target], f"project:{target.value}")

    # 3. Guarded write
    with atomic():
        project = compare_and_set(Project, project.id, previous, {"status": target})

    logger.info(
        "Project %s: %s → %s", project.id, previous.value, target.value,
        extra={
            "user_id": actor.id, "project_id": project.id, "entity_type": "project",
            "from_status": previous.value, "to_status": target.value,
        },
    )

    # 4. Side effects
    _notify_status_change(project, previous, actor.id)

    return {
        "project_id": project.id,
        "previous_status": previous.value,
        "new_status": project.status.value,
    }


def submit_project(project_id, actor) -> dict:
    return transition_project(project_id, ProjectStatus.SUBMITTED, actor)


def cancel_project(project_id, actor) -> dict:
    return transition_project(project_id, ProjectStatus.CANCELLED, actor)


def reject_project(project_id, actor) -> dict:
    return transition_project(project_id, ProjectStatus.REJECTED, actor)


def get_available_targets(project, actor) -> list[str]:
    """Statuses ``actor`` could move ``project`` to right now."""
    held = effective_roles(actor, project)
    targets = []
    for target in ProjectStatus:
        if not validate_project_transition(project.status, target):
            continue
        if Role.SUPERADMIN in held or held & PROJECT_TARGET_ROLES[target]:
            targets.append(target.value)
    return targets


# ═════════════════════════════════════════════════════════════════════════════
# Derived advancement
# ═════════════════════════════════════════════════════════════════════════════


def _report_progress(project_id):
    stmt = select(Document.status).where(
        Document.project_id == project_id,
        Document.document_type == DocumentType.REPORT,
    )
    statuses = db.session.execute(stmt).scalars().all()
    return max((_REPORT_PROGRESS.get(s, 0) for s in statuses), default=0)


def _has_checklist_responses(project_id):
    stmt = (
        select(func.count(ChecklistResponse.id))
        .select_from(ChecklistResponse)
        .join(Inspection, Inspection.id == ChecklistResponse.inspection_id)
        .where(Inspection.project_id == project_id)
    )
    return db.session.execute(stmt).scalar() > 0


def _next_derived_status(project):
    if project.status == ProjectStatus.INSPECTION_SCHEDULED:
        if _has_checklist_responses(project.id):
            return ProjectStatus.INSPECTION_IN_PROGRESS
        return None
    step = _DOCUMENT_DRIVEN_STEPS.get(project.status)
    if step and _report_progress(project.id) >= step[1]:
        return step[0]
    return None


def reevaluate_project_status(project_id, sender_id=None):
    """
    Apply derived forward steps after a document or checklist change.

    Runs without a role check: the caller already passed one for the change
    that triggered it. A concurrent writer moving the project first simply
    ends the walk.

    Returns:
        The project's status after re-evaluation.
    """
    project = db.session.get(Project, project_id)
    if project is None:
        return None

    while True:
        target = _next_derived_status(project)
        if target is None or not validate_project_transition(project.status, target):
            return project.status
        previous = project.status
        try:
            with atomic():
                project = compare_and_set(Project, project.id, previous, {"status": target})
        except Conflict:
            logger.info(
                "Derived step on project %s skipped, status changed concurrently", project_id,
                extra={"project_id": project_id, "from_status": previous.value},
            )
            return db.session.get(Project, project_id, populate_existing=True).status

        logger.info(
            "Project %s derived: %s → %s", project.id, previous.value, target.value,
            extra={
                "project_id": project.id, "entity_type": "project",
                "from_status": previous.value, "to_status": target.value,
            },
        )
        _notify_status_change(project, previous, sender_id)
