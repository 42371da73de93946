"""
SLF Certification Workflow Engine
Phase Tracker.

ProjectPhase rows are a scheduling view that runs next to Project.status;
neither drives the other.

Rules:
    - at most one phase per project is in_progress at any time
    - completing phase k starts phase k+1 (if pending) in the same transaction
    - end_date is always start_date + estimated_duration days
"""

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import aliased

from certflow.core.exceptions import Conflict, InvalidTransition, NotFound, ValidationFailed
from certflow.models import _utcnow, db
from certflow.models.auth import Role
from certflow.models.project import (
    PhaseStatus,
    ProjectPhase,
    compute_end_date,
    derived_phase,
    phase_template_for,
)
from certflow.services.helpers.state_guard import atomic, compare_and_set
from certflow.services.tenancy import get_visible_project, require_project_role

logger = logging.getLogger(__name__)

PHASE_MANAGER_ROLES = {Role.ADMIN_LEAD, Role.ADMIN_TEAM, Role.PROJECT_LEAD}


def initialize_phases(project, *, start_date=None):
    """
    Create the project's phase rows from its application-type template.

    Phase 1 starts immediately; the rest are pending. The caller commits.
    """
    today = start_date or date.today()
    phases = []
    for index, tpl in enumerate(phase_template_for(project.application_type)):
        phase = ProjectPhase(
            project_id=project.id,
            phase=tpl["phase"],
            order_index=index,
            phase_name=tpl["name"],
            description=tpl["description"],
            estimated_duration=tpl["duration"],
            status=PhaseStatus.PENDING,
        )
        if index == 0:
            phase.status = PhaseStatus.IN_PROGRESS
            phase.started_at = _utcnow()
            phase.reschedule(start_date=today)
        db.session.add(phase)
        phases.append(phase)
    return phases


def _get_phase(project, phase_number):
    stmt = select(ProjectPhase).where(
        ProjectPhase.project_id == project.id,
        ProjectPhase.phase == phase_number,
    )
    phase = db.session.execute(stmt).scalar_one_or_none()
    if phase is None:
        raise NotFound(resource="ProjectPhase", resource_id=f"{project.id}#{phase_number}")
    return phase


def _start_guarded(phase):
    """Flip a pending phase to in_progress unless a sibling already is."""
    sibling = aliased(ProjectPhase)
    busy = (
        select(sibling.id)
        .where(
            sibling.project_id == phase.project_id,
            sibling.status == PhaseStatus.IN_PROGRESS,
        )
        .exists()
    )
    today = date.today()
    return compare_and_set(
        ProjectPhase, phase.id, PhaseStatus.PENDING,
        {
            "status": PhaseStatus.IN_PROGRESS,
            "started_at": _utcnow(),
            "start_date": today,
            "end_date": compute_end_date(today, phase.estimated_duration),
        },
        extra_criteria=(~busy,),
    )


def list_phases(project_id, actor):
    project = get_visible_project(project_id, actor)
    stmt = (
        select(ProjectPhase)
        .where(ProjectPhase.project_id == project.id)
        .order_by(ProjectPhase.order_index, ProjectPhase.phase)
    )
    return db.session.execute(stmt).scalars().all()


def start_phase(project_id, phase_number, actor):
    """Start a pending phase. Fails if another phase is in progress."""
    project = get_visible_project(project_id, actor)
    require_project_role(actor, project, PHASE_MANAGER_ROLES, "phase:start")
    phase = _get_phase(project, phase_number)

    if phase.status == PhaseStatus.IN_PROGRESS:
        raise Conflict("ProjectPhase", phase.id, "phase is already in progress")
    if phase.status != PhaseStatus.PENDING:
        raise InvalidTransition("ProjectPhase", phase.id, phase.status.value,
                                PhaseStatus.IN_PROGRESS.value)
    running = db.session.execute(
        select(ProjectPhase.phase).where(
            ProjectPhase.project_id == project.id,
            ProjectPhase.status == PhaseStatus.IN_PROGRESS,
        )
    ).scalar_one_or_none()
    if running is not None:
        raise InvalidTransition("ProjectPhase", phase.id, phase.status.value,
                                PhaseStatus.IN_PROGRESS.value,
                                f"phase {running} is still in progress")

    with atomic():
        phase = _start_guarded(phase)

    logger.info(
        "Phase %s of project %s started", phase.phase, project.id,
        extra={"user_id": actor.id, "project_id": project.id, "entity_type": "phase",
               "entity_id": phase.id, "to_status": PhaseStatus.IN_PROGRESS.value},
    )
    return phase


def complete_phase(project_id, phase_number, actor) -> dict:
    """
    Complete an in-progress phase and start the next pending one.

    Both writes share one transaction; if either guard fails nothing is kept.

    Returns:
        {"completed": ProjectPhase, "started": ProjectPhase | None}
    """
    project = get_visible_project(project_id, actor)
    require_project_role(actor, project, PHASE_MANAGER_ROLES, "phase:complete")
    phase = _get_phase(project, phase_number)

    if phase.status == PhaseStatus.COMPLETED:
        raise Conflict("ProjectPhase", phase.id, "phase is already completed")
    if phase.status != PhaseStatus.IN_PROGRESS:
        raise InvalidTransition("ProjectPhase", phase.id, phase.status.value,
                                PhaseStatus.COMPLETED.value)

    next_phase = db.session.execute(
        select(ProjectPhase).where(
            ProjectPhase.project_id == project.id,
            ProjectPhase.phase == phase_number + 1,
        )
    ).scalar_one_or_none()

    started = None
    with atomic():
        completed = compare_and_set(
            ProjectPhase, phase.id, PhaseStatus.IN_PROGRESS,
            {"status": PhaseStatus.COMPLETED, "completed_at": _utcnow(), "progress": 100},
        )
        if next_phase is not None and next_phase.status == PhaseStatus.PENDING:
            started = _start_guarded(next_phase)

    logger.info(
        "Phase %s of project %s completed%s", completed.phase, project.id,
        f", phase {started.phase} started" if started else "",
        extra={"user_id": actor.id, "project_id": project.id, "entity_type": "phase",
               "entity_id": completed.id, "to_status": PhaseStatus.COMPLETED.value},
    )
    return {"completed": completed, "started": started}


def update_phase_schedule(project_id, phase_number, actor, *, start_date=None,
                          estimated_duration=None, phase_name=None, description=None,
                          notes=None, progress=None):
    """Edit the non-status fields of a phase; end_date follows start_date."""
    project = get_visible_project(project_id, actor)
    require_project_role(actor, project, PHASE_MANAGER_ROLES, "phase:update")
    phase = _get_phase(project, phase_number)

    errors = {}
    if estimated_duration is not None and (
        not isinstance(estimated_duration, int) or estimated_duration <= 0
    ):
        errors["estimated_duration"] = "must be a positive integer"
    if progress is not None and not (isinstance(progress, int) and 0 <= progress <= 100):
        errors["progress"] = "must be between 0 and 100"
    if errors:
        raise ValidationFailed("ProjectPhase", phase.id, "invalid schedule", errors)

    with atomic():
        phase.reschedule(start_date=start_date, estimated_duration=estimated_duration)
        if phase_name is not None:
            phase.phase_name = phase_name
        if description is not None:
            phase.description = description
        if notes is not None:
            phase.notes = notes
        if progress is not None:
            phase.progress = progress

    logger.info(
        "Phase %s of project %s rescheduled", phase.phase, project.id,
        extra={"user_id": actor.id, "project_id": project.id, "entity_type": "phase",
               "entity_id": phase.id},
    )
    return phase


def project_progress(project_id, actor) -> dict:
    """Phase completion summary plus the status-derived dashboard phase."""
    project = get_visible_project(project_id, actor)
    phases = list_phases(project.id, actor)
    total = len(phases)
    counts = {s: 0 for s in PhaseStatus}
    for p in phases:
        counts[p.status] += 1
    current = next((p.phase for p in phases if p.status == PhaseStatus.IN_PROGRESS), None)
    return {
        "project_id": project.id,
        "total": total,
        "completed": counts[PhaseStatus.COMPLETED],
        "in_progress": counts[PhaseStatus.IN_PROGRESS],
        "pending": counts[PhaseStatus.PENDING],
        "percent": round(100 * counts[PhaseStatus.COMPLETED] / total) if total else 0,
        "current_phase": current,
        "status_phase": derived_phase(project.status),
    }
