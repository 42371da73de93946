"""
SLF Certification Workflow Engine
Checklist Lifecycle.

Inspectors submit one response per (inspection, item); the project lead
approves or rejects it exactly once. A response still awaiting review may
be overwritten by a resubmission; a reviewed one is final.

Attachment rules come from the item template: ``requires_photo`` demands a
photo_url, ``requires_geotag`` demands both coordinates.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from certflow.core.exceptions import AlreadyFinalized, Conflict, InvalidTransition, NotFound, ValidationFailed
from certflow.models import _utcnow, db
from certflow.models.auth import Role
from certflow.models.checklist import (
    ChecklistItem,
    ChecklistResponse,
    ChecklistStatus,
    Inspection,
    validate_checklist_transition,
)
from certflow.services.helpers.state_guard import atomic, compare_and_set, get_or_404
from certflow.services.notification import NotificationService
from certflow.services.project_lifecycle import reevaluate_project_status
from certflow.services.tenancy import get_visible_project, require_project_role

logger = logging.getLogger(__name__)

INSPECTION_MANAGER_ROLES = {Role.PROJECT_LEAD, Role.ADMIN_LEAD}


def _visible_inspection(inspection_id, actor):
    inspection = get_or_404(Inspection, inspection_id)
    try:
        project = get_visible_project(inspection.project_id, actor)
    except NotFound:
        raise NotFound(resource="Inspection", resource_id=inspection_id) from None
    return inspection, project


def _visible_response(response_id, actor):
    row = get_or_404(ChecklistResponse, response_id)
    try:
        project = get_visible_project(row.inspection.project_id, actor)
    except NotFound:
        raise NotFound(resource="ChecklistResponse", resource_id=response_id) from None
    return row, project


def validate_attachments(item, photo_url=None, latitude=None, longitude=None) -> dict:
    """Return field errors for attachments the item template requires."""
    errors = {}
    if item.requires_photo and not photo_url:
        errors["photo_url"] = "required"
    if item.requires_geotag:
        if latitude is None:
            errors["latitude"] = "required"
        if longitude is None:
            errors["longitude"] = "required"
    return errors


def schedule_inspection(project_id, actor, *, inspector_id=None, scheduled_date=None):
    project = get_visible_project(project_id, actor)
    require_project_role(actor, project, INSPECTION_MANAGER_ROLES, "inspection:schedule")
    with atomic():
        inspection = Inspection(project_id=project.id, inspector_id=inspector_id,
                                scheduled_date=scheduled_date)
        db.session.add(inspection)
    logger.info(
        "Inspection %s scheduled for project %s", inspection.id, project.id,
        extra={"user_id": actor.id, "project_id": project.id, "entity_type": "inspection",
               "entity_id": inspection.id},
    )
    return inspection


def submit_response(inspection_id, item_id, actor, *, response=None, notes="",
                    photo_url=None, latitude=None, longitude=None):
    """
    Record an inspector's answer for one checklist item.

    Returns:
        (ChecklistResponse, created: bool)

    Raises:
        ValidationFailed: a required attachment is missing.
        AlreadyFinalized: the answer was already reviewed.
        Conflict: a concurrent submission for the same item won.
    """
    inspection, project = _visible_inspection(inspection_id, actor)
    if inspection.inspector_id != actor.id:
        require_project_role(actor, project, {Role.INSPECTOR}, "checklist:submit")
    item = get_or_404(ChecklistItem, item_id)

    errors = validate_attachments(item, photo_url, latitude, longitude)
    if errors:
        raise ValidationFailed("ChecklistResponse", None,
                               f"item {item.code} is missing required attachments", errors)

    payload = {
        "response": response,
        "notes": notes or "",
        "photo_url": photo_url,
        "latitude": latitude,
        "longitude": longitude,
        "responded_by": actor.id,
        "responded_at": _utcnow(),
    }

    existing = db.session.execute(
        select(ChecklistResponse).where(
            ChecklistResponse.inspection_id == inspection.id,
            ChecklistResponse.item_id == item.id,
        )
    ).scalar_one_or_none()

    if existing is not None:
        if existing.is_terminal:
            raise AlreadyFinalized("ChecklistResponse", existing.id, existing.status.value)
        with atomic():
            row = compare_and_set(ChecklistResponse, existing.id, ChecklistStatus.SUBMITTED, payload)
        created = False
    else:
        try:
            with atomic():
                row = ChecklistResponse(
                    inspection_id=inspection.id,
                    item_id=item.id,
                    status=ChecklistStatus.SUBMITTED,
                    **payload,
                )
                db.session.add(row)
        except IntegrityError:
            raise Conflict("ChecklistResponse", None,
                           f"item {item.code} was answered concurrently") from None
        created = True

    logger.info(
        "Checklist response %s %s for item %s", row.id, "created" if created else "updated",
        item.code,
        extra={"user_id": actor.id, "project_id": project.id, "entity_type": "checklist_response",
               "entity_id": row.id},
    )
    reevaluate_project_status(project.id, sender_id=actor.id)
    return row, created


def review_response(response_id, actor, target, *, notes=None):
    """Approve or reject a submitted response. Each response is reviewed once."""
    row, project = _visible_response(response_id, actor)
    require_project_role(actor, project, {Role.PROJECT_LEAD}, "checklist:review")

    try:
        target = ChecklistStatus(target)
    except ValueError:
        raise InvalidTransition("ChecklistResponse", row.id, row.status.value, str(target),
                                "unknown status") from None
    if row.is_terminal:
        raise AlreadyFinalized("ChecklistResponse", row.id, row.status.value)
    if not validate_checklist_transition(row.status, target):
        raise InvalidTransition("ChecklistResponse", row.id, row.status.value, target.value)

    values = {"status": target, "reviewed_by": actor.id, "reviewed_at": _utcnow()}
    if target == ChecklistStatus.REJECTED and notes:
        values["notes"] = notes

    previous = row.status
    try:
        with atomic():
            row = compare_and_set(ChecklistResponse, row.id, previous, values)
    except Conflict:
        current = db.session.get(ChecklistResponse, response_id, populate_existing=True)
        raise AlreadyFinalized("ChecklistResponse", response_id, current.status.value) from None

    logger.info(
        "Checklist response %s: %s → %s", row.id, previous.value, target.value,
        extra={"user_id": actor.id, "project_id": project.id, "entity_type": "checklist_response",
               "entity_id": row.id, "from_status": previous.value, "to_status": target.value},
    )
    verdict = "approved" if target == ChecklistStatus.PROJECT_LEAD_APPROVED else "rejected"
    message = f"Checklist item '{row.item.title}' was {verdict}"
    if target == ChecklistStatus.REJECTED and notes:
        message += f": {notes}"
    NotificationService.dispatch(
        recipients=[row.responded_by],
        project_id=project.id,
        type="checklist_reviewed",
        message=message,
        sender_id=actor.id,
        entity_type="checklist_response",
        entity_id=row.id,
    )
    return row


def approve_response(response_id, actor):
    return review_response(response_id, actor, ChecklistStatus.PROJECT_LEAD_APPROVED)


def reject_response(response_id, actor, notes=None):
    return review_response(response_id, actor, ChecklistStatus.REJECTED, notes=notes)


def list_responses(inspection_id, actor):
    inspection, _project = _visible_inspection(inspection_id, actor)
    stmt = (
        select(ChecklistResponse)
        .where(ChecklistResponse.inspection_id == inspection.id)
        .order_by(ChecklistResponse.id)
    )
    return db.session.execute(stmt).scalars().all()


DEFAULT_CHECKLIST_ITEMS = [
    {"code": "fungsi_bangunan_gedung", "title": "Fungsi Bangunan Gedung",
     "category": "arsitektur", "requires_photo": True, "requires_geotag": True},
    {"code": "intensitas_bangunan", "title": "Intensitas Bangunan Gedung",
     "category": "arsitektur", "requires_photo": True, "requires_geotag": False},
    {"code": "struktur_pondasi", "title": "Struktur Pondasi",
     "category": "struktur", "requires_photo": True, "requires_geotag": False},
    {"code": "struktur_kolom_balok", "title": "Struktur Kolom dan Balok",
     "category": "struktur", "requires_photo": True, "requires_geotag": False},
    {"code": "sistem_proteksi_kebakaran", "title": "Sistem Proteksi Kebakaran",
     "category": "mep", "requires_photo": True, "requires_geotag": False},
    {"code": "sistem_kelistrikan", "title": "Sistem Kelistrikan",
     "category": "mep", "requires_photo": False, "requires_geotag": False},
]


def seed_default_items() -> int:
    """Insert the default checklist items that are not present yet."""
    existing = set(db.session.execute(select(ChecklistItem.code)).scalars().all())
    added = 0
    with atomic():
        for entry in DEFAULT_CHECKLIST_ITEMS:
            if entry["code"] in existing:
                continue
            db.session.add(ChecklistItem(**entry))
            added += 1
    return added
