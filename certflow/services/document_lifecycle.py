"""
SLF Certification Workflow Engine
Document Approval Chain.

Manages Document.status transitions with:
  - Transition validation (DOCUMENT_TRANSITIONS)
  - Role checks per action (admin-team verification needs explicit team membership)
  - Guarded writes plus a DocumentApproval audit row in the same transaction
  - Role-targeted notifications after commit
  - Derived project advancement (project_lifecycle.reevaluate_project_status)

Usage:
    from certflow.services.document_lifecycle import transition_document

    result = transition_document(document_id=7, action="verify", actor=user,
                                 comment="foto kurang jelas")
"""

import logging

from sqlalchemy import select

from certflow.core.exceptions import InvalidTransition, NotFound, ValidationFailed
from certflow.models import _utcnow, db
from certflow.models.auth import Role
from certflow.models.document import (
    DOCUMENT_TRANSITIONS,
    Document,
    DocumentApproval,
    DocumentStatus,
    DocumentType,
    document_action_for,
)
from certflow.services.helpers.state_guard import atomic, compare_and_set, get_or_404
from certflow.services.notification import NotificationService
from certflow.services.project_lifecycle import reevaluate_project_status
from certflow.services.tenancy import (
    effective_roles,
    get_visible_project,
    members_with_role,
    require_project_role,
    require_team_role,
    team_roles,
)

logger = logging.getLogger(__name__)

# Actions that record the admin-team verification stamp
_VERIFICATION_ACTIONS = {"verify", "request_revision"}

DOCUMENT_CREATOR_ROLES = {Role.INSPECTOR, Role.DRAFTER, Role.ADMIN_LEAD, Role.ADMIN_TEAM}


def _load(document_id, actor):
    """Document plus its project, or NotFound when either is out of reach."""
    doc = get_or_404(Document, document_id)
    try:
        project = get_visible_project(doc.project_id, actor)
    except NotFound:
        raise NotFound(resource="Document", resource_id=document_id) from None
    return doc, project


def validate_transition(document, action) -> dict:
    """
    Validate whether an action is valid for the current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = DOCUMENT_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": document.status.value, "to": None,
                "reason": f"Unknown action: {action}"}

    if document.status not in rule["from"]:
        return {"valid": False, "from": document.status.value, "to": rule["to"].value,
                "reason": f"Cannot '{action}' from status '{document.status.value}'"}

    return {"valid": True, "from": document.status.value, "to": rule["to"].value, "reason": None}


def create_document(project_id, actor, *, name, document_type=DocumentType.REPORT, url=""):
    project = get_visible_project(project_id, actor)
    require_project_role(actor, project, DOCUMENT_CREATOR_ROLES, "document:create")
    if not name or not str(name).strip():
        raise ValidationFailed("Document", None, "name is required", {"name": "required"})
    try:
        document_type = DocumentType(document_type)
    except ValueError:
        raise ValidationFailed("Document", None, "unknown document type",
                               {"document_type": str(document_type)}) from None
    with atomic():
        doc = Document(project_id=project.id, name=name, document_type=document_type,
                       url=url or "", created_by=actor.id, status=DocumentStatus.DRAFT)
        db.session.add(doc)
    logger.info(
        "Document created id=%s project=%s", doc.id, project.id,
        extra={"user_id": actor.id, "project_id": project.id, "entity_type": "document",
               "entity_id": doc.id},
    )
    return doc


def transition_document(document_id, action, actor, *, comment=None) -> dict:
    """
    Execute a document lifecycle transition.

    Returns:
        {"document_id", "previous_status", "new_status", "action"}

    Raises:
        NotFound, PermissionDenied, InvalidTransition, Conflict
    """
    doc, project = _load(document_id, actor)

    rule = DOCUMENT_TRANSITIONS.get(action)
    if rule is None:
        raise InvalidTransition("Document", doc.id, doc.status.value, None,
                                f"Unknown action: {action}")

    # 1. Validate transition
    validation = validate_transition(doc, action)
    if not validation["valid"]:
        raise InvalidTransition("Document", doc.id, doc.status.value, validation["to"],
                                validation["reason"])

    # 2. Permission check
    if rule.get("team_only"):
        acting = require_team_role(actor, project, rule["roles"], f"document:{action}")
    else:
        acting = require_project_role(actor, project, rule["roles"], f"document:{action}")

    # 3. Guarded write + audit row
    previous = doc.status
    target = rule["to"]
    values = {"status": target}
    if action in _VERIFICATION_ACTIONS:
        values["verified_by_admin_team"] = actor.id
        values["verified_at_admin_team"] = _utcnow()
        # a revision request replaces stale feedback; a bare verify keeps it
        if action == "request_revision" or comment:
            values["admin_team_feedback"] = comment or None

    with atomic():
        doc = compare_and_set(Document, doc.id, previous, values)
        db.session.add(DocumentApproval(
            document_id=doc.id,
            actor_id=actor.id,
            role=sorted(r.value for r in acting)[0],
            action=action,
            from_status=previous.value,
            to_status=target.value,
            comment=comment,
        ))

    logger.info(
        "Document %s: %s → %s (%s)", doc.id, previous.value, target.value, action,
        extra={
            "user_id": actor.id, "project_id": project.id, "entity_type": "document",
            "entity_id": doc.id, "action": action,
            "from_status": previous.value, "to_status": target.value,
        },
    )

    # 4. Side effects
    _notify(doc, project, action, rule, previous, actor, comment)
    reevaluate_project_status(project.id, sender_id=actor.id)

    return {
        "document_id": doc.id,
        "previous_status": previous.value,
        "new_status": target.value,
        "action": action,
    }


def _notify(doc, project, action, rule, previous, actor, comment):
    recipients = set()
    for role in rule["notify"]:
        recipients.update(members_with_role(project, role))
    if action in _VERIFICATION_ACTIONS:
        ntype = "admin_team_verification_complete"
        verdict = "verified" if action == "verify" else "sent back for revision"
        message = f"Document '{doc.name}' {verdict} by admin team"
        if comment:
            message += f": {comment}"
    else:
        ntype = "document_status_change"
        message = (
            f"Document '{doc.name}' moved from {previous.value} to {doc.status.value}"
        )
    NotificationService.dispatch(
        recipients=recipients,
        project_id=project.id,
        type=ntype,
        message=message,
        sender_id=actor.id,
        entity_type="document",
        entity_id=doc.id,
    )


def set_document_status(document_id, target, actor, *, comment=None) -> dict:
    """Move a document straight to ``target`` by resolving the matching action."""
    doc, _project = _load(document_id, actor)
    try:
        target = DocumentStatus(target)
    except ValueError:
        raise InvalidTransition("Document", doc.id, doc.status.value, str(target),
                                "unknown status") from None
    action = document_action_for(doc.status, target)
    if action is None:
        raise InvalidTransition("Document", doc.id, doc.status.value, target.value)
    return transition_document(doc.id, action, actor, comment=comment)


def verify_document(document_id, actor, feedback=None) -> dict:
    return transition_document(document_id, "verify", actor, comment=feedback)


def request_revision(document_id, actor, feedback=None) -> dict:
    return transition_document(document_id, "request_revision", actor, comment=feedback)


def get_available_actions(document, actor) -> list[str]:
    """Actions ``actor`` could perform on ``document`` right now."""
    project = get_visible_project(document.project_id, actor)
    held = effective_roles(actor, project)
    held_on_team = team_roles(actor, project)
    actions = []
    for action, rule in DOCUMENT_TRANSITIONS.items():
        if document.status not in rule["from"]:
            continue
        if rule.get("team_only"):
            allowed = bool(held_on_team & rule["roles"])
        else:
            allowed = Role.SUPERADMIN in held or bool(held & rule["roles"])
        if allowed:
            actions.append(action)
    return actions


def get_document_history(document_id, actor) -> list[DocumentApproval]:
    doc, _project = _load(document_id, actor)
    stmt = (
        select(DocumentApproval)
        .where(DocumentApproval.document_id == doc.id)
        .order_by(DocumentApproval.id)
    )
    return db.session.execute(stmt).scalars().all()


def list_documents(project_id, actor, *, status=None):
    project = get_visible_project(project_id, actor)
    stmt = select(Document).where(Document.project_id == project.id)
    if status is not None:
        try:
            status = DocumentStatus(status)
        except ValueError:
            raise ValidationFailed("Document", None, "unknown status filter",
                                   {"status": "invalid"}) from None
        stmt = stmt.where(Document.status == status)
    return db.session.execute(stmt.order_by(Document.id)).scalars().all()
