"""
SLF Certification Workflow Engine
Payment Verification.

A client uploads proof of payment (status ``pending``); the project's
creator or admin lead verifies or rejects it exactly once. Racing reviewers
are serialised by a guarded UPDATE: the loser gets ``AlreadyFinalized``.
"""

import logging
from decimal import Decimal, InvalidOperation

from certflow.core.exceptions import AlreadyFinalized, Conflict, NotFound, PermissionDenied, ValidationFailed
from certflow.models import _utcnow, db
from certflow.models.auth import Role
from certflow.models.payment import Payment, PaymentStatus
from certflow.services.helpers.state_guard import atomic, compare_and_set, get_or_404
from certflow.services.notification import NotificationService
from certflow.services.tenancy import get_visible_project, members_with_role, require_project_role

logger = logging.getLogger(__name__)

PAYMENT_UPLOADER_ROLES = {Role.CLIENT, Role.ADMIN_LEAD}


def _visible_payment(payment_id, actor):
    payment = get_or_404(Payment, payment_id)
    try:
        project = get_visible_project(payment.project_id, actor)
    except NotFound:
        raise NotFound(resource="Payment", resource_id=payment_id) from None
    return payment, project


def can_review_payment(actor, project) -> bool:
    """Only the project's creator or admin lead (or a superadmin) reviews payments."""
    return actor.is_superadmin or actor.id in (project.created_by, project.admin_lead_id)


def submit_payment(project_id, actor, *, amount, proof_url=""):
    project = get_visible_project(project_id, actor)
    require_project_role(actor, project, PAYMENT_UPLOADER_ROLES, "payment:submit")
    try:
        amount = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationFailed("Payment", None, "amount must be a number",
                               {"amount": "invalid"}) from None
    if not amount.is_finite():
        raise ValidationFailed("Payment", None, "amount must be a number", {"amount": "invalid"})
    if amount <= 0:
        raise ValidationFailed("Payment", None, "amount must be positive", {"amount": "invalid"})

    with atomic():
        payment = Payment(project_id=project.id, amount=amount, proof_url=proof_url or "",
                          uploaded_by=actor.id, status=PaymentStatus.PENDING)
        db.session.add(payment)
    logger.info(
        "Payment %s uploaded for project %s", payment.id, project.id,
        extra={"user_id": actor.id, "project_id": project.id, "entity_type": "payment",
               "entity_id": payment.id},
    )
    return payment


def _finalize(payment_id, actor, target, notes=None):
    payment, project = _visible_payment(payment_id, actor)
    action = "payment:verify" if target == PaymentStatus.VERIFIED else "payment:reject"
    if not can_review_payment(actor, project):
        logger.warning(
            "Permission denied: user=%s action=%s", actor.id, action,
            extra={"user_id": actor.id, "project_id": project.id, "action": action},
        )
        raise PermissionDenied(actor.id, action, ["project creator", Role.ADMIN_LEAD.value])

    if payment.is_terminal:
        raise AlreadyFinalized("Payment", payment.id, payment.status.value)

    values = {"status": target, "verified_by": actor.id, "verified_at": _utcnow()}
    if notes is not None:
        values["notes"] = notes

    try:
        with atomic():
            payment = compare_and_set(Payment, payment.id, PaymentStatus.PENDING, values)
    except Conflict:
        current = db.session.get(Payment, payment_id, populate_existing=True)
        raise AlreadyFinalized("Payment", payment_id, current.status.value) from None

    logger.info(
        "Payment %s: pending → %s", payment.id, target.value,
        extra={"user_id": actor.id, "project_id": project.id, "entity_type": "payment",
               "entity_id": payment.id, "from_status": PaymentStatus.PENDING.value,
               "to_status": target.value},
    )

    verdict = "verified" if target == PaymentStatus.VERIFIED else "rejected"
    message = f"Payment of {payment.amount} for '{project.name}' was {verdict}"
    if notes:
        message += f": {notes}"
    NotificationService.dispatch(
        recipients=members_with_role(project, Role.CLIENT),
        project_id=project.id,
        type=f"payment_{verdict}",
        message=message,
        sender_id=actor.id,
        entity_type="payment",
        entity_id=payment.id,
    )
    return payment


def verify_payment(payment_id, actor, notes=None):
    return _finalize(payment_id, actor, PaymentStatus.VERIFIED, notes)


def reject_payment(payment_id, actor, notes=None):
    return _finalize(payment_id, actor, PaymentStatus.REJECTED, notes)
